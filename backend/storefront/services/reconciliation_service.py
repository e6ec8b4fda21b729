# Overview: Payment webhook reconciliation; applies provider outcomes to orders exactly once.

"""
Payment Reconciler

WHY: Payment confirmation arrives asynchronously from the provider, may be
retried any number of times, and may arrive out of order. Each delivery has
to converge on the same end state as a single delivery.

STEPS:
1. Authenticate the event checksum (401 on failure).
2. Ignore anything that is not "transaction.updated" (200).
3. Find the order by payment reference (404 if unknown).
4. Upsert the Payment row keyed by reference.
5. Apply the outcome through a guarded lifecycle transition:
   APPROVED                  awaiting_payment -> paid, notify customer
   DECLINED / VOIDED / ERROR awaiting_payment -> cancelled, release stock
   anything else             no-op
   Orders already past awaiting_payment are never moved by this component.

RESPONSES: 200 for every handled event including ignored and duplicate ones,
so the provider stops retrying; 401/404/500 only for authenticity failure,
unknown order, unexpected internal error.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Payment
from ..models.orders import STATUS_CANCELLED, STATUS_PAID
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .errors import AuthenticityFailure, UnknownOrder
from .lifecycle_service import current_status, reload_order, transition_order
from .notification_service import notify_order, payment_confirmed_message
from .order_service import get_order_by_reference
from .payment_provider import verify_event
from .settings_service import resolve_payment_settings

EVENT_TRANSACTION_UPDATED = "transaction.updated"

TX_APPROVED = "APPROVED"
TX_FAILED_STATUSES = {"DECLINED", "VOIDED", "ERROR"}

OUTCOME_IGNORED_EVENT = "ignored_event"
OUTCOME_PAID = "paid"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_TERMINAL = "ignored_terminal"
OUTCOME_PENDING = "pending"


@dataclass
class WebhookResult:
    status_code: int
    body: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, **body) -> "WebhookResult":
        return cls(200, {"success": True, **body})


def _upsert_payment(order_id: int, reference: str, transaction: dict, payload_data: dict) -> None:
    status = str(transaction.get("status") or "").lower()
    tx_id = transaction.get("id")

    def _apply(payment: Payment) -> None:
        payment.order_id = order_id
        payment.transaction_id = str(tx_id) if tx_id is not None else payment.transaction_id
        payment.status = status
        payment.raw_event = payload_data
        payment.updated_at = utcnow()

    def _op():
        payment = db.session.query(Payment).filter_by(reference=reference).first()
        if payment is None:
            payment = Payment(reference=reference, provider="wompi")
            _apply(payment)
            db.session.add(payment)
            try:
                db.session.commit()
                return
            except IntegrityError:
                # concurrent delivery inserted it first; merge into that row
                db.session.rollback()
                payment = db.session.query(Payment).filter_by(reference=reference).one()
        _apply(payment)
        db.session.commit()

    run_with_retry(_op)


def _apply_approved(order_id: int) -> dict:
    status = current_status(order_id)
    if status == STATUS_PAID:
        return {"outcome": OUTCOME_DUPLICATE}

    transition = transition_order(order_id, STATUS_PAID)
    if not transition.applied:
        status = current_status(order_id)
        if status == STATUS_PAID:
            return {"outcome": OUTCOME_DUPLICATE}
        current_app.logger.warning(
            "APPROVED payment for order %s in status %r; manual refund review needed",
            order_id, status,
        )
        return {"outcome": OUTCOME_TERMINAL, "order_status": status}

    current_app.logger.info("Order %s paid", order_id)
    order = reload_order(order_id)
    ticket = notify_order(order, payment_confirmed_message)
    return {"outcome": OUTCOME_PAID, "notification": ticket.to_dict()}


def _apply_failed(order_id: int, tx_status: str) -> dict:
    status = current_status(order_id)
    if status == STATUS_CANCELLED:
        return {"outcome": OUTCOME_DUPLICATE}

    transition = transition_order(order_id, STATUS_CANCELLED)
    if not transition.applied:
        status = current_status(order_id)
        if status == STATUS_CANCELLED:
            return {"outcome": OUTCOME_DUPLICATE}
        current_app.logger.warning(
            "%s payment for order %s in status %r ignored", tx_status, order_id, status
        )
        return {"outcome": OUTCOME_TERMINAL, "order_status": status}

    current_app.logger.info(
        "Order %s cancelled (%s); released %s units", order_id, tx_status, transition.units_released
    )
    return {"outcome": OUTCOME_CANCELLED, "units_released": transition.units_released}


def _handle(payload: dict, headers) -> WebhookResult:
    if not isinstance(payload, dict):
        raise AuthenticityFailure("Event body must be a JSON object")

    settings = resolve_payment_settings()
    production = current_app.config.get("APP_ENV") == "production"
    if not verify_event(payload, headers, settings, production=production):
        current_app.logger.warning("Skipping payment event checksum validation (event secret not set)")

    event = payload.get("event")
    if event != EVENT_TRANSACTION_UPDATED:
        return WebhookResult.ok(outcome=OUTCOME_IGNORED_EVENT)

    data = payload.get("data") or {}
    transaction = data.get("transaction") if isinstance(data, dict) else None
    if not isinstance(transaction, dict):
        raise AuthenticityFailure("Event has no transaction object")
    reference = transaction.get("reference")
    if not reference:
        raise UnknownOrder("Event has no transaction reference")

    order = get_order_by_reference(str(reference))
    order_id = order.id
    tx_status = str(transaction.get("status") or "").upper()
    current_app.logger.info("Payment event %s for order %s (ref=%s)", tx_status, order_id, reference)

    _upsert_payment(order_id, str(reference), transaction, data)

    if tx_status == TX_APPROVED:
        result = _apply_approved(order_id)
    elif tx_status in TX_FAILED_STATUSES:
        result = _apply_failed(order_id, tx_status)
    else:
        result = {"outcome": OUTCOME_PENDING}

    return WebhookResult.ok(order_id=order_id, **result)


def handle_payment_event(payload: dict, headers=None) -> WebhookResult:
    """
    Process one webhook delivery. Never raises.

    `headers` is any mapping with .get() (Flask request.headers or a dict).
    """
    try:
        return _handle(payload, headers)
    except AuthenticityFailure as exc:
        current_app.logger.warning("Rejected payment event: %s", exc.message)
        return WebhookResult(401, {"error": "Invalid integrity", "code": exc.code})
    except UnknownOrder as exc:
        current_app.logger.error("Payment event for unknown order: %s", exc.message)
        return WebhookResult(404, {"error": "Order not found", "code": exc.code})
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment webhook failed")
        return WebhookResult(500, {"error": "Internal server error"})
