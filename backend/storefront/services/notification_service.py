# Overview: Customer WhatsApp notifications via Twilio; always best-effort.

"""
Notification dispatch.

Notifications are SECONDARY effects: the order status change they announce
has already been committed when they are sent. Nothing in here may raise
into the caller; every failure is logged, recorded on the conversation log
with delivery_status="failed", and returned as a NotificationResult.

With NOTIFICATIONS_ASYNC enabled the send runs on a small thread pool and
the caller only gets back "queued"; the outcome lands in the log and on the
returned Future. Tests run with it disabled so delivery is inline.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

import httpx
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Order
from .customer_service import log_outbound_message

NOTIFY_QUEUED = "queued"
NOTIFY_SENT = "sent"
NOTIFY_FAILED = "failed"
NOTIFY_SKIPPED_NO_PHONE = "skipped_no_phone"

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")


@dataclass
class NotificationResult:
    success: bool
    sid: str | None = None
    error: str | None = None


@dataclass
class NotificationTicket:
    """What the caller learns synchronously about a notification."""
    status: str
    error: str | None = None
    future: Future | None = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {"status": self.status, "error": self.error}


def _http_client() -> httpx.Client:
    return httpx.Client(timeout=float(current_app.config.get("HTTP_TIMEOUT_SECONDS", 5)))


def send_whatsapp(to: str, body: str, media_urls: list[str] | None = None) -> NotificationResult:
    """Send one WhatsApp message through the Twilio Messages API."""
    cfg = current_app.config
    account_sid = cfg.get("TWILIO_ACCOUNT_SID")
    auth_token = cfg.get("TWILIO_AUTH_TOKEN")
    if not account_sid or not auth_token:
        current_app.logger.error("Twilio credentials missing (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN)")
        return NotificationResult(success=False, error="Missing Twilio credentials")

    url = f"{cfg['TWILIO_API_BASE_URL']}/Accounts/{account_sid}/Messages.json"
    # httpx form-encodes only mappings; list values become repeated keys
    form = {"From": cfg["TWILIO_WHATSAPP_FROM"], "To": to}
    if body:
        form["Body"] = body
    if media_urls:
        form["MediaUrl"] = list(media_urls)

    try:
        with _http_client() as client:
            response = client.post(url, data=form, auth=(account_sid, auth_token))
    except httpx.TimeoutException:
        current_app.logger.warning("Twilio request timed out sending to %s", to)
        return NotificationResult(success=False, error="Request timeout")
    except httpx.HTTPError as exc:
        current_app.logger.warning("Twilio network error sending to %s: %s", to, exc)
        return NotificationResult(success=False, error=str(exc))

    try:
        data = response.json()
    except ValueError:
        data = {}

    if response.status_code >= 400:
        message = data.get("message") or data.get("detail") or f"HTTP {response.status_code}"
        current_app.logger.warning("Twilio send failed: %s", message)
        return NotificationResult(success=False, error=message)

    return NotificationResult(success=True, sid=data.get("sid"))


def _deliver(customer_id: int, phone: str, body: str) -> NotificationResult:
    try:
        result = send_whatsapp(phone, body)
    except Exception as exc:  # secondary effect: must not escape
        current_app.logger.exception("Notification to customer %s crashed", customer_id)
        result = NotificationResult(success=False, error=str(exc) or exc.__class__.__name__)

    try:
        log_outbound_message(
            customer_id,
            body,
            provider_message_sid=result.sid,
            delivery_status=NOTIFY_SENT if result.success else NOTIFY_FAILED,
            error=result.error,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record notification for customer %s", customer_id)

    if not result.success:
        current_app.logger.warning("Notification to customer %s failed: %s", customer_id, result.error)
    return result


def _deliver_in_app_context(app, customer_id: int, phone: str, body: str) -> NotificationResult:
    with app.app_context():
        try:
            return _deliver(customer_id, phone, body)
        finally:
            db.session.remove()


def notify_customer(customer_id: int, body: str) -> NotificationTicket:
    """
    Fire-and-forget notification to a customer.

    Never raises. Returns "skipped_no_phone", "queued" (async mode), or the
    inline outcome "sent" / "failed".
    """
    try:
        customer = db.session.get(Customer, customer_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not load customer %s for notification", customer_id)
        return NotificationTicket(status=NOTIFY_FAILED, error="customer lookup failed")

    phone = customer.phone_e164 if customer else None
    if not phone:
        return NotificationTicket(status=NOTIFY_SKIPPED_NO_PHONE)

    if current_app.config.get("NOTIFICATIONS_ASYNC", True):
        app = current_app._get_current_object()
        future = _executor.submit(_deliver_in_app_context, app, customer_id, phone, body)
        return NotificationTicket(status=NOTIFY_QUEUED, future=future)

    result = _deliver(customer_id, phone, body)
    if result.success:
        return NotificationTicket(status=NOTIFY_SENT)
    return NotificationTicket(status=NOTIFY_FAILED, error=result.error)


def notify_order(order: Order, build_message) -> NotificationTicket:
    """Render a template for `order` and send it; never raises."""
    # The status change is already committed; nothing here may undo it.
    try:
        return notify_customer(order.customer_id, build_message(order))
    except Exception as exc:
        current_app.logger.exception("Notification for order %s failed", order.id)
        return NotificationTicket(status=NOTIFY_FAILED, error=str(exc) or exc.__class__.__name__)


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

def format_cop(amount_cents: int) -> str:
    """Colombian peso display, no decimals: 15000000 -> "$150.000"."""
    pesos = int(round(amount_cents / 100))
    return "$" + f"{pesos:,}".replace(",", ".")


def _first_name(customer: Customer | None) -> str:
    name = (customer.name if customer else None) or "cliente"
    return (name.split() or ["cliente"])[0]


def payment_confirmed_message(order: Order) -> str:
    return (
        f"✅ *¡Pago confirmado!*\n\n"
        f"Hola {_first_name(order.customer)}, recibimos tu pago de {format_cop(order.total_cents)} "
        f"para el pedido *#{order.short_id}*.\n\n"
        f"Estamos preparando tu pedido y te avisaremos cuando vaya en camino."
    )


def shipped_message(order: Order) -> str:
    return (
        f"📦 *¡Tu paquete va en camino!*\n\n"
        f"Hola {_first_name(order.customer)}, tu pedido *#{order.short_id}* fue despachado "
        f"con la transportadora *{order.carrier_name}*.\n\n"
        f"📝 *Número de guía:* {order.tracking_number}"
    )


def delivered_message(order: Order) -> str:
    return (
        f"🎉 *¡Pedido entregado!*\n\n"
        f"Hola {_first_name(order.customer)}, tu pedido *#{order.short_id}* fue entregado. "
        f"¡Gracias por tu compra!"
    )
