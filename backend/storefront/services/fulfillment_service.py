# Overview: Admin-triggered dispatch and delivery transitions with best-effort notification.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import STATUS_DELIVERED, STATUS_PAID, STATUS_SHIPPED
from ..time_utils import utcnow
from .errors import InvalidTransition, StorefrontError, UnknownOrder, ValidationFailure
from .lifecycle_service import current_status, reload_order, transition_order
from .notification_service import (
    NotificationTicket,
    delivered_message,
    notify_order,
    shipped_message,
)


@dataclass
class TransitionResult:
    success: bool
    order: Order | None = None
    notification: NotificationTicket | None = None
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error, "code": self.code}
        return {
            "success": True,
            "order": self.order.to_dict() if self.order is not None else None,
            "notification": self.notification.to_dict() if self.notification else None,
        }


def _move(order_id: int, target: str, expected: str, **values) -> Order:
    status = current_status(order_id)
    if status is None:
        raise UnknownOrder(f"Order {order_id} not found")
    if status != expected:
        raise InvalidTransition(f"Order {order_id} is {status}, expected {expected}")

    transition = transition_order(order_id, target, **values)
    if not transition.applied:
        raise InvalidTransition(
            f"Order {order_id} is {current_status(order_id)}, expected {expected}"
        )
    return reload_order(order_id)


def _run(op) -> TransitionResult:
    try:
        return op()
    except StorefrontError as exc:
        db.session.rollback()
        return TransitionResult(success=False, error=exc.message, code=exc.code)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Order transition failed")
        return TransitionResult(success=False, error="Internal error", code="internal_error")


def dispatch(order_id: int, carrier_name: str, tracking_number: str) -> TransitionResult:
    """paid -> shipped. Records carrier and tracking number, then tells the customer."""
    def _op():
        carrier = (carrier_name or "").strip()
        tracking = (tracking_number or "").strip()
        if not carrier or not tracking:
            raise ValidationFailure("carrier_name and tracking_number are required")

        order = _move(
            order_id,
            STATUS_SHIPPED,
            STATUS_PAID,
            carrier_name=carrier,
            tracking_number=tracking,
            shipped_at=utcnow(),
        )
        current_app.logger.info("Order %s shipped via %s (%s)", order_id, carrier, tracking)
        return TransitionResult(success=True, order=order, notification=notify_order(order, shipped_message))

    return _run(_op)


def mark_delivered(order_id: int) -> TransitionResult:
    """shipped -> delivered, then tells the customer."""
    def _op():
        order = _move(order_id, STATUS_DELIVERED, STATUS_SHIPPED, delivered_at=utcnow())
        current_app.logger.info("Order %s delivered", order_id)
        return TransitionResult(success=True, order=order, notification=notify_order(order, delivered_message))

    return _run(_op)
