# Overview: Order state machine; every status change goes through a guarded update.

"""
Order Lifecycle

================================================================================
STATE MACHINE
================================================================================

    awaiting_payment -> paid -> shipped -> delivered
    awaiting_payment -> cancelled      (payment failed, or checkout link failed)
    awaiting_payment -> expired        (abandoned, swept)

RULES:
1. A transition is a single conditional UPDATE:
       UPDATE orders SET status = :to WHERE id = :id AND status IN (:allowed_from)
   Exactly one concurrent caller can win it; the others see zero rows and
   treat the call as a no-op.
2. Edges that give stock back (-> cancelled, -> expired) release the order's
   items IN THE SAME TRANSACTION as the winning UPDATE. Because the guard
   can only be won once per order, stock is released at most once per order
   no matter how many webhook retries or sweeps overlap.
3. No edge leaves cancelled, expired or delivered.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa

from ..extensions import db
from ..models import Order
from ..models.orders import (
    ORDER_STATUSES,
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_EXPIRED,
    STATUS_PAID,
    STATUS_SHIPPED,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .errors import InvalidTransition
from .stock_service import release_order_items


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    STATUS_AWAITING_PAYMENT: {STATUS_PAID, STATUS_CANCELLED, STATUS_EXPIRED},
    STATUS_PAID: {STATUS_SHIPPED},
    STATUS_SHIPPED: {STATUS_DELIVERED},
    STATUS_CANCELLED: set(),
    STATUS_EXPIRED: set(),
    STATUS_DELIVERED: set(),
}

# Edges that hand reserved stock back to the ledger
RELEASING_STATUSES = {STATUS_CANCELLED, STATUS_EXPIRED}


@dataclass
class Transition:
    applied: bool
    units_released: int = 0


def sources_for(target: str) -> set[str]:
    """All statuses from which `target` is reachable in one step."""
    if target not in ORDER_STATUSES:
        raise InvalidTransition(f"Unknown order status '{target}'")
    return {src for src, targets in ALLOWED_TRANSITIONS.items() if target in targets}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _transition_inner(order_id: int, target: str, sources: set[str], values: dict) -> Transition:
    result = db.session.execute(
        sa.update(Order)
        .where(Order.id == order_id, Order.status.in_(sorted(sources)))
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        return Transition(applied=False)

    try:
        released = release_order_items(order_id) if target in RELEASING_STATUSES else 0
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return Transition(applied=True, units_released=released)


def transition_order(order_id: int, target: str, *, attempts: int = 3, **values) -> Transition:
    """
    Move an order to `target` if its current status allows it.

    Extra keyword arguments are written in the same UPDATE (e.g. shipped_at).
    Returns Transition(applied=False) when the order is missing or its status
    does not allow the move; the caller decides whether that is an error or
    an idempotent no-op.
    """
    sources = sources_for(target)
    return run_with_retry(
        lambda: _transition_inner(order_id, target, sources, values),
        attempts=attempts,
    )


def current_status(order_id: int) -> str | None:
    """Committed status, read past the session identity map."""
    return db.session.execute(
        sa.select(Order.status).where(Order.id == order_id)
    ).scalar()


def reload_order(order_id: int) -> Order | None:
    order = db.session.get(Order, order_id)
    if order is not None:
        db.session.refresh(order)
    return order
