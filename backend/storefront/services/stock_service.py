# Overview: Stock ledger; the only code path allowed to change Variant.stock.

"""
Stock Ledger

INVARIANTS:
- Variant.stock never goes negative.
- Every mutation is ONE conditional UPDATE statement executed by the
  database (no read-modify-write in Python), so concurrent buyers, webhook
  releases and sweeper releases cannot lose updates.

OPERATIONS:
- reserve(variant_id, qty): stock -= qty only if stock >= qty.
  Zero affected rows -> InsufficientStock (or ResolutionFailure if the
  variant does not exist). Nothing is written on failure.
- release(variant_id, qty): stock += qty. Always succeeds for an existing
  variant. Callers guard against releasing the same reservation twice
  (see reconciliation_service / expiry_service).

The *_inner variants run inside the caller's transaction and never commit;
the public variants own their transaction and retry on lock contention.
"""

from __future__ import annotations

from flask import current_app
import sqlalchemy as sa

from ..extensions import db
from ..models import Variant, OrderItem
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .errors import (
    ConcurrencyExhausted,
    InsufficientStock,
    ResolutionFailure,
    StorefrontError,
    ValidationFailure,
)

# Per-call ceiling; keeps arithmetic inside the integer column range
MAX_QUANTITY = 1000


def _validate_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationFailure(f"Quantity must be an integer, got {qty!r}")
    if qty <= 0:
        raise ValidationFailure("Quantity must be positive")
    if qty > MAX_QUANTITY:
        raise ValidationFailure(f"Quantity must not exceed {MAX_QUANTITY}")
    return qty


def _retry_attempts() -> int:
    return int(current_app.config.get("STOCK_RETRY_ATTEMPTS", 3))


def _variant_exists(variant_id: int) -> bool:
    return db.session.query(Variant.id).filter(Variant.id == variant_id).first() is not None


def _reserve_inner(variant_id: int, qty: int) -> None:
    result = db.session.execute(
        sa.update(Variant)
        .where(Variant.id == variant_id, Variant.stock >= qty)
        .values(stock=Variant.stock - qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    if not _variant_exists(variant_id):
        raise ResolutionFailure(f"Variant {variant_id} not found")
    raise InsufficientStock(
        f"Not enough stock for variant {variant_id}",
        details={"variant_id": variant_id, "requested": qty},
    )


def _release_inner(variant_id: int, qty: int) -> None:
    result = db.session.execute(
        sa.update(Variant)
        .where(Variant.id == variant_id)
        .values(stock=Variant.stock + qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ResolutionFailure(f"Variant {variant_id} not found")


def _run_owned(inner, variant_id: int, qty: int) -> None:
    def _op():
        try:
            inner(variant_id, qty)
        except StorefrontError:
            db.session.rollback()
            raise
        db.session.commit()

    run_with_retry(
        _op,
        attempts=_retry_attempts(),
        on_exhausted=lambda exc: ConcurrencyExhausted(
            f"Stock for variant {variant_id} is busy, try again",
            details={"variant_id": variant_id, "requested": qty},
        ),
    )


def reserve(variant_id: int, qty: int) -> None:
    """
    Atomically take `qty` units of a variant out of available stock.

    Raises:
        ValidationFailure: qty is not a positive integer
        ResolutionFailure: variant does not exist
        InsufficientStock: stock < qty (no change made)
        ConcurrencyExhausted: lock contention outlasted the retry budget
    """
    _validate_qty(qty)
    _run_owned(_reserve_inner, variant_id, qty)


def release(variant_id: int, qty: int) -> None:
    """Atomically return `qty` units of a variant to available stock."""
    _validate_qty(qty)
    _run_owned(_release_inner, variant_id, qty)


def release_order_items(order_id: int) -> int:
    """
    Return every line of an order to stock inside the CURRENT transaction.

    Caller commits (or rolls back) together with the status change that
    guards the release. Returns the number of units released.
    """
    items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
    released = 0
    for item in items:
        _release_inner(item.variant_id, item.qty)
        released += item.qty
    return released


def get_stock(variant_id: int) -> int:
    """Current committed stock for a variant (fresh read, bypasses identity map)."""
    value = db.session.execute(
        sa.select(Variant.stock).where(Variant.id == variant_id)
    ).scalar()
    if value is None:
        raise ResolutionFailure(f"Variant {variant_id} not found")
    return int(value)
