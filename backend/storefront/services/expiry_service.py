# Overview: Expiry sweeper; reclaims stock held by abandoned awaiting_payment orders.

"""
Expiry Sweeper

Runs on a schedule (hourly cron: `flask orders sweep-expired`). Any order
still awaiting_payment whose created_at is older than the threshold is a
zombie: it holds reserved stock that nobody is going to pay for.

Each zombie is expired through the guarded lifecycle transition, which
releases its items in the same transaction. Orders are processed
independently; one failure is logged and recorded in the summary without
stopping the rest. An order that got paid or cancelled between the query
and its turn is skipped, not double-released.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import STATUS_AWAITING_PAYMENT, STATUS_EXPIRED
from ..time_utils import to_utc_naive, utcnow
from .lifecycle_service import transition_order


@dataclass
class SweepSummary:
    processed: int = 0
    stock_released: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    cutoff: datetime | None = None

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "processed": self.processed,
            "stock_released": self.stock_released,
            "skipped": self.skipped,
            "errors": self.errors,
            "cutoff": self.cutoff.isoformat() + "Z" if self.cutoff else None,
        }


def find_expired_order_ids(cutoff: datetime) -> list[int]:
    rows = (
        db.session.query(Order.id)
        .filter(Order.status == STATUS_AWAITING_PAYMENT, Order.created_at < cutoff)
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def sweep_expired_orders(now: datetime | None = None, threshold_hours: float | None = None) -> SweepSummary:
    """
    Expire every awaiting_payment order created before now - threshold_hours.

    Never raises; per-order failures are returned in SweepSummary.errors.
    """
    summary = SweepSummary()

    if threshold_hours is None:
        threshold_hours = current_app.config.get("ORDER_EXPIRY_HOURS", 2)
    try:
        threshold_hours = float(threshold_hours)
    except (TypeError, ValueError):
        summary.errors.append(f"Invalid threshold_hours: {threshold_hours!r}")
        return summary
    if not math.isfinite(threshold_hours) or threshold_hours < 0:
        summary.errors.append(f"threshold_hours must be a non-negative number, got {threshold_hours!r}")
        return summary

    now = to_utc_naive(now) if now is not None else utcnow()
    try:
        summary.cutoff = now - timedelta(hours=threshold_hours)
    except (OverflowError, ValueError):
        summary.errors.append(f"threshold_hours out of range: {threshold_hours!r}")
        return summary

    try:
        order_ids = find_expired_order_ids(summary.cutoff)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Expiry sweep could not query orders")
        summary.errors.append(f"query failed: {exc}")
        return summary

    if not order_ids:
        current_app.logger.info("Expiry sweep: no orders older than %s", summary.cutoff)
        return summary

    current_app.logger.info("Expiry sweep: %s candidate orders", len(order_ids))

    for order_id in order_ids:
        try:
            transition = transition_order(order_id, STATUS_EXPIRED)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Expiry sweep failed for order %s", order_id)
            summary.errors.append(f"Order {order_id}: {exc}")
            continue

        if not transition.applied:
            summary.skipped += 1
            continue

        summary.processed += 1
        summary.stock_released += transition.units_released
        current_app.logger.info(
            "Order %s expired, %s units released", order_id, transition.units_released
        )

    current_app.logger.info(
        "Expiry sweep done: processed=%s released=%s skipped=%s errors=%s",
        summary.processed, summary.stock_released, summary.skipped, len(summary.errors),
    )
    return summary
