"""Expiry sweeper: abandoned orders give their stock back exactly once."""

from datetime import timedelta

import pytest
import sqlalchemy as sa

from storefront.extensions import db
from storefront.models import Order
from storefront.models.orders import STATUS_AWAITING_PAYMENT, STATUS_EXPIRED, STATUS_PAID
from storefront.services import stock_service
from storefront.services.expiry_service import sweep_expired_orders
from storefront.services.lifecycle_service import current_status, transition_order
from storefront.time_utils import utcnow

from conftest import variant_for


def _age(order_id, hours):
    db.session.execute(
        sa.update(Order)
        .where(Order.id == order_id)
        .values(created_at=utcnow() - timedelta(hours=hours))
    )
    db.session.commit()


def test_sweep_expires_only_old_orders(jordan, place_order):
    old = place_order([(jordan, 42, 2)]).order
    fresh = place_order([(jordan, 42, 1)]).order
    _age(old.id, 3)
    _age(fresh.id, 1)
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 0

    summary = sweep_expired_orders()

    assert summary.success
    assert summary.processed == 1
    assert summary.stock_released == 2
    assert current_status(old.id) == STATUS_EXPIRED
    assert current_status(fresh.id) == STATUS_AWAITING_PAYMENT
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 2


def test_second_sweep_releases_nothing(jordan, place_order):
    order = place_order([(jordan, 42, 2)]).order
    _age(order.id, 3)

    sweep_expired_orders()
    summary = sweep_expired_orders()

    assert summary.processed == 0
    assert summary.stock_released == 0
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 3


def test_paid_orders_are_never_swept(jordan, place_order):
    order = place_order([(jordan, 42, 1)]).order
    transition_order(order.id, STATUS_PAID)
    _age(order.id, 48)

    summary = sweep_expired_orders()

    assert summary.processed == 0
    assert current_status(order.id) == STATUS_PAID
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 2


def test_custom_threshold(jordan, place_order):
    order = place_order([(jordan, 42, 1)]).order
    _age(order.id, 1)

    assert sweep_expired_orders(threshold_hours=2).processed == 0
    assert sweep_expired_orders(threshold_hours=0.5).processed == 1


def test_explicit_now_moves_cutoff(jordan, place_order):
    order = place_order([(jordan, 42, 1)]).order

    summary = sweep_expired_orders(now=utcnow() + timedelta(hours=5))

    assert summary.processed == 1
    assert current_status(order.id) == STATUS_EXPIRED


def test_one_failing_order_does_not_stop_the_sweep(jordan, samba, place_order, monkeypatch):
    broken = place_order([(jordan, 42, 1)]).order
    healthy = place_order([(samba, 41, 1)]).order
    _age(broken.id, 3)
    _age(healthy.id, 3)

    from storefront.services import expiry_service
    real_transition = expiry_service.transition_order

    def _transition(order_id, target, **kwargs):
        if order_id == broken.id:
            raise RuntimeError("row vanished")
        return real_transition(order_id, target, **kwargs)

    monkeypatch.setattr(expiry_service, "transition_order", _transition)

    summary = sweep_expired_orders()

    assert not summary.success
    assert summary.processed == 1
    assert len(summary.errors) == 1
    assert f"Order {broken.id}" in summary.errors[0]
    assert current_status(healthy.id) == STATUS_EXPIRED
    assert current_status(broken.id) == STATUS_AWAITING_PAYMENT


@pytest.mark.parametrize("hours", ["soon", float("nan"), "nan", float("inf"), -1, 1e8, [2]])
def test_invalid_threshold_reported(jordan, place_order, hours):
    order = place_order([(jordan, 42, 1)]).order
    _age(order.id, 3)

    summary = sweep_expired_orders(threshold_hours=hours)

    assert not summary.success
    assert summary.processed == 0
    assert summary.cutoff is None
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT


def test_nothing_to_sweep(db_session):
    summary = sweep_expired_orders()

    assert summary.success
    assert summary.to_dict()["processed"] == 0
    assert summary.to_dict()["cutoff"].endswith("Z")
