"""Payment webhook reconciliation: idempotency, authenticity, state guards."""

from storefront.extensions import db
from storefront.models import Message, Payment
from storefront.models.orders import (
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_PAID,
)
from storefront.services import stock_service
from storefront.services.lifecycle_service import current_status, transition_order
from storefront.services.reconciliation_service import handle_payment_event

from conftest import variant_for


def test_approved_marks_paid_and_notifies(jordan, place_order, signed_event, twilio):
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "paid"
    assert result.body["notification"]["status"] == "sent"
    assert current_status(order.id) == STATUS_PAID
    assert len(twilio.requests) == 1
    assert "Pago confirmado" in twilio.sent_bodies()[0]
    assert order.short_id in twilio.sent_bodies()[0]

    payment = db.session.query(Payment).filter_by(reference=order.payment_reference).one()
    assert payment.status == "approved"
    assert payment.order_id == order.id
    # Payment keeps the stock reserved
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 2


def test_approved_redelivery_is_idempotent(jordan, place_order, signed_event, twilio):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED")

    first = handle_payment_event(event)
    second = handle_payment_event(event)

    assert first.body["outcome"] == "paid"
    assert second.status_code == 200
    assert second.body["outcome"] == "duplicate"
    assert len(twilio.requests) == 1
    assert db.session.query(Payment).count() == 1
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 2


def test_declined_cancels_and_releases(jordan, samba, place_order, signed_event):
    order = place_order([(jordan, 42, 2), (samba, 41, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "DECLINED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "cancelled"
    assert result.body["units_released"] == 3
    assert current_status(order.id) == STATUS_CANCELLED
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 3
    assert stock_service.get_stock(variant_for(samba, 41).id) == 2


def test_declined_twice_releases_exactly_once(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 2)]).order
    event = signed_event(order.payment_reference, "DECLINED")

    handle_payment_event(event)
    second = handle_payment_event(event)
    voided = handle_payment_event(signed_event(order.payment_reference, "VOIDED"))

    assert second.body["outcome"] == "duplicate"
    assert voided.body["outcome"] == "duplicate"
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 3


def test_error_status_counts_as_failure(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "ERROR"))

    assert result.body["outcome"] == "cancelled"
    assert current_status(order.id) == STATUS_CANCELLED


def test_pending_status_changes_nothing(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "PENDING"))

    assert result.status_code == 200
    assert result.body["outcome"] == "pending"
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT
    payment = db.session.query(Payment).one()
    assert payment.status == "pending"


def test_declined_after_paid_is_ignored(jordan, place_order, signed_event, twilio):
    order = place_order([(jordan, 42, 1)]).order
    handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    result = handle_payment_event(signed_event(order.payment_reference, "DECLINED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "ignored_terminal"
    assert current_status(order.id) == STATUS_PAID
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 2


def test_approved_after_expiry_does_not_resurrect(jordan, place_order, signed_event, twilio):
    order = place_order([(jordan, 42, 1)]).order
    transition_order(order.id, STATUS_EXPIRED)

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "ignored_terminal"
    assert result.body["order_status"] == STATUS_EXPIRED
    assert current_status(order.id) == STATUS_EXPIRED
    assert stock_service.get_stock(variant_for(jordan, 42).id) == 3
    assert twilio.requests == []


def test_bad_checksum_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED", secret="wrong-secret")

    result = handle_payment_event(event)

    assert result.status_code == 401
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT
    assert db.session.query(Payment).count() == 0


def test_tampered_status_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "DECLINED")
    event["data"]["transaction"]["status"] = "APPROVED"

    result = handle_payment_event(event)

    assert result.status_code == 401
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT


def test_checksum_accepted_from_header(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "DECLINED")
    checksum = event["signature"].pop("checksum")

    result = handle_payment_event(event, {"X-Event-Checksum": checksum.upper()})

    assert result.status_code == 200
    assert result.body["outcome"] == "cancelled"


def test_missing_checksum_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED")
    del event["signature"]

    assert handle_payment_event(event).status_code == 401


def test_unknown_reference_is_404(db_session, signed_event):
    result = handle_payment_event(signed_event("ORD-0-doesnotexist", "APPROVED"))

    assert result.status_code == 404
    assert result.body["code"] == "unknown_order"


def test_non_transaction_event_ignored(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(
        signed_event(order.payment_reference, "APPROVED", event="nequi_token.updated")
    )

    assert result.status_code == 200
    assert result.body["outcome"] == "ignored_event"
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT


def test_non_object_body_rejected(db_session):
    assert handle_payment_event(None).status_code == 401
    assert handle_payment_event(["not", "an", "object"]).status_code == 401


def test_unsigned_events_rejected_in_production(
    jordan, place_order, signed_event, app, monkeypatch
):
    order = place_order([(jordan, 42, 1)]).order
    monkeypatch.setitem(app.config, "WOMPI_EVENT_SECRET", None)
    monkeypatch.setitem(app.config, "APP_ENV", "production")

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 401
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT


def test_unsigned_events_accepted_outside_production(
    jordan, place_order, signed_event, app, monkeypatch, twilio
):
    order = place_order([(jordan, 42, 1)]).order
    monkeypatch.setitem(app.config, "WOMPI_EVENT_SECRET", None)

    event = signed_event(order.payment_reference, "APPROVED")
    del event["signature"]
    result = handle_payment_event(event)

    assert result.status_code == 200
    assert current_status(order.id) == STATUS_PAID


def test_notification_failure_does_not_undo_payment(
    jordan, place_order, signed_event, twilio
):
    twilio.status_code = 400
    twilio.payload = {"code": 63016, "message": "Outside the allowed window"}
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "paid"
    assert result.body["notification"] == {
        "status": "failed",
        "error": "Outside the allowed window",
    }
    assert current_status(order.id) == STATUS_PAID
    logged = db.session.query(Message).one()
    assert logged.delivery_status == "failed"


def test_blank_customer_name_still_confirms_payment(
    jordan, customer, place_order, signed_event, twilio
):
    customer.name = "   "
    db.session.commit()
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "paid"
    assert result.body["notification"]["status"] == "sent"
    assert "Hola cliente" in twilio.sent_bodies()[0]


def test_broken_confirmation_template_does_not_fail_webhook(
    jordan, place_order, signed_event, twilio, monkeypatch
):
    from storefront.services import reconciliation_service

    def _broken(order):
        raise IndexError("list index out of range")

    monkeypatch.setattr(reconciliation_service, "payment_confirmed_message", _broken)
    order = place_order([(jordan, 42, 1)]).order

    result = handle_payment_event(signed_event(order.payment_reference, "APPROVED"))

    assert result.status_code == 200
    assert result.body["outcome"] == "paid"
    assert result.body["notification"]["status"] == "failed"
    assert current_status(order.id) == STATUS_PAID


def test_non_object_signature_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED")
    event["signature"] = "garbage"

    result = handle_payment_event(event)

    assert result.status_code == 401
    assert current_status(order.id) == STATUS_AWAITING_PAYMENT


def test_non_string_signed_properties_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED")
    event["signature"]["properties"] = [1, 2]

    assert handle_payment_event(event).status_code == 401


def test_non_object_data_rejected(jordan, place_order, signed_event):
    order = place_order([(jordan, 42, 1)]).order
    event = signed_event(order.payment_reference, "APPROVED")
    event["data"] = "garbage"

    assert handle_payment_event(event).status_code == 401


def test_malformed_unsigned_event_rejected(db_session, app, monkeypatch):
    monkeypatch.setitem(app.config, "WOMPI_EVENT_SECRET", None)

    for data in ("garbage", {"transaction": "garbage"}, {"transaction": None}):
        result = handle_payment_event({"event": "transaction.updated", "data": data})
        assert result.status_code == 401
