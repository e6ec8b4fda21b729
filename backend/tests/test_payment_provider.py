"""Wompi signatures: checkout integrity and webhook event checksum."""

import hashlib

import pytest

from storefront.services.errors import AuthenticityFailure
from storefront.services.payment_provider import (
    build_checkout_url,
    event_checksum,
    integrity_signature,
    verify_event,
)
from storefront.services.settings_service import PaymentSettings


SETTINGS = PaymentSettings(
    public_key="pub_test_key",
    integrity_secret="integrity",
    event_secret="events",
    currency="COP",
    checkout_base_url="https://checkout.wompi.co/p/",
)


def test_integrity_signature_matches_wompi_formula():
    expected = hashlib.sha256(b"ORD-1-abc15000000COPintegrity").hexdigest()

    assert integrity_signature("ORD-1-abc", 15000000, "COP", "integrity") == expected


def test_checkout_url_carries_signed_params():
    url = build_checkout_url(SETTINGS, reference="ORD-1-abc", amount_cents=15000000)

    assert url.startswith("https://checkout.wompi.co/p/?public-key=pub_test_key")
    assert "amount-in-cents=15000000" in url
    assert "reference=ORD-1-abc" in url
    assert "signature:integrity=" + integrity_signature(
        "ORD-1-abc", 15000000, "COP", "integrity"
    ) in url


def _event(timestamp=1700000000):
    data = {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 15000000}}
    props = ["transaction.id", "transaction.status", "transaction.amount_in_cents"]
    return {
        "event": "transaction.updated",
        "data": data,
        "signature": {
            "properties": props,
            "checksum": event_checksum(data, props, timestamp, "events"),
        },
        "timestamp": timestamp,
    }


def test_event_checksum_formula():
    data = {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 15000000}}
    expected = hashlib.sha256(b"tx-1APPROVED150000001700000000events").hexdigest()

    assert event_checksum(
        data, ["transaction.id", "transaction.status", "transaction.amount_in_cents"],
        1700000000, "events",
    ) == expected


def test_verify_event_accepts_valid_checksum():
    assert verify_event(_event(), {}, SETTINGS, production=True) is True


def test_verify_event_is_case_insensitive():
    event = _event()
    event["signature"]["checksum"] = event["signature"]["checksum"].upper()

    assert verify_event(event, {}, SETTINGS, production=True) is True


def test_verify_event_rejects_changed_timestamp():
    event = _event()
    event["timestamp"] = 1700000001

    with pytest.raises(AuthenticityFailure):
        verify_event(event, {}, SETTINGS, production=True)


def test_verify_event_timestamp_from_header():
    event = _event()
    del event["timestamp"]

    assert verify_event(event, {"X-Event-Timestamp": "1700000000"}, SETTINGS, production=True)


def test_verify_event_missing_signed_property():
    event = _event()
    del event["data"]["transaction"]["amount_in_cents"]

    with pytest.raises(AuthenticityFailure):
        verify_event(event, {}, SETTINGS, production=True)


def test_verify_event_non_ascii_checksum_rejected():
    event = _event()
    event["signature"]["checksum"] = "ñ" * 64

    with pytest.raises(AuthenticityFailure):
        verify_event(event, {}, SETTINGS, production=True)


def test_no_secret_outside_production_skips_verification():
    settings = PaymentSettings(None, None, None, "COP", "https://checkout.wompi.co/p/")

    assert verify_event({"event": "x"}, {}, settings, production=False) is False
    with pytest.raises(AuthenticityFailure):
        verify_event({"event": "x"}, {}, settings, production=True)
