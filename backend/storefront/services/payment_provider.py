# Overview: Wompi payment provider integration (checkout links and event checksums).

"""
Wompi integration.

Checkout link:
    signature = sha256(reference + amount_in_cents + currency + integrity_secret)
    The hosted checkout URL carries public key, currency, amount, reference
    and the signature; Wompi refuses links whose signature does not match.

Event checksum:
    checksum = sha256(concat(values of signature.properties) + timestamp + event_secret)
    Property names are dotted paths into the event's `data` object, e.g.
    "transaction.id". Comparison is case-insensitive.
"""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import urlencode

from .errors import AuthenticityFailure
from .settings_service import PaymentSettings

DEFAULT_SIGNED_PROPERTIES = [
    "transaction.id",
    "transaction.status",
    "transaction.amount_in_cents",
]


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def integrity_signature(reference: str, amount_cents: int, currency: str, secret: str) -> str:
    return sha256_hex(f"{reference}{amount_cents}{currency}{secret}")


def build_checkout_url(settings: PaymentSettings, *, reference: str, amount_cents: int) -> str:
    """Hosted checkout URL for an order. Credentials must already be checked."""
    signature = integrity_signature(
        reference, amount_cents, settings.currency, settings.integrity_secret
    )
    params = {
        "public-key": settings.public_key,
        "currency": settings.currency,
        "amount-in-cents": str(amount_cents),
        "reference": reference,
        "signature:integrity": signature,
    }
    return f"{settings.checkout_base_url}?{urlencode(params, safe=':')}"


def _lookup_path(data: dict, path: str):
    node = data
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            raise AuthenticityFailure(f"Signed property {path!r} missing from event")
        node = node[part]
    return node


def event_checksum(data: dict, properties: list[str], timestamp, secret: str) -> str:
    chain = "".join(str(_lookup_path(data, prop)) for prop in properties)
    return sha256_hex(f"{chain}{timestamp}{secret}")


def _header(headers, name: str) -> str | None:
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        # plain dicts are case-sensitive
        value = headers.get(name.lower())
    return value


def verify_event(payload: dict, headers, settings: PaymentSettings, *, production: bool) -> bool:
    """
    Authenticate a webhook delivery.

    Returns True when the checksum verified, False when verification was
    skipped because no event secret is configured (non-production only).

    Raises:
        AuthenticityFailure: checksum missing/mismatched, or no secret in production
    """
    if not settings.event_secret:
        if production:
            raise AuthenticityFailure("Event secret not configured")
        return False

    signature = payload.get("signature") or {}
    if not isinstance(signature, dict):
        raise AuthenticityFailure("Event signature must be an object")
    provided = _header(headers, "X-Event-Checksum") or signature.get("checksum")
    if not provided:
        raise AuthenticityFailure("Missing event checksum")

    timestamp = payload.get("timestamp")
    if timestamp is None:
        timestamp = _header(headers, "X-Event-Timestamp")
    if timestamp is None:
        raise AuthenticityFailure("Missing event timestamp")

    properties = signature.get("properties") or DEFAULT_SIGNED_PROPERTIES
    if not isinstance(properties, list) or not all(isinstance(p, str) for p in properties):
        raise AuthenticityFailure("Event signature properties must be a list of names")
    data = payload.get("data") or {}
    expected = event_checksum(data, properties, timestamp, settings.event_secret)

    if not hmac.compare_digest(
        expected.lower().encode("utf-8"), str(provided).strip().lower().encode("utf-8")
    ):
        raise AuthenticityFailure("Event checksum mismatch")
    return True
