# Overview: Store settings with stored-value > environment > default precedence.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import StoreSetting
from .errors import PaymentConfigMissing, ValidationFailure


# key -> (app config name used as environment default, built-in default, is_sensitive)
SETTINGS_CATALOG: dict[str, tuple[str, str | None, bool]] = {
    "payments.public_key": ("WOMPI_PUBLIC_KEY", None, False),
    "payments.integrity_secret": ("WOMPI_INTEGRITY_SECRET", None, True),
    "payments.event_secret": ("WOMPI_EVENT_SECRET", None, True),
    "payments.currency": ("PAYMENT_CURRENCY", "COP", False),
    "payments.checkout_base_url": ("PAYMENT_CHECKOUT_BASE_URL", "https://checkout.wompi.co/p/", False),
}


@dataclass(frozen=True)
class PaymentSettings:
    """
    Payment provider configuration resolved once per invocation.

    Handlers receive this object instead of looking settings up themselves,
    so one request never mixes values from two different sources.
    """
    public_key: str | None
    integrity_secret: str | None
    event_secret: str | None
    currency: str
    checkout_base_url: str

    @property
    def can_issue_checkout(self) -> bool:
        return bool(self.public_key and self.integrity_secret)


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _stored_values() -> dict[str, str | None]:
    rows = db.session.query(StoreSetting.key, StoreSetting.value).all()
    return {key: _blank_to_none(value) for key, value in rows}


def get_setting(key: str, *, stored: dict[str, str | None] | None = None) -> str | None:
    """
    Resolve a single setting.

    Precedence: stored setting, then app config (environment), then the
    catalog default. Blank values count as unset at every level.
    """
    if key not in SETTINGS_CATALOG:
        raise ValidationFailure(f"Unknown setting: {key}")
    config_name, default, _ = SETTINGS_CATALOG[key]

    if stored is None:
        stored = _stored_values()
    value = stored.get(key)
    if value is not None:
        return value

    value = _blank_to_none(current_app.config.get(config_name))
    if value is not None:
        return value
    return default


def set_setting(key: str, value: str | None) -> StoreSetting:
    """Create or update a stored setting. `None` clears the override."""
    if key not in SETTINGS_CATALOG:
        raise ValidationFailure(f"Unknown setting: {key}")
    row = db.session.query(StoreSetting).filter_by(key=key).first()
    if row is None:
        row = StoreSetting(key=key)
        db.session.add(row)
    row.value = value
    db.session.commit()
    return row


def list_settings(*, mask_sensitive: bool = True) -> list[dict]:
    stored = _stored_values()
    out = []
    for key, (config_name, _, sensitive) in sorted(SETTINGS_CATALOG.items()):
        value = get_setting(key, stored=stored)
        if stored.get(key) is not None:
            source = "stored"
        elif _blank_to_none(current_app.config.get(config_name)) is not None:
            source = "environment"
        else:
            source = "default"
        if mask_sensitive and sensitive and value:
            value = "********"
        out.append({"key": key, "value": value, "source": source})
    return out


def resolve_payment_settings() -> PaymentSettings:
    stored = _stored_values()
    return PaymentSettings(
        public_key=get_setting("payments.public_key", stored=stored),
        integrity_secret=get_setting("payments.integrity_secret", stored=stored),
        event_secret=get_setting("payments.event_secret", stored=stored),
        currency=get_setting("payments.currency", stored=stored) or "COP",
        checkout_base_url=get_setting("payments.checkout_base_url", stored=stored)
        or "https://checkout.wompi.co/p/",
    )


def require_checkout_credentials(settings: PaymentSettings) -> PaymentSettings:
    if not settings.can_issue_checkout:
        raise PaymentConfigMissing(
            "Payment credentials missing (public key / integrity secret)"
        )
    return settings
