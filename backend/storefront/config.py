# backend/storefront/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # "production" turns unsigned payment webhooks into hard failures
    APP_ENV = os.environ.get("APP_ENV", "development")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order lifecycle
    ORDER_EXPIRY_HOURS = float(os.environ.get("ORDER_EXPIRY_HOURS", "2"))
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))

    # Outbound calls
    HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "5"))
    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)

    # Payment provider (Wompi). Stored settings take precedence over these.
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "COP")
    PAYMENT_CHECKOUT_BASE_URL = os.environ.get(
        "PAYMENT_CHECKOUT_BASE_URL", "https://checkout.wompi.co/p/"
    )
    WOMPI_PUBLIC_KEY = os.environ.get("WOMPI_PUBLIC_KEY")
    WOMPI_INTEGRITY_SECRET = os.environ.get("WOMPI_INTEGRITY_SECRET")
    WOMPI_EVENT_SECRET = os.environ.get("WOMPI_EVENT_SECRET")

    # Messaging provider (Twilio WhatsApp)
    TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN")
    TWILIO_WHATSAPP_FROM = os.environ.get("TWILIO_WHATSAPP_FROM", "whatsapp:+14155238886")
    TWILIO_API_BASE_URL = os.environ.get("TWILIO_API_BASE_URL", "https://api.twilio.com/2010-04-01")
