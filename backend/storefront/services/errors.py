# Overview: Domain error taxonomy shared by the order lifecycle services.

from __future__ import annotations


class StorefrontError(ValueError):
    """
    Base class for expected, recoverable domain failures.

    `code` is a stable machine-readable identifier surfaced in API responses
    so the conversational agent can branch on it without parsing messages.
    """
    code = "storefront_error"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailure(StorefrontError):
    """Malformed basket or shipping input."""
    code = "validation_failure"


class InsufficientStock(StorefrontError):
    """Requested quantity exceeds the variant's available stock."""
    code = "insufficient_stock"


class ConcurrencyExhausted(InsufficientStock):
    """
    Stock ledger contention outlasted the retry budget.

    Subclasses InsufficientStock: callers tell the buyer the size is not
    available right now.
    """
    code = "concurrency_exhausted"


class ResolutionFailure(StorefrontError):
    """Product or size could not be resolved from the buyer's request."""
    code = "resolution_failure"


class PaymentConfigMissing(StorefrontError):
    """Payment credentials are not configured; checkout cannot be issued."""
    code = "payment_config_missing"


class AuthenticityFailure(StorefrontError):
    """Webhook checksum missing or wrong."""
    code = "authenticity_failure"


class UnknownOrder(StorefrontError):
    """No order matches the given id or payment reference."""
    code = "unknown_order"


class InvalidTransition(StorefrontError):
    """Order is not in a state that allows the requested transition."""
    code = "invalid_transition"


class CheckoutLinkFailure(StorefrontError):
    """Order was persisted but no checkout link could be issued for it."""
    code = "checkout_link_failure"
