# Overview: Order builder; validates a basket, reserves stock, persists the order, issues checkout.

"""
Order Builder

FLOW (create_order):
1. Validate basket and shipping input.
2. Resolve payment settings once; fail with PaymentConfigMissing BEFORE
   touching stock so a misconfigured store never leaves partial state.
3. Resolve every item to (product, variant) and snapshot the current price.
4. Reserve each line through the stock ledger. If any reservation fails,
   release every reservation already made in this call, then fail.
5. Insert Order (awaiting_payment) + OrderItems in one transaction. If that
   fails, compensate the reservations the same way.
6. Issue the signed checkout URL. If that fails, the order is cancelled and
   its stock released immediately instead of waiting for the sweeper.

Stock is reduced the moment the order exists (reserve-first); the payment
webhook or the expiry sweeper gives it back if the buyer never pays.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Customer, Order, OrderItem
from ..models.orders import STATUS_AWAITING_PAYMENT, STATUS_CANCELLED
from .catalog_service import find_variant, resolve_product
from .concurrency import run_with_retry
from .errors import (
    CheckoutLinkFailure,
    InsufficientStock,
    StorefrontError,
    UnknownOrder,
    ValidationFailure,
)
from .lifecycle_service import transition_order
from .payment_provider import build_checkout_url
from .settings_service import require_checkout_credentials, resolve_payment_settings
from . import stock_service


@dataclass
class _Line:
    """A resolved basket line with its price snapshot."""
    product_id: int
    variant_id: int
    qty: int
    unit_price_cents: int
    label: str


@dataclass
class OrderResult:
    success: bool
    checkout_url: str | None = None
    order: Order | None = None
    error: str | None = None
    code: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def failure(cls, exc: StorefrontError) -> "OrderResult":
        return cls(success=False, error=exc.message, code=exc.code, details=exc.details)

    def to_dict(self) -> dict:
        if not self.success:
            data = {"success": False, "error": self.error, "code": self.code}
            if self.details:
                data["details"] = self.details
            return data
        return {
            "success": True,
            "checkout_url": self.checkout_url,
            "order": self.order.to_dict() if self.order is not None else None,
        }


def _parse_quantity(raw) -> int:
    if raw is None:
        return 1
    if isinstance(raw, bool):
        raise ValidationFailure("quantity must be a positive integer")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, str):
        try:
            raw = int(raw.strip())
        except ValueError:
            raise ValidationFailure("quantity must be a positive integer") from None
    if not isinstance(raw, int) or raw <= 0:
        raise ValidationFailure("quantity must be a positive integer")
    if raw > stock_service.MAX_QUANTITY:
        raise ValidationFailure(f"quantity must not exceed {stock_service.MAX_QUANTITY}")
    return raw


def _parse_items(items) -> list[tuple[str, object, int]]:
    if not isinstance(items, list) or not items:
        raise ValidationFailure("items must be a non-empty list")

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationFailure(f"items[{index}] must be an object")
        reference = item.get("product_ref", item.get("product_id"))
        if reference is None or str(reference).strip() == "":
            raise ValidationFailure(f"items[{index}].product_ref is required")
        size = item.get("size")
        if size is None or str(size).strip() == "":
            raise ValidationFailure(f"items[{index}].size is required")
        parsed.append((str(reference), size, _parse_quantity(item.get("quantity"))))
    return parsed


def _parse_shipping(shipping) -> dict:
    shipping = shipping or {}
    out = {}
    for key in ("shipping_name", "shipping_address", "shipping_city"):
        value = shipping.get(key) or shipping.get(key.replace("shipping_", ""))
        value = (value or "").strip() if isinstance(value, str) else value
        if not value:
            raise ValidationFailure(f"{key} is required")
        out[key] = value
    return out


def new_payment_reference() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _resolve_lines(parsed: list[tuple[str, object, int]]) -> list[_Line]:
    lines = []
    for reference, size, qty in parsed:
        product = resolve_product(reference)
        variant = find_variant(product, size)
        lines.append(_Line(
            product_id=product.id,
            variant_id=variant.id,
            qty=qty,
            unit_price_cents=product.price_cents,
            label=f"{product.display_name} talla {size}",
        ))
    return lines


def _release_all(reserved: list[_Line]) -> None:
    """Compensate reservations made earlier in the same call."""
    for line in reversed(reserved):
        try:
            stock_service.release(line.variant_id, line.qty)
        except Exception:
            # Keep compensating the rest; this line needs manual correction.
            current_app.logger.exception(
                "Compensating release failed for variant %s qty %s", line.variant_id, line.qty
            )


def _reserve_lines(lines: list[_Line]) -> list[_Line]:
    reserved: list[_Line] = []
    try:
        for line in lines:
            stock_service.reserve(line.variant_id, line.qty)
            reserved.append(line)
    except InsufficientStock as exc:
        _release_all(reserved)
        line = lines[len(reserved)]
        raise type(exc)(
            f"No hay stock suficiente para {line.label}",
            details={**exc.details, "product_id": line.product_id},
        ) from exc
    except Exception:
        _release_all(reserved)
        raise
    return reserved


def _insert_order(customer_id: int, lines: list[_Line], shipping: dict, reference: str) -> int:
    total_cents = sum(line.unit_price_cents * line.qty for line in lines)

    def _op():
        order = Order(
            customer_id=customer_id,
            status=STATUS_AWAITING_PAYMENT,
            total_cents=total_cents,
            payment_reference=reference,
            **shipping,
        )
        db.session.add(order)
        db.session.flush()
        for line in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                qty=line.qty,
                unit_price_cents=line.unit_price_cents,
            ))
        db.session.commit()
        return order.id

    return run_with_retry(_op)


def _create_order(customer_id: int, items, shipping) -> tuple[Order, str]:
    parsed = _parse_items(items)
    shipping_fields = _parse_shipping(shipping)

    if db.session.get(Customer, customer_id) is None:
        raise ValidationFailure(f"Customer {customer_id} not found")

    settings = require_checkout_credentials(resolve_payment_settings())

    lines = _resolve_lines(parsed)
    reserved = _reserve_lines(lines)

    reference = new_payment_reference()
    try:
        order_id = _insert_order(customer_id, reserved, shipping_fields, reference)
    except Exception:
        db.session.rollback()
        _release_all(reserved)
        raise

    order = db.session.get(Order, order_id)
    try:
        checkout_url = build_checkout_url(
            settings, reference=reference, amount_cents=order.total_cents
        )
    except Exception as exc:
        current_app.logger.exception("Checkout link failed for order %s; releasing stock", order_id)
        transition_order(order_id, STATUS_CANCELLED)
        raise CheckoutLinkFailure("No se pudo generar el link de pago") from exc

    current_app.logger.info(
        "Order %s created (ref=%s, total=%s, units=%s)",
        order_id, reference, order.total_cents, sum(line.qty for line in reserved),
    )
    return order, checkout_url


def create_order(customer_id: int, items, shipping) -> OrderResult:
    """
    Create an order from a chat basket and return its checkout link.

    items: [{"product_ref": "jordan 1", "size": 42, "quantity": 1}, ...]
    shipping: {"shipping_name", "shipping_address", "shipping_city"}

    Never raises; failures come back as OrderResult(success=False, code=...).
    """
    try:
        order, checkout_url = _create_order(customer_id, items, shipping)
    except StorefrontError as exc:
        db.session.rollback()
        current_app.logger.info("Order creation rejected (%s): %s", exc.code, exc.message)
        return OrderResult.failure(exc)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Order creation failed for customer %s", customer_id)
        return OrderResult(success=False, error="Internal error", code="internal_error")

    return OrderResult(success=True, checkout_url=checkout_url, order=order)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise UnknownOrder(f"Order {order_id} not found")
    return order


def get_order_by_reference(reference: str) -> Order:
    order = db.session.query(Order).filter_by(payment_reference=reference).first()
    if order is None:
        raise UnknownOrder(f"No order with payment reference {reference!r}")
    return order
