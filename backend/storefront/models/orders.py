from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Order lifecycle states
STATUS_AWAITING_PAYMENT = "awaiting_payment"
STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"

ORDER_STATUSES = {
    STATUS_AWAITING_PAYMENT,
    STATUS_PAID,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
}


class Order(db.Model):
    """
    Customer purchase attempt created from a chat conversation.

    STATE MACHINE:
        awaiting_payment -> paid -> shipped -> delivered
        awaiting_payment -> cancelled   (payment declined/voided/error)
        awaiting_payment -> expired     (abandoned checkout, swept)

    STOCK: reserved when the order is created (reserve-first). Released only
    on the awaiting_payment -> cancelled|expired edges, which are guarded
    conditional updates so a release can happen at most once per order.

    Orders are never deleted; cancelled and expired ones are kept for audit.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("payment_reference", name="uq_orders_payment_reference"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=STATUS_AWAITING_PAYMENT)

    # Sum of unit_price_cents * qty over items, fixed at creation
    total_cents = db.Column(db.Integer, nullable=False)

    # Provider-facing idempotency key
    payment_reference = db.Column(db.String(64), nullable=False)

    shipping_name = db.Column(db.String(255), nullable=False)
    shipping_address = db.Column(db.String(512), nullable=False)
    shipping_city = db.Column(db.String(128), nullable=False)

    carrier_name = db.Column(db.String(128), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", back_populates="order", lazy=True, order_by="OrderItem.id")
    payments = db.relationship("Payment", back_populates="order", lazy=True, order_by="Payment.id")

    @property
    def short_id(self) -> str:
        return self.payment_reference.split("-")[-1].upper()

    def __repr__(self) -> str:
        return f"<Order id={self.id} ref={self.payment_reference!r} status={self.status!r}>"

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "payment_reference": self.payment_reference,
            "shipping_name": self.shipping_name,
            "shipping_address": self.shipping_address,
            "shipping_city": self.shipping_city,
            "carrier_name": self.carrier_name,
            "tracking_number": self.tracking_number,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class OrderItem(db.Model):
    """
    Line item; immutable after creation.

    unit_price_cents is a snapshot of Product.price_cents at order time.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_order_items_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")
    variant = db.relationship("Variant")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Reconciliation record mirroring the provider's view of a transaction.

    Upserted by reference: redelivered webhooks converge on the latest
    provider status instead of adding rows.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_payments_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    reference = db.Column(db.String(64), nullable=False)
    provider = db.Column(db.String(32), nullable=False, default="wompi")
    transaction_id = db.Column(db.String(128), nullable=True)

    # Lower-cased provider status: approved, declined, voided, error, pending
    status = db.Column(db.String(32), nullable=False)

    raw_event = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "reference": self.reference,
            "provider": self.provider,
            "transaction_id": self.transaction_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
