from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class Product(db.Model):
    """
    Sellable catalog entry (one model/colorway of a shoe).

    PRICE: price_cents is the CURRENT catalog price. Orders snapshot it into
    order_items.unit_price_cents at creation time and never read it again.

    STOCK: lives on Variant, never on Product. A product is "in stock" when
    any of its variants has stock > 0.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active_category", "active", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    brand = db.Column(db.String(128), nullable=False)
    model = db.Column(db.String(255), nullable=False)
    colorway = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(64), nullable=True, index=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)

    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variants = db.relationship(
        "Variant",
        back_populates="product",
        lazy=True,
        order_by="Variant.size",
    )

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model}"

    @property
    def total_stock(self) -> int:
        return sum(v.stock or 0 for v in self.variants)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.display_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "brand": self.brand,
            "model": self.model,
            "name": self.display_name,
            "colorway": self.colorway,
            "category": self.category,
            "price_cents": self.price_cents,
            "active": self.active,
            "variants": [v.to_dict() for v in self.variants],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Variant(db.Model):
    """
    One size of a product; the unit of stock tracking.

    INVARIANT: stock >= 0, net of reservations. Mutated ONLY through
    services.stock_service (conditional UPDATE statements), never by
    assigning to the attribute and flushing.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "size", name="uq_variants_product_size"),
        db.CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # EU size, e.g. 42 or 42.5
    size = db.Column(db.Float, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", back_populates="variants")

    def __repr__(self) -> str:
        return f"<Variant id={self.id} product_id={self.product_id} size={self.size} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "size": self.size,
            "stock": self.stock,
        }
