# Overview: Product/variant resolution and the stock tools used by the chat agent.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, Variant
from .errors import ResolutionFailure

# Stripped before fuzzy matching ("las jordan" -> "jordan")
STOP_WORDS = {"el", "la", "los", "las", "un", "una", "de", "del", "en", "para"}

SCORE_EXACT = 50
SCORE_CONTAINS = 20
SCORE_IN_STOCK = 10
MIN_SCORE = 10


def _active_products() -> list[Product]:
    return db.session.query(Product).filter(Product.active.is_(True)).order_by(Product.id).all()


def _clean_search_term(text: str) -> str:
    words = text.lower().strip().split()
    return " ".join(w for w in words if w not in STOP_WORDS)


def _score(product: Product, term: str) -> int:
    brand_model = product.display_name.lower()
    full_text = f"{brand_model} {product.sku} {product.colorway or ''}".lower()

    score = 0
    if brand_model == term or product.model.lower() == term:
        score += SCORE_EXACT
    elif term in full_text:
        score += SCORE_CONTAINS

    # Stock only breaks ties between products that already matched on text
    if score > 0 and product.total_stock > 0:
        score += SCORE_IN_STOCK
    return score


def resolve_product(reference) -> Product:
    """
    Resolve free text or an identifier to an active product.

    Order of attempts: numeric id, exact SKU (case-insensitive), fuzzy
    match over "brand model sku colorway".

    Raises:
        ResolutionFailure: nothing matched well enough
    """
    raw = str(reference if reference is not None else "").strip()
    if not raw:
        raise ResolutionFailure("Product reference is empty")

    if raw.isdigit():
        product = db.session.get(Product, int(raw))
        if product is not None and product.active:
            return product

    products = _active_products()

    for product in products:
        if product.sku.lower() == raw.lower():
            return product

    term = _clean_search_term(raw)
    if len(term) < 2:
        raise ResolutionFailure(f"Product '{raw}' not found")

    best, best_score = None, 0
    for product in products:
        score = _score(product, term)
        if score > best_score:
            best, best_score = product, score

    if best is None or best_score < MIN_SCORE:
        raise ResolutionFailure(f"Product '{raw}' not found")

    current_app.logger.debug("Resolved %r -> %s (score %s)", raw, best.display_name, best_score)
    return best


def _same_size(a, b) -> bool:
    try:
        return float(a) == float(b)
    except (TypeError, ValueError):
        return False


def find_variant(product: Product, size) -> Variant:
    for variant in product.variants:
        if _same_size(variant.size, size):
            return variant
    raise ResolutionFailure(
        f"{product.display_name} is not offered in size {size}",
        details={"available_sizes": available_sizes(product)},
    )


def _format_size(size: float):
    return int(size) if float(size).is_integer() else size


def available_sizes(product: Product) -> list:
    return sorted(_format_size(v.size) for v in product.variants if v.stock > 0)


def search_products(query: str | None = None, category: str | None = None) -> list[dict]:
    """Active products with at least one size in stock, optionally filtered."""
    q = (
        db.session.query(Product)
        .join(Variant, Variant.product_id == Product.id)
        .filter(Product.active.is_(True), Variant.stock > 0)
    )
    if category:
        q = q.filter(Product.category.ilike(category))
    if query:
        like = f"%{query}%"
        q = q.filter(
            Product.model.ilike(like) | Product.brand.ilike(like) | Product.sku.ilike(like)
        )

    results = []
    for product in q.distinct().order_by(Product.id).all():
        results.append({
            "id": product.id,
            "name": product.display_name,
            "color": product.colorway,
            "price_cents": product.price_cents,
            "available_sizes": available_sizes(product),
        })
    return results


def check_stock(product_reference, size) -> dict:
    """Availability of one size; lists the sizes in stock when it is not available."""
    product = resolve_product(product_reference)
    sizes = available_sizes(product)
    for variant in product.variants:
        if _same_size(variant.size, size) and variant.stock > 0:
            return {
                "available": True,
                "product_id": product.id,
                "product_name": product.display_name,
                "size": _format_size(variant.size),
                "stock": variant.stock,
                "variant_id": variant.id,
            }
    return {
        "available": False,
        "product_id": product.id,
        "product_name": product.display_name,
        "size": size,
        "available_sizes": sizes,
    }
