# Overview: Catalog tool endpoints called by the conversational agent.

from flask import Blueprint, current_app, jsonify, request

from ..services import catalog_service
from ..services.errors import ResolutionFailure

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("/search")
def search_products_route():
    """
    Products with stock, optionally filtered.

    Query params: q (matches model, brand, sku), category
    """
    try:
        products = catalog_service.search_products(
            query=request.args.get("q") or None,
            category=request.args.get("category") or None,
        )
        return jsonify({"products": products, "count": len(products)}), 200
    except Exception:
        current_app.logger.exception("Product search failed")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/stock")
def check_stock_route():
    """
    Availability of one size.

    Query params: product (name, SKU or id), size
    """
    product = request.args.get("product")
    size = request.args.get("size")
    if not product or not size:
        return jsonify({"error": "product and size required"}), 400

    try:
        return jsonify(catalog_service.check_stock(product, size)), 200
    except ResolutionFailure as e:
        return jsonify({"error": e.message, "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Stock check failed")
        return jsonify({"error": "Internal server error"}), 500
