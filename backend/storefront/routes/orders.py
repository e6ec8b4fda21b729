# Overview: Order API routes; order creation for the agent plus admin lifecycle actions.

"""
Order API Routes

DESIGN:
- POST /api/orders is the agent's create_order tool. Business failures
  (no stock, unknown product, payment not configured) come back as JSON
  errors with a stable `code` the agent can act on.
- Dispatch and delivery are admin actions; the status change is the
  response, the customer notification rides along as advisory info.
- POST /api/orders/sweep-expired lets an external scheduler trigger the
  expiry sweep when cron on the host is not available.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import (
    customer_service,
    expiry_service,
    fulfillment_service,
    order_service,
)
from ..services.errors import StorefrontError, UnknownOrder


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

# Result code -> HTTP status for failed order creation
CREATE_ERROR_STATUS = {
    "validation_failure": 400,
    "resolution_failure": 404,
    "insufficient_stock": 409,
    "concurrency_exhausted": 409,
    "payment_config_missing": 503,
    "checkout_link_failure": 502,
}

TRANSITION_ERROR_STATUS = {
    "validation_failure": 400,
    "unknown_order": 404,
    "invalid_transition": 409,
}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@orders_bp.post("")
def create_order_route():
    """
    Create an order and return the checkout link.

    Request body:
    {
        "customer_id": 12,                     (or "phone" + optional "name")
        "items": [{"product_ref": "jordan 1", "size": 42, "quantity": 1}],
        "shipping_name": "Ana",
        "shipping_address": "Cra 7 # 12-34",
        "shipping_city": "Bogotá"
    }

    Returns:
        201: {success, checkout_url, order}
        400/404/409/502/503: {success: false, error, code}
    """
    data = _json_body()

    try:
        customer_id = data.get("customer_id")
        if customer_id is None:
            phone = data.get("phone")
            if not phone:
                return jsonify({"error": "customer_id or phone required"}), 400
            customer_id = customer_service.get_or_create_customer(phone, data.get("name")).id
        customer_id = int(customer_id)
    except StorefrontError as e:
        return jsonify({"error": e.message, "code": e.code}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "customer_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to resolve customer")
        return jsonify({"error": "Internal server error"}), 500

    result = order_service.create_order(customer_id, data.get("items"), data)
    if result.success:
        return jsonify(result.to_dict()), 201
    return jsonify(result.to_dict()), CREATE_ERROR_STATUS.get(result.code, 500)


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except UnknownOrder as e:
        return jsonify({"error": e.message, "code": e.code}), 404
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/dispatch")
def dispatch_order_route(order_id: int):
    """
    Mark a paid order as shipped.

    Request body: {"carrier_name": "Servientrega", "tracking_number": "123"}
    """
    data = _json_body()
    result = fulfillment_service.dispatch(
        order_id, data.get("carrier_name"), data.get("tracking_number")
    )
    if result.success:
        return jsonify(result.to_dict()), 200
    return jsonify(result.to_dict()), TRANSITION_ERROR_STATUS.get(result.code, 500)


@orders_bp.post("/<int:order_id>/deliver")
def deliver_order_route(order_id: int):
    """Mark a shipped order as delivered."""
    result = fulfillment_service.mark_delivered(order_id)
    if result.success:
        return jsonify(result.to_dict()), 200
    return jsonify(result.to_dict()), TRANSITION_ERROR_STATUS.get(result.code, 500)


@orders_bp.post("/sweep-expired")
def sweep_expired_route():
    """
    Expire abandoned orders and release their stock.

    Request body (optional): {"hours": 2}
    """
    data = _json_body()
    summary = expiry_service.sweep_expired_orders(threshold_hours=data.get("hours"))
    # No cutoff means the threshold itself was rejected
    status = 400 if summary.cutoff is None and summary.errors else 200
    return jsonify(summary.to_dict()), status
