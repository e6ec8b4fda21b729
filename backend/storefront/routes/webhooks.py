# Overview: Inbound payment provider webhooks.

from flask import Blueprint, jsonify, request

from ..services import reconciliation_service

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/payments")
def payment_events_route():
    """
    Wompi event delivery.

    Headers: X-Event-Checksum, X-Event-Timestamp (body fields take the same role)
    Body: {"event", "data": {"transaction": {...}}, "signature": {...}, "timestamp"}

    Returns:
        200: handled (including ignored and duplicate events)
        401: checksum rejected
        404: unknown payment reference
        500: internal error (provider will retry)
    """
    payload = request.get_json(silent=True)
    result = reconciliation_service.handle_payment_event(payload, request.headers)
    return jsonify(result.body), result.status_code
