from flask import Blueprint, request, jsonify, g, current_app

from services import booking_requests, payment_reconciliation
from services.errors import UnknownOrder
from security.rbac import login_required
from routes.serializers import payment_to_dict

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/orders")
@login_required
def create_order():
    data = request.get_json(silent=True) or {}
    try:
        request_id = int(data.get("booking_request_id"))
    except (TypeError, ValueError):
        return jsonify(error="booking_request_id required"), 400

    record = payment_reconciliation.create_order(request_id, g.user)
    return jsonify(payment_to_dict(record)), 201


@payments_bp.get("/return")
def payment_return():
    # Browser lands here from the gateway; the outcome is re-checked with
    # the gateway, the query string alone proves nothing.
    order_id = request.args.get("order_id")
    if not order_id:
        return jsonify(error="order_id required"), 400

    record = payment_reconciliation.verify_return(order_id)
    base_url = current_app.config.get("FRONTEND_BASE_URL", "http://localhost:5173").rstrip("/")
    return jsonify(payment=payment_to_dict(record), next_url=f"{base_url}/bookings"), 200


@payments_bp.get("/orders/<order_id>/status")
@login_required
def order_status(order_id: str):
    # one poll step; clients call this every PAYMENT_POLL_INTERVAL_SECONDS
    record = payment_reconciliation.find_order(order_id)
    req = booking_requests.get_request(record.booking_request_id)
    if req.requester_id != g.user.id:
        raise UnknownOrder(order_id=order_id)
    record = payment_reconciliation.check_order(order_id)
    return jsonify(
        payment=payment_to_dict(record),
        poll_interval_seconds=current_app.config.get("PAYMENT_POLL_INTERVAL_SECONDS", 5),
    ), 200
