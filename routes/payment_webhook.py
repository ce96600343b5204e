from flask import Blueprint, request, jsonify, current_app

from services import payment_reconciliation
from services.errors import UnknownOrder

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    gateway = payment_reconciliation.get_gateway()
    event = gateway.parse_webhook(request.get_data(), request.headers.get("Stripe-Signature"))
    if event is None:
        return jsonify(received=True), 200

    try:
        changed = payment_reconciliation.handle_webhook_event(event)
    except UnknownOrder:
        # not ours (or already purged); acknowledge so the gateway stops retrying
        current_app.logger.warning("webhook for unknown order %s dropped", event.order_id)
        return jsonify(received=True, ignored=True), 200

    return jsonify(received=True, changed=changed), 200
