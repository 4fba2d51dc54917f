import logging

from flask import Blueprint, request, jsonify
from app.services.webhook_service import process_stripe_event

webhooks_bp = Blueprint("webhooks", __name__)
log = logging.getLogger(__name__)


@webhooks_bp.post("/webhooks/stripe")
def stripe_webhook():
    try:
        status, resp = process_stripe_event(
            payload=request.get_data(),
            sig_header=request.headers.get("Stripe-Signature"),
        )
        return jsonify(resp), status
    except Exception:
        # Never leak stack traces to Stripe; a 500 makes it redeliver.
        log.exception("[webhook] unexpected error")
        return jsonify({"error": "internal error"}), 500
