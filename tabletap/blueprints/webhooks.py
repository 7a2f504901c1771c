"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. Raw body is required for signature
verification. Side effects run after the response (see webhook_service).
"""

import logging

from flask import Blueprint, request, jsonify

from tabletap.errors import SignatureInvalid
from tabletap.services.webhook_service import construct_event, dispatch_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive a Stripe webhook event.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Dispatch to handle_event (idempotent via stripe_events table)
    4. Return 200 to acknowledge receipt, whatever handling does later
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = construct_event(payload, sig_header)
    except SignatureInvalid as e:
        logger.warning(f"Webhook signature verification failed: {e.details}")
        return jsonify(e.to_dict()), 400

    # --- Dispatch (ack does not wait for the side effect) ---
    outcome = dispatch_event(event)
    logger.info(f"Webhook {event['type']} ({event['id']}): {outcome}")

    return jsonify({"received": True}), 200
