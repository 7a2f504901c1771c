"""Checkout blueprint — /api/checkout

Called by the QR ordering UI (and the subscription page) to start a Stripe
Checkout. Bearer-authenticated JSON API with CORS.

Route Map:
  POST    /api/checkout — Create a Checkout Session, returns {sessionId, url}
  OPTIONS /api/checkout — CORS preflight
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from tabletap.decorators import bearer_required
from tabletap.extensions import limiter
from tabletap.services.checkout_service import create_checkout_session, parse_checkout_intent
from tabletap.services.tenant_service import gateway_for_restaurant

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


@checkout_bp.after_request
def _cors_response(response):
    """Add CORS headers to every checkout response, errors included."""
    response.headers["Access-Control-Allow-Origin"] = current_app.config["CORS_ALLOWED_ORIGIN"]
    response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "authorization, x-client-info, apikey, content-type"
    return response


@checkout_bp.route("/checkout", methods=["OPTIONS"])
def checkout_preflight():
    """Handle CORS preflight requests."""
    return "", 204


@checkout_bp.route("/checkout", methods=["POST"], provide_automatic_options=False)
@limiter.limit("30 per minute")
@bearer_required
def checkout():
    """Create a Checkout Session for the authenticated user.

    Validation runs before anything touches Stripe or the database.
    Errors are rendered by the TableTapError handler in create_app().
    """
    intent = parse_checkout_intent(request.get_json(silent=True))
    gateway = gateway_for_restaurant(intent.restaurant_id)

    result = create_checkout_session(intent, g.user, gateway)
    return jsonify(result), 200
