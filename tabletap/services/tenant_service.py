"""Tenant service — resolves which Stripe account a request acts against.

Each restaurant connects its own Stripe account (restaurants.stripe_secret_key).
Restaurant checkouts, line-item lookups and the restaurant's subscription
customers all live in that account; the platform key in STRIPE_SECRET_KEY
is only used for customers that aren't mapped to a restaurant.
"""

import logging

from flask import current_app

from tabletap.errors import ConfigurationError
from tabletap.extensions import db
from tabletap.models.billing import StripeCustomer
from tabletap.models.restaurant import Restaurant
from tabletap.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def resolve_stripe_secret(restaurant_id):
    """Return the restaurant's Stripe secret key.

    Raises ConfigurationError (404) if the restaurant doesn't exist and
    ConfigurationError (400) if it has no key configured.
    """
    restaurant = db.session.get(Restaurant, restaurant_id) if restaurant_id else None
    if restaurant is None:
        logger.warning(f"Restaurant not found: {restaurant_id}")
        raise ConfigurationError("Restaurant not found", status_code=404)

    if not restaurant.stripe_secret_key:
        logger.error(f"Restaurant {restaurant_id} has no Stripe secret key configured")
        raise ConfigurationError(
            "Stripe not configured for this restaurant", status_code=400
        )

    return restaurant.stripe_secret_key


def gateway_for_restaurant(restaurant_id):
    return StripeGateway(
        resolve_stripe_secret(restaurant_id),
        currency=current_app.config["CHECKOUT_CURRENCY"],
    )


def platform_gateway():
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
    return StripeGateway(api_key, currency=current_app.config["CHECKOUT_CURRENCY"])


def gateway_for_customer(customer_id):
    """Gateway for the Stripe account that holds this customer."""
    mapping = StripeCustomer.query.filter_by(
        stripe_customer_id=customer_id
    ).first()
    if mapping:
        return gateway_for_restaurant(mapping.restaurant_id)
    return platform_gateway()
