"""Menu service — mirrors menu items into the restaurant's Stripe account.

Checkout references a menu item's Stripe product when it has one, and the
webhook's line-item fallback matches products back to menu items. Both rely
on stripe_product_id, which sync_menu_item() maintains.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from tabletap.errors import InvalidRequest, PersistenceError, UpstreamProcessorError
from tabletap.extensions import db
from tabletap.models.restaurant import MenuItem
from tabletap.services.checkout_service import to_minor_units
from tabletap.services.tenant_service import gateway_for_restaurant

logger = logging.getLogger(__name__)


def _existing_product(item, gateway):
    """The item's current Stripe product, updated to match, or None."""
    if not item.stripe_product_id:
        return None

    try:
        product = gateway.retrieve_product(item.stripe_product_id)
    except UpstreamProcessorError as e:
        logger.warning(
            f"Stripe product {item.stripe_product_id} for menu item {item.id} "
            f"is unavailable ({e.details}); creating a new one"
        )
        return None

    if (getattr(product, "name", None) != item.name
            or getattr(product, "description", None) != item.description):
        product = gateway.update_product(
            item.stripe_product_id, name=item.name, description=item.description
        )
    return product


def sync_menu_item(menu_item_id, gateway=None):
    """Create or update the Stripe product for a menu item and give it a price.

    A new Price is created on every sync: Stripe prices are immutable, so a
    price change means a new Price object. Returns the MenuItem with
    stripe_product_id and stripe_price_id set.
    """
    item = db.session.get(MenuItem, menu_item_id) if menu_item_id else None
    if item is None:
        raise InvalidRequest("Menu item not found", status_code=404)
    if item.price_sgd is None or item.price_sgd <= 0:
        raise InvalidRequest(f"Menu item {item.name} has no valid price")

    gateway = gateway or gateway_for_restaurant(item.restaurant_id)
    metadata = {"menu_item_id": item.id, "restaurant_id": item.restaurant_id}

    product = _existing_product(item, gateway)
    if product is None:
        product = gateway.create_product(
            name=item.name, description=item.description, metadata=metadata
        )
        logger.info(f"Created Stripe product {product.id} for menu item {item.id}")

    price = gateway.create_price(
        product.id, unit_amount=to_minor_units(item.price_sgd), metadata=metadata
    )

    item.stripe_product_id = product.id
    item.stripe_price_id = price.id
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to save Stripe ids for menu item {item.id}: {e}")
        raise PersistenceError("Failed to update menu item in database") from e

    logger.info(
        f"Synced menu item {item.id} to Stripe: product={product.id} price={price.id}"
    )
    return item
