"""Checkout service — builds Stripe Checkout Sessions.

Two modes share the entry point but diverge in side effects:

- payment: a one-off restaurant order from a QR ordering session. Creates a
  fresh Stripe customer for every order, prices the cart from our own menu
  (never from the client), applies any loyalty discount as a one-off coupon,
  and embeds the cart + correlation ids in the session metadata so the
  webhook can build the order without a second lookup.
- subscription: a recurring plan. Reuses the user's Stripe customer at this
  restaurant (creating it on first use) and makes sure a placeholder
  subscription row exists before redirecting to Stripe.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import SQLAlchemyError

from tabletap.errors import InvalidRequest, PersistenceError, Unauthenticated, Unauthorized
from tabletap.extensions import db
from tabletap.models.restaurant import MenuItem, OrderSession
from tabletap.schemas import CartLine, CheckoutMetadata, dump_cart_payload
from tabletap.services.ledger_service import (
    discard_processor_customer,
    ensure_subscription_placeholder,
    resolve_or_create_customer,
)
from tabletap.services.loyalty_service import check_loyalty_discount

logger = logging.getLogger(__name__)

PAYMENT = "payment"
SUBSCRIPTION = "subscription"
MODES = (PAYMENT, SUBSCRIPTION)

CENT = Decimal("0.01")


@dataclass
class CartEntry:
    menu_item_id: str
    quantity: int
    special_instructions: str = None


@dataclass
class CheckoutIntent:
    mode: str
    success_url: str
    cancel_url: str
    restaurant_id: str
    price_id: str = None
    cart_items: list = field(default_factory=list)
    table_id: str = None
    session_id: str = None
    loyalty_user_ids: list = field(default_factory=list)


def to_minor_units(amount):
    """SGD -> cents, rounding half away from zero (12.345 -> 1235)."""
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ──────────────────────────────────────────────
# Request validation
# ──────────────────────────────────────────────

def _require_string(data, name, message=None):
    value = data.get(name)
    if value is None or value == "":
        raise InvalidRequest(message or f"{name} is required")
    if not isinstance(value, str):
        raise InvalidRequest(f"{name} must be of type string")
    value = value.strip()
    if not value:
        raise InvalidRequest(message or f"{name} is required")
    return value


def _parse_cart_entry(index, raw):
    if not isinstance(raw, dict):
        raise InvalidRequest(f"cart_items[{index}] must be an object")

    # The ordering UI sends the whole menu item; accept a bare id too.
    menu_item = raw.get("menu_item")
    menu_item_id = raw.get("menu_item_id")
    if not menu_item_id and isinstance(menu_item, dict):
        menu_item_id = menu_item.get("id")
    if not menu_item_id or not isinstance(menu_item_id, str):
        raise InvalidRequest(f"cart_items[{index}].menu_item_id is required")

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidRequest(f"cart_items[{index}].quantity must be a positive integer")

    notes = raw.get("special_instructions") or None
    if notes is not None and not isinstance(notes, str):
        raise InvalidRequest(f"cart_items[{index}].special_instructions must be of type string")

    return CartEntry(menu_item_id=menu_item_id, quantity=quantity, special_instructions=notes)


def parse_checkout_intent(data):
    """Validate a checkout request body into a CheckoutIntent.

    Raises InvalidRequest naming the first offending field. Runs before
    any side effect.
    """
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")

    restaurant_id = _require_string(data, "restaurantId")
    success_url = _require_string(data, "success_url")
    cancel_url = _require_string(data, "cancel_url")
    mode = _require_string(data, "mode")
    if mode not in MODES:
        raise InvalidRequest(f"mode must be one of: {', '.join(MODES)}")

    intent = CheckoutIntent(
        mode=mode,
        success_url=success_url,
        cancel_url=cancel_url,
        restaurant_id=restaurant_id,
    )

    if mode == SUBSCRIPTION:
        intent.price_id = _require_string(
            data, "price_id", "price_id is required for subscription mode"
        )
        return intent

    cart_items = data.get("cart_items")
    if not isinstance(cart_items, list) or not cart_items:
        raise InvalidRequest("cart_items must be a non-empty list")
    intent.cart_items = [_parse_cart_entry(i, raw) for i, raw in enumerate(cart_items)]
    intent.table_id = _require_string(data, "table_id")
    intent.session_id = _require_string(data, "session_id")

    loyalty_user_ids = data.get("loyalty_user_ids") or []
    if not isinstance(loyalty_user_ids, list) or not all(
        isinstance(v, str) for v in loyalty_user_ids
    ):
        raise InvalidRequest("loyalty_user_ids must be a list of strings")
    intent.loyalty_user_ids = loyalty_user_ids

    return intent


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_checkout_session(intent, user, gateway):
    """Create a Stripe Checkout Session for a validated intent.

    `gateway` must be bound to the intent's restaurant (see
    tenant_service.gateway_for_restaurant).

    Returns {"sessionId": ..., "url": ...}.
    """
    if user is None:
        raise Unauthenticated("Failed to authenticate user")

    logger.info(f"Creating {intent.mode} checkout for restaurant {intent.restaurant_id}")
    if intent.mode == PAYMENT:
        session = _create_order_checkout(intent, user, gateway)
    else:
        session = _create_subscription_checkout(intent, user, gateway)

    return {"sessionId": session.id, "url": session.url}


def _resolve_order_session(intent):
    order_session = db.session.get(OrderSession, intent.session_id)
    if order_session is None:
        raise InvalidRequest("session_id does not match an ordering session")
    if (order_session.restaurant_id != intent.restaurant_id
            or order_session.table_id != intent.table_id):
        raise Unauthorized("Ordering session does not belong to this restaurant and table")
    if not order_session.is_active:
        raise InvalidRequest("Ordering session is no longer active")
    return order_session


def _resolve_cart(intent):
    """Price every cart entry from the restaurant's menu.

    Returns a list of (MenuItem, CartLine).
    """
    ids = {entry.menu_item_id for entry in intent.cart_items}
    menu = {
        item.id: item
        for item in MenuItem.query.filter(
            MenuItem.restaurant_id == intent.restaurant_id,
            MenuItem.id.in_(list(ids)),
        ).all()
    }

    resolved = []
    for index, entry in enumerate(intent.cart_items):
        item = menu.get(entry.menu_item_id)
        if item is None:
            raise InvalidRequest(f"cart_items[{index}] is not on this restaurant's menu")
        if not item.is_available:
            raise InvalidRequest(f"cart_items[{index}] ({item.name}) is not available")

        price = Decimal(item.price_sgd or 0).quantize(CENT, rounding=ROUND_HALF_UP)
        if price <= 0:
            raise InvalidRequest(f"cart_items[{index}] ({item.name}) has no valid price")

        resolved.append((item, CartLine(
            menu_item_id=item.id,
            quantity=entry.quantity,
            unit_price_sgd=price,
            special_instructions=entry.special_instructions,
        )))
    return resolved


def _line_item(item, line, currency):
    price_data = {
        "currency": currency,
        "unit_amount": to_minor_units(line.unit_price_sgd),
    }
    # Reference the synced product when there is one so the webhook can
    # match line items back to the menu.
    if item.stripe_product_id:
        price_data["product"] = item.stripe_product_id
    else:
        price_data["product_data"] = {"name": item.name}
    return {"price_data": price_data, "quantity": line.quantity}


def _create_order_checkout(intent, user, gateway):
    _resolve_order_session(intent)
    resolved = _resolve_cart(intent)
    lines = [line for _, line in resolved]

    subtotal = sum((line.total_price_sgd for line in lines), Decimal("0"))
    discount = check_loyalty_discount(
        intent.restaurant_id, intent.loyalty_user_ids, subtotal
    )

    # Every restaurant order gets its own Stripe customer; nothing is reused.
    customer = gateway.create_customer(
        email=user.email, metadata={"userId": user.id}
    )
    logger.info(f"Created Stripe customer {customer.id} for order checkout")

    metadata = CheckoutMetadata(
        restaurant_id=intent.restaurant_id,
        table_id=intent.table_id,
        session_id=intent.session_id,
        user_id=user.id,
        loyalty_user_ids=intent.loyalty_user_ids or None,
        discount_applied=discount.discount_applied,
        triggering_user_id=discount.triggering_user_id,
        discount_amount=discount.discount_amount,
    )

    params = {
        "customer": customer.id,
        "payment_method_types": ["card"],
        "line_items": [_line_item(item, line, gateway.currency) for item, line in resolved],
        "mode": PAYMENT,
        "success_url": intent.success_url,
        "cancel_url": intent.cancel_url,
        "client_reference_id": intent.session_id,
        "metadata": metadata.to_stripe_metadata(dump_cart_payload(lines)),
    }

    if discount.discount_applied:
        coupon = gateway.create_coupon(to_minor_units(discount.discount_amount))
        params["discounts"] = [{"coupon": coupon.id}]

    session = gateway.create_checkout_session(**params)
    logger.info(
        f"Created checkout session {session.id} for table {intent.table_id}, "
        f"session {intent.session_id}"
    )
    return session


def _create_subscription_checkout(intent, user, gateway):
    mapping, created = resolve_or_create_customer(user, intent.restaurant_id, gateway)
    customer_id = mapping.stripe_customer_id

    try:
        ensure_subscription_placeholder(
            customer_id, user_id=user.id, restaurant_id=intent.restaurant_id
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to save subscription placeholder for {customer_id}: {e}")
        if created:
            discard_processor_customer(gateway, customer_id)
        raise PersistenceError("Failed to save subscription information") from e

    session = gateway.create_checkout_session(
        customer=customer_id,
        payment_method_types=["card"],
        line_items=[{"price": intent.price_id, "quantity": 1}],
        mode=SUBSCRIPTION,
        success_url=intent.success_url,
        cancel_url=intent.cancel_url,
        metadata={"user_id": user.id, "restaurant_id": intent.restaurant_id},
    )
    logger.info(f"Created checkout session {session.id} for customer {customer_id}")
    return session
