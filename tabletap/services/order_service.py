"""Order service — turns a completed Checkout Session into an order.

materialize_order() is called from the webhook (and the reconcile-checkout
CLI command). Stripe delivers events at least once, so it is keyed on the
checkout session id: orders.stripe_checkout_session_id is unique and a
second delivery returns the order the first one created.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tabletap.errors import PartialReconciliationError, PersistenceError
from tabletap.extensions import db
from tabletap.models.order import Order, OrderItem, OrderNumberSequence
from tabletap.models.restaurant import MenuItem, OrderSession
from tabletap.schemas import CartLine, CheckoutMetadata, parse_cart_payload
from tabletap.services.loyalty_service import update_loyalty_spending
from tabletap.services.tenant_service import gateway_for_restaurant

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ORDER_NOTES = "Payment completed via Stripe"


def _from_minor_units(amount):
    return (Decimal(amount) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


# ──────────────────────────────────────────────
# Order numbers
# ──────────────────────────────────────────────

def next_order_number(restaurant_id, today=None):
    """Allocate the restaurant's next order number for the day.

    Format: YYYYMMDD-NNNN, counting from 0001 each day. The counter row is
    bumped with a single UPDATE so concurrent webhooks never share a number.
    Must run before anything else is added to the session: losing the race
    to create the day's row rolls the session back.
    """
    today = today or datetime.now(timezone.utc).date()
    table = OrderNumberSequence.__table__
    match = (table.c.restaurant_id == restaurant_id) & (table.c.business_date == today)

    for attempt in range(3):
        result = db.session.execute(
            update(table).where(match).values(last_value=table.c.last_value + 1)
        )
        if result.rowcount:
            value = db.session.execute(select(table.c.last_value).where(match)).scalar_one()
            break

        # First order of the day for this restaurant
        db.session.add(OrderNumberSequence(
            restaurant_id=restaurant_id, business_date=today, last_value=1
        ))
        try:
            db.session.flush()
            value = 1
            break
        except IntegrityError:
            db.session.rollback()
            logger.info(f"Order number row for {restaurant_id} created concurrently; retrying")
    else:
        raise PersistenceError("Failed to allocate order number")

    return f"{today:%Y%m%d}-{value:04d}"


# ──────────────────────────────────────────────
# Line items
# ──────────────────────────────────────────────

def _menu_items(restaurant_id, column, values):
    """Menu items of a restaurant keyed by `column`, limited to `values`."""
    if not values:
        return {}
    items = MenuItem.query.filter(
        MenuItem.restaurant_id == restaurant_id,
        getattr(MenuItem, column).in_(list(values)),
    ).all()
    return {getattr(item, column): item for item in items}


def _lines_from_payload(lines, restaurant_id):
    menu = _menu_items(restaurant_id, "id", {line.menu_item_id for line in lines})
    kept = []
    for line in lines:
        if line.menu_item_id not in menu:
            logger.warning(
                f"Skipping cart line for unknown menu item {line.menu_item_id} "
                f"at restaurant {restaurant_id}"
            )
            continue
        kept.append(line)
    return kept


def _product_id(line_item):
    price = line_item.get("price") or {}
    product = price.get("product")
    if product and not isinstance(product, str):
        product = product.get("id")
    return product


def _lines_from_processor(session_id, restaurant_id, gateway):
    """Rebuild cart lines from Stripe's line items.

    Each line item is matched to a menu item through stripe_product_id.
    Unmatched items are skipped; they never block the order.
    """
    gateway = gateway or gateway_for_restaurant(restaurant_id)
    line_items = gateway.list_line_items(session_id)
    menu = _menu_items(
        restaurant_id,
        "stripe_product_id",
        {p for p in map(_product_id, line_items) if p},
    )

    lines = []
    for line_item in line_items:
        product_id = _product_id(line_item)
        item = menu.get(product_id)
        if item is None:
            logger.warning(
                f"Skipping line item {line_item.get('id')}: no menu item for "
                f"product {product_id}"
            )
            continue

        price = line_item.get("price") or {}
        try:
            lines.append(CartLine(
                menu_item_id=item.id,
                quantity=line_item.get("quantity") or 1,
                unit_price_sgd=_from_minor_units(price.get("unit_amount") or 0),
            ))
        except ValidationError as e:
            logger.warning(f"Skipping line item {line_item.get('id')}: {e}")
    return lines


def _resolve_lines(checkout_session, restaurant_id, gateway):
    metadata = checkout_session.get("metadata") or {}
    embedded = parse_cart_payload(metadata.get("cart_items"))
    if embedded:
        return _lines_from_payload(embedded, restaurant_id)

    logger.info(
        f"No usable cart payload on {checkout_session.get('id')}; "
        f"fetching line items from Stripe"
    )
    return _lines_from_processor(checkout_session.get("id"), restaurant_id, gateway)


# ──────────────────────────────────────────────
# Materialization
# ──────────────────────────────────────────────

def _order_for_session(stripe_session_id):
    return Order.query.filter_by(stripe_checkout_session_id=stripe_session_id).first()


def materialize_order(checkout_session, gateway=None):
    """Persist the order for a completed restaurant Checkout Session.

    Writes the order, its items and the loyalty credit in one transaction.
    Returns (Order, created). A session that already has an order returns
    that order with created=False.

    Raises PartialReconciliationError when the session can't be tied to a
    restaurant order, PersistenceError when the write fails and
    UpstreamProcessorError when the line-item fallback can't reach Stripe.
    """
    stripe_session_id = checkout_session.get("id")

    existing = _order_for_session(stripe_session_id)
    if existing:
        logger.info(f"Order {existing.order_number} already exists for {stripe_session_id}")
        return existing, False

    try:
        metadata = CheckoutMetadata.model_validate(dict(checkout_session.get("metadata") or {}))
    except ValidationError as e:
        raise PartialReconciliationError(
            "Checkout session metadata is not a restaurant order", details=str(e)
        ) from e

    order_session = db.session.get(OrderSession, metadata.session_id)
    if order_session is None:
        raise PartialReconciliationError(f"Ordering session {metadata.session_id} not found")

    restaurant_id = metadata.restaurant_id or order_session.restaurant_id
    if restaurant_id != order_session.restaurant_id:
        raise PartialReconciliationError(
            f"Ordering session {metadata.session_id} does not belong to restaurant {restaurant_id}"
        )
    if metadata.table_id != order_session.table_id:
        raise PartialReconciliationError(
            f"Ordering session {metadata.session_id} is not for table {metadata.table_id}"
        )

    # Stripe round trip (if any) happens before the transaction opens.
    lines = _resolve_lines(checkout_session, restaurant_id, gateway)
    if not lines:
        logger.warning(f"Order for {stripe_session_id} has no matching line items")

    amount_subtotal = checkout_session.get("amount_subtotal")
    amount_total = checkout_session.get("amount_total")
    subtotal = (
        _from_minor_units(amount_subtotal) if amount_subtotal is not None
        else sum((line.total_price_sgd for line in lines), Decimal("0.00"))
    )
    total = _from_minor_units(amount_total) if amount_total is not None else subtotal

    try:
        order = Order(
            restaurant_id=restaurant_id,
            session_id=metadata.session_id,
            table_id=metadata.table_id,
            stripe_checkout_session_id=stripe_session_id,
            stripe_payment_intent_id=checkout_session.get("payment_intent"),
            order_number=next_order_number(restaurant_id),
            loyalty_user_ids=metadata.loyalty_user_ids,
            subtotal_sgd=subtotal,
            discount_sgd=metadata.discount_amount.quantize(CENT, rounding=ROUND_HALF_UP),
            total_sgd=total,
            discount_applied=metadata.discount_applied,
            triggering_user_id=metadata.triggering_user_id,
            status="confirmed",
            notes=ORDER_NOTES,
        )
        db.session.add(order)
        db.session.flush()

        db.session.add_all([
            OrderItem(
                order_id=order.id,
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                unit_price_sgd=line.unit_price_sgd,
                total_price_sgd=line.total_price_sgd,
                special_instructions=line.special_instructions,
            )
            for line in lines
        ])

        if metadata.triggering_user_id:
            update_loyalty_spending(restaurant_id, metadata.triggering_user_id, total)

        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        existing = _order_for_session(stripe_session_id)
        if existing:
            logger.info(
                f"Concurrent delivery already created order {existing.order_number} "
                f"for {stripe_session_id}"
            )
            return existing, False
        raise PersistenceError("Failed to save order", details=str(e.orig)) from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError("Failed to save order", details=str(e)) from e

    logger.info(
        f"Created order {order.order_number} for restaurant {restaurant_id} "
        f"({len(lines)} items, total {total})"
    )
    return order, True
