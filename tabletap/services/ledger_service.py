"""Ledger service — Stripe customer mapping and subscription mirror.

Responsible for:
- Resolving (or lazily creating) the Stripe customer for a user at a restaurant
- Inserting the placeholder subscription row before checkout
- Re-syncing stripe_subscriptions from Stripe (last write wins)
- Best-effort cleanup of Stripe customers orphaned by a failed write
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tabletap.errors import PersistenceError
from tabletap.extensions import db
from tabletap.models.billing import StripeCustomer, StripeSubscription
from tabletap.services.tenant_service import gateway_for_customer

logger = logging.getLogger(__name__)


def _extract_period_bound(sub_data, field):
    """Extract current_period_start / current_period_end from a subscription.

    Newer Stripe API versions moved these from the subscription top level
    to items.data[0]; check both. Returns a timezone-aware datetime or None.
    """
    ts = sub_data.get(field)

    if not ts:
        items = sub_data.get("items")
        if items and items.get("data") and len(items["data"]) > 0:
            ts = items["data"][0].get(field)

    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def _extract_price_id(sub_data):
    items = sub_data.get("items")
    if items and items.get("data"):
        price = items["data"][0].get("price") or {}
        return price.get("id")
    return None


def discard_processor_customer(gateway, customer_id):
    """Delete a Stripe customer we created but couldn't record.

    Never raises: a failed cleanup is logged and left for manual review.
    """
    try:
        gateway.delete_customer(customer_id)
        logger.info(f"Deleted orphaned Stripe customer {customer_id}")
    except Exception as e:
        logger.error(f"Failed to clean up Stripe customer {customer_id}: {e}")


def get_customer_mapping(user_id, restaurant_id):
    return StripeCustomer.query.filter_by(
        user_id=user_id, restaurant_id=restaurant_id
    ).first()


def resolve_or_create_customer(user, restaurant_id, gateway):
    """Get the user's Stripe customer at this restaurant, creating it if needed.

    Uses flush() so the caller controls the commit boundary.
    Returns (StripeCustomer, created).

    If a concurrent request inserted the mapping first, the unique
    constraint rejects ours: the winner's mapping is returned and the
    customer we just created is deleted from Stripe.
    """
    mapping = get_customer_mapping(user.id, restaurant_id)
    if mapping:
        return mapping, False

    customer = gateway.create_customer(
        email=user.email,
        metadata={"userId": user.id, "restaurantId": restaurant_id},
    )
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")

    mapping = StripeCustomer(
        user_id=user.id,
        restaurant_id=restaurant_id,
        stripe_customer_id=customer.id,
        email=user.email,
    )
    db.session.add(mapping)

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        winner = get_customer_mapping(user.id, restaurant_id)
        discard_processor_customer(gateway, customer.id)
        if winner is None:
            raise PersistenceError("Failed to save customer information")
        logger.warning(
            f"Lost customer-mapping race for user {user.id}; "
            f"using {winner.stripe_customer_id}"
        )
        return winner, False
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to save customer mapping for user {user.id}: {e}")
        discard_processor_customer(gateway, customer.id)
        raise PersistenceError("Failed to save customer information") from e

    return mapping, True


def _subscription_for(customer_id):
    return StripeSubscription.query.filter_by(customer_id=customer_id).first()


def ensure_subscription_placeholder(customer_id, user_id=None, restaurant_id=None):
    """Insert an 'incomplete' subscription row if the customer has none.

    Uses flush() so the caller controls the commit boundary. The insert runs
    in a savepoint: if a concurrent request wrote the row first, only the
    savepoint is rolled back and the existing row is returned.
    """
    record = _subscription_for(customer_id)
    if record:
        return record

    record = StripeSubscription(
        customer_id=customer_id,
        user_id=user_id,
        restaurant_id=restaurant_id,
        status="incomplete",
    )
    try:
        with db.session.begin_nested():
            db.session.add(record)
    except IntegrityError:
        winner = _subscription_for(customer_id)
        if winner is None:
            raise
        logger.info(f"Subscription row for {customer_id} created concurrently")
        return winner
    return record


def _subscription_values(sub):
    """Map a Stripe subscription onto stripe_subscriptions columns."""
    # Stripe uses cancel_at_period_end OR cancel_at (a future timestamp)
    # to indicate the subscription is set to cancel. Treat either as cancelling.
    is_cancelling = bool(
        sub.get("cancel_at_period_end", False) or sub.get("cancel_at") is not None
    )
    values = {
        "subscription_id": sub.get("id"),
        "price_id": _extract_price_id(sub),
        "current_period_start": _extract_period_bound(sub, "current_period_start"),
        "current_period_end": _extract_period_bound(sub, "current_period_end"),
        "cancel_at_period_end": is_cancelling,
        "status": sub.get("status"),
    }

    # Only an expanded payment method tells us the card; a bare id doesn't.
    payment_method = sub.get("default_payment_method")
    if payment_method and not isinstance(payment_method, str):
        card = payment_method.get("card") or {}
        values["payment_method_brand"] = card.get("brand")
        values["payment_method_last4"] = card.get("last4")

    return values


def _upsert_subscription(customer_id, values):
    record = StripeSubscription.query.filter_by(customer_id=customer_id).first()
    if record is None:
        mapping = StripeCustomer.query.filter_by(
            stripe_customer_id=customer_id
        ).first()
        record = StripeSubscription(
            customer_id=customer_id,
            user_id=mapping.user_id if mapping else None,
            restaurant_id=mapping.restaurant_id if mapping else None,
        )
        db.session.add(record)

    for column, value in values.items():
        setattr(record, column, value)
    return record


def sync_from_processor(customer_id, gateway=None):
    """Overwrite the customer's subscription row with Stripe's current state.

    Safe to call any number of times: the row is keyed by customer_id and
    always replaced with what Stripe reports, so concurrent syncs converge.
    Returns the StripeSubscription row.
    """
    gateway = gateway or gateway_for_customer(customer_id)
    subscription = gateway.latest_subscription(customer_id)

    if subscription is None:
        logger.info(f"No subscriptions found for customer {customer_id}")
        values = {"status": "not_started"}
    else:
        values = _subscription_values(subscription)

    for attempt in range(2):
        record = _upsert_subscription(customer_id, values)
        try:
            db.session.commit()
            break
        except IntegrityError:
            # Another sync inserted the row first; retry as an update.
            db.session.rollback()
            if attempt:
                raise PersistenceError("Failed to sync subscription in database")
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError("Failed to sync subscription in database") from e

    logger.info(f"Synced subscription for customer {customer_id}: {record.status}")
    return record
