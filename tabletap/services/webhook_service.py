"""Webhook service — verifies, classifies and reconciles Stripe events.

The blueprint acknowledges Stripe as soon as an event is verified and
dispatched; the side effects run afterwards in handle_event(), off the
request. Any failure from that point on is logged and audited but never
reaches Stripe: a 2xx already told it not to retry. The recovery path for
a lost order is `flask reconcile-checkout`.

Handled events:
- checkout.session.completed with table_id + session_id metadata → order
- checkout.session.completed in subscription mode → subscription sync
- customer.subscription.created / updated / deleted → subscription sync
Everything else is acknowledged and ignored.
"""

import json
import logging
import threading

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tabletap.errors import ConfigurationError, InvalidRequest, PartialReconciliationError, SignatureInvalid
from tabletap.extensions import db
from tabletap.models.audit import AuditEvent
from tabletap.models.restaurant import Restaurant
from tabletap.models.stripe_event import StripeEvent
from tabletap.schemas import has_order_correlation
from tabletap.services.ledger_service import sync_from_processor
from tabletap.services.order_service import materialize_order
from tabletap.services.tenant_service import gateway_for_restaurant

logger = logging.getLogger(__name__)

RESTAURANT_ORDER = "restaurant_order"
SUBSCRIPTION_SYNC = "subscription_sync"
IGNORED = "ignored"

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


# ──────────────────────────────────────────────
# Verification & classification
# ──────────────────────────────────────────────

def construct_event(payload, sig_header):
    """Verify the Stripe-Signature header and parse the event payload.

    Returns the event as a plain dict. Raises SignatureInvalid on a bad
    signature or unparseable payload.
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

    if secret:
        try:
            stripe.WebhookSignature.verify_header(
                payload, sig_header, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid("Invalid signature", details=str(e)) from e
    elif current_app.config.get("STRIPE_WEBHOOK_ALLOW_UNSIGNED"):
        logger.critical(
            "STRIPE_WEBHOOK_SECRET is not set; accepting webhook WITHOUT signature verification"
        )
    else:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise SignatureInvalid("Invalid payload", details=str(e)) from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise SignatureInvalid("Invalid payload", details="Not a Stripe event")
    return event


def _event_object(event):
    return (event.get("data") or {}).get("object") or {}


def classify_event(event):
    """Return RESTAURANT_ORDER, SUBSCRIPTION_SYNC or IGNORED."""
    event_type = event.get("type")
    obj = _event_object(event)

    if event_type == "checkout.session.completed":
        if has_order_correlation(obj.get("metadata")):
            return RESTAURANT_ORDER
        if obj.get("mode") == "subscription" and obj.get("customer"):
            return SUBSCRIPTION_SYNC
        return IGNORED

    if event_type in SUBSCRIPTION_EVENTS:
        return SUBSCRIPTION_SYNC

    return IGNORED


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

def dispatch_event(event):
    """Hand a verified event to handle_event() and return immediately.

    Returns "ignored" (nothing touched) or "dispatched". In "thread" mode
    the work runs on a daemon thread with its own app context; "inline"
    runs it before returning.
    """
    if classify_event(event) == IGNORED:
        logger.info(f"Ignoring {event.get('type')} event {event.get('id')}")
        return "ignored"

    app = current_app._get_current_object()
    if app.config.get("WEBHOOK_DISPATCH_MODE") == "inline":
        handle_event(app, event)
    else:
        thread = threading.Thread(
            target=handle_event,
            args=(app, event),
            name=f"stripe-webhook-{event.get('id')}",
        )
        thread.daemon = True
        thread.start()

    return "dispatched"


def handle_event(app, event):
    """Run the side effect for one event. Never raises.

    Idempotency: events already in stripe_events are skipped. Returns
    "already_processed", "processed", "ignored" or "failed".
    """
    with app.app_context():
        event_id = event.get("id")
        event_type = event.get("type")
        route = classify_event(event)
        obj = _event_object(event)

        try:
            if StripeEvent.query.filter_by(stripe_event_id=event_id).first():
                logger.info(f"Duplicate webhook event {event_id}, skipping")
                return "already_processed"

            if route == RESTAURANT_ORDER:
                _handle_restaurant_order(obj)
            elif route == SUBSCRIPTION_SYNC:
                _handle_subscription_sync(event_type, obj)
            else:
                return IGNORED
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            _record_failure(route, event, obj, e)
            return "failed"

        _record_event(event_id, event_type)
        return "processed"


# ──────────────────────────────────────────────
# Event handlers
# ──────────────────────────────────────────────

def _handle_restaurant_order(checkout_session):
    order, created = materialize_order(checkout_session)
    if created:
        _audit(
            "order.materialized",
            restaurant_id=order.restaurant_id,
            order_id=order.id,
            order_number=order.order_number,
            stripe_checkout_session_id=order.stripe_checkout_session_id,
        )


def _customer_id(obj):
    customer = obj.get("customer")
    if customer and not isinstance(customer, str):
        customer = customer.get("id")
    return customer


def _handle_subscription_sync(event_type, obj):
    customer_id = _customer_id(obj)
    if not customer_id:
        raise PartialReconciliationError(f"{event_type} carries no customer id")

    record = sync_from_processor(customer_id)
    _audit(
        "subscription.synced",
        restaurant_id=record.restaurant_id,
        actor_user_id=record.user_id,
        customer_id=customer_id,
        status=record.status,
        event_type=event_type,
    )


# ──────────────────────────────────────────────
# Bookkeeping
# ──────────────────────────────────────────────

def _audit(action, restaurant_id=None, actor_user_id=None, **metadata):
    """Stage an audit event; committed with the processed-event record."""
    if restaurant_id and db.session.get(Restaurant, restaurant_id) is None:
        metadata["restaurant_id"] = restaurant_id
        restaurant_id = None
    db.session.add(AuditEvent(
        restaurant_id=restaurant_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata,
    ))


def _record_event(event_id, event_type):
    db.session.add(StripeEvent(stripe_event_id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event finished first.
        db.session.rollback()
        logger.info(f"Webhook event {event_id} was recorded concurrently")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record webhook event {event_id}: {e}", exc_info=True)


def _record_failure(route, event, obj, error):
    if route == RESTAURANT_ORDER:
        action = "order.materialization_failed"
        restaurant_id = (obj.get("metadata") or {}).get("restaurant_id")
    else:
        action = "subscription.sync_failed"
        restaurant_id = None

    try:
        _audit(
            action,
            restaurant_id=restaurant_id,
            stripe_event_id=event.get("id"),
            event_type=event.get("type"),
            object_id=obj.get("id"),
            error=str(error),
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to record {action} for event {event.get('id')}: {e}")


# ──────────────────────────────────────────────
# Manual recovery
# ──────────────────────────────────────────────

def reconcile_checkout(restaurant_id, stripe_session_id):
    """Materialize the order for a checkout session fetched from Stripe.

    Used when the webhook's reconciliation failed after acknowledgement.
    Returns (Order, created).
    """
    gateway = gateway_for_restaurant(restaurant_id)
    checkout_session = gateway.retrieve_checkout_session(stripe_session_id)

    if checkout_session.get("payment_status") != "paid":
        raise InvalidRequest(
            f"Checkout session {stripe_session_id} is not paid "
            f"(payment_status={checkout_session.get('payment_status')})"
        )
    if not has_order_correlation(checkout_session.get("metadata")):
        raise InvalidRequest(f"Checkout session {stripe_session_id} is not a restaurant order")

    order, created = materialize_order(checkout_session, gateway=gateway)
    if created:
        _audit(
            "order.materialized",
            restaurant_id=order.restaurant_id,
            order_id=order.id,
            order_number=order.order_number,
            stripe_checkout_session_id=stripe_session_id,
            source="reconcile-checkout",
        )
        db.session.commit()
    return order, created
