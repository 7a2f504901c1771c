"""Tests for the webhooks blueprint and Stripe event reconciliation.

Covers:
- Webhook signature verification (missing, tampered, valid, unsigned mode)
- Classification (restaurant order, subscription sync, ignored)
- checkout.session.completed -> order + items (embedded cart and fallback)
- At-least-once delivery: duplicates never create a second order
- Unknown event types (acknowledged, no database mutation)
- Failures after acknowledgement are audited, not surfaced
- Background dispatch on a daemon thread with its own app context
- customer.subscription.* -> subscription sync
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

import pytest

from tabletap.extensions import db
from tabletap.models.audit import AuditEvent
from tabletap.models.billing import StripeCustomer, StripeSubscription
from tabletap.models.loyalty import LoyaltyMember
from tabletap.models.order import Order, OrderItem
from tabletap.models.stripe_event import StripeEvent
from tabletap.services.webhook_service import (
    IGNORED,
    RESTAURANT_ORDER,
    SUBSCRIPTION_SYNC,
    classify_event,
    handle_event,
)

WEBHOOK_SECRET = "whsec_test_fake"


def sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_event(client, event, secret=WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/stripe/webhooks",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": sign(payload, secret)},
    )


def order_metadata(seed_data, cart=True, **extra):
    metadata = {
        "restaurant_id": seed_data["restaurant_id"],
        "table_id": "T5",
        "session_id": "S9",
        "user_id": seed_data["user_id"],
        "discount_applied": "false",
        "discount_amount": "0.00",
    }
    if cart:
        metadata["cart_items"] = json.dumps(
            [{"id": seed_data["burger_id"], "qty": 2, "price": "12.50"}],
            separators=(",", ":"),
        )
    metadata.update(extra)
    return metadata


def checkout_completed(event_id="evt_checkout_1", session_id="cs_test_burger",
                       metadata=None, amount_subtotal=2500, amount_total=2500, **extra):
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "payment_status": "paid",
        "payment_intent": "pi_test_burger",
        "amount_subtotal": amount_subtotal,
        "amount_total": amount_total,
        "metadata": metadata or {},
    }
    obj.update(extra)
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": obj},
    }


def _row_counts():
    return {
        model.__tablename__: model.query.count()
        for model in (Order, OrderItem, StripeEvent, AuditEvent, StripeSubscription, LoyaltyMember)
    }


class TestWebhookSignature:
    """Authenticity checks happen before anything else."""

    def test_missing_signature_returns_400(self, client, seed_data):
        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Missing signature"}

    def test_tampered_body_rejected(self, client, seed_data):
        event = checkout_completed(metadata=order_metadata(seed_data))
        payload = json.dumps(event)
        header = sign(payload)
        tampered = payload.replace("2500", "1")

        resp = client.post(
            "/stripe/webhooks",
            data=tampered,
            content_type="application/json",
            headers={"Stripe-Signature": header},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid signature"
        assert Order.query.count() == 0

    def test_wrong_secret_rejected(self, client, seed_data):
        event = {"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}
        resp = post_event(client, event, secret="whsec_someone_else")
        assert resp.status_code == 400

    def test_stale_timestamp_rejected(self, client, seed_data):
        payload = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}})
        resp = client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign(payload, timestamp=int(time.time()) - 3600)},
        )
        assert resp.status_code == 400

    def test_valid_signature_accepted(self, client, seed_data):
        event = {"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}
        resp = post_event(client, event)
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

    def test_unsigned_mode_accepts_payload(self, client, seed_data, app, monkeypatch, caplog):
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_ALLOW_UNSIGNED", True)

        resp = client.post(
            "/stripe/webhooks",
            data=json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}),
            content_type="application/json",
            headers={"Stripe-Signature": "unsigned"},
        )
        assert resp.status_code == 200
        assert "WITHOUT signature verification" in caplog.text

    def test_missing_secret_without_flag_fails_closed(self, client, seed_data, app, monkeypatch):
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_ALLOW_UNSIGNED", False)

        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "unsigned"},
        )
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "STRIPE_WEBHOOK_SECRET is not configured"

    def test_get_returns_405(self, client):
        resp = client.get("/stripe/webhooks")
        assert resp.status_code == 405
        assert resp.get_json() == {"error": "Method not allowed"}


class TestClassification:
    """Event routing."""

    def test_order_checkout(self, seed_data):
        event = checkout_completed(metadata=order_metadata(seed_data))
        assert classify_event(event) == RESTAURANT_ORDER

    def test_subscription_checkout(self):
        event = checkout_completed(metadata={}, mode="subscription", customer="cus_1")
        assert classify_event(event) == SUBSCRIPTION_SYNC

    def test_payment_checkout_without_table_metadata(self):
        event = checkout_completed(metadata={"session_id": "S9"})
        assert classify_event(event) == IGNORED

    @pytest.mark.parametrize("event_type", [
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ])
    def test_subscription_events(self, event_type):
        event = {"id": "evt_1", "type": event_type, "data": {"object": {"customer": "cus_1"}}}
        assert classify_event(event) == SUBSCRIPTION_SYNC

    def test_unknown_event(self):
        assert classify_event({"id": "evt_1", "type": "charge.refunded"}) == IGNORED


class TestOrderMaterialization:
    """checkout.session.completed for a restaurant order."""

    def test_burger_scenario_creates_order(self, client, seed_data, fake_gateway):
        resp = post_event(client, checkout_completed(metadata=order_metadata(seed_data)))
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        order = Order.query.one()
        assert order.subtotal_sgd == Decimal("25.00")
        assert order.total_sgd == Decimal("25.00")
        assert order.status == "confirmed"
        assert order.notes == "Payment completed via Stripe"
        assert order.table_id == "T5"
        assert order.session_id == "S9"
        assert order.restaurant_id == seed_data["restaurant_id"]
        assert order.stripe_checkout_session_id == "cs_test_burger"
        assert order.stripe_payment_intent_id == "pi_test_burger"
        assert len(order.order_number) == len("YYYYMMDD-NNNN")
        assert order.order_number.endswith("-0001")

        items = OrderItem.query.all()
        assert len(items) == 1
        assert items[0].menu_item_id == seed_data["burger_id"]
        assert items[0].quantity == 2
        assert items[0].unit_price_sgd == Decimal("12.50")
        assert items[0].total_price_sgd == Decimal("25.00")

        # Embedded cart means no second round trip to Stripe
        assert fake_gateway.called("list_line_items") == []

        assert StripeEvent.query.filter_by(stripe_event_id="evt_checkout_1").count() == 1
        audit = AuditEvent.query.filter_by(action="order.materialized").one()
        assert audit.metadata_["order_number"] == order.order_number

    def test_duplicate_delivery_creates_one_order(self, client, seed_data, fake_gateway):
        event = checkout_completed(metadata=order_metadata(seed_data))
        for _ in range(3):
            assert post_event(client, event).status_code == 200

        assert Order.query.count() == 1
        assert OrderItem.query.count() == 1
        assert StripeEvent.query.count() == 1

    def test_redelivery_under_new_event_id_creates_one_order(self, client, seed_data, fake_gateway):
        metadata = order_metadata(seed_data)
        assert post_event(client, checkout_completed("evt_a", metadata=metadata)).status_code == 200
        assert post_event(client, checkout_completed("evt_b", metadata=metadata)).status_code == 200

        assert Order.query.count() == 1
        assert OrderItem.query.count() == 1

    def test_order_numbers_increment(self, client, seed_data, fake_gateway):
        metadata = order_metadata(seed_data)
        post_event(client, checkout_completed("evt_a", session_id="cs_a", metadata=metadata))
        post_event(client, checkout_completed("evt_b", session_id="cs_b", metadata=metadata))

        numbers = sorted(o.order_number for o in Order.query.all())
        assert [n[-4:] for n in numbers] == ["0001", "0002"]
        assert numbers[0][:8] == numbers[1][:8]

    def test_falls_back_to_stripe_line_items(self, client, seed_data, fake_gateway):
        fake_gateway.line_items = [
            {"id": "li_1", "quantity": 2,
             "price": {"unit_amount": 1250, "product": {"id": "prod_burger"}}},
            {"id": "li_2", "quantity": 1,
             "price": {"unit_amount": 500, "product": "prod_not_on_menu"}},
        ]
        event = checkout_completed(
            metadata=order_metadata(seed_data, cart=False),
            amount_subtotal=3000, amount_total=3000,
        )
        assert post_event(client, event).status_code == 200

        assert fake_gateway.called("list_line_items") == [{"session_id": "cs_test_burger"}]
        order = Order.query.one()
        # Amounts always come from Stripe, even when lines are skipped
        assert order.subtotal_sgd == Decimal("30.00")
        items = OrderItem.query.all()
        assert len(items) == 1
        assert items[0].menu_item_id == seed_data["burger_id"]
        assert items[0].unit_price_sgd == Decimal("12.50")

    def test_malformed_cart_payload_falls_back(self, client, seed_data, fake_gateway):
        fake_gateway.line_items = [
            {"id": "li_1", "quantity": 2, "price": {"unit_amount": 1250, "product": "prod_burger"}},
        ]
        metadata = order_metadata(seed_data, cart=False, cart_items='[{"id": "x", "qty": "lots"')
        assert post_event(client, checkout_completed(metadata=metadata)).status_code == 200

        assert len(fake_gateway.called("list_line_items")) == 1
        assert OrderItem.query.count() == 1

    def test_loyalty_spend_credited(self, client, seed_data, fake_gateway):
        db.session.add(LoyaltyMember(
            restaurant_id=seed_data["restaurant_id"], user_id="loyal-vip",
            total_spent_sgd=Decimal("95.00"), order_count=4,
        ))
        db.session.commit()

        metadata = order_metadata(
            seed_data,
            loyalty_user_ids=json.dumps(["loyal-vip"]),
            discount_applied="true",
            discount_amount="2.50",
            triggering_user_id="loyal-vip",
        )
        event = checkout_completed(metadata=metadata, amount_subtotal=2500, amount_total=2250)
        assert post_event(client, event).status_code == 200

        order = Order.query.one()
        assert order.discount_applied is True
        assert order.discount_sgd == Decimal("2.50")
        assert order.total_sgd == Decimal("22.50")
        assert order.loyalty_user_ids == ["loyal-vip"]
        assert order.triggering_user_id == "loyal-vip"

        member = LoyaltyMember.query.filter_by(user_id="loyal-vip").one()
        assert member.total_spent_sgd == Decimal("117.50")
        assert member.order_count == 5
        assert member.discount_eligible is True

    def test_failure_is_acknowledged_and_audited(self, client, seed_data, fake_gateway):
        metadata = order_metadata(seed_data, session_id="S404")
        resp = post_event(client, checkout_completed(metadata=metadata))

        assert resp.status_code == 200
        assert Order.query.count() == 0
        # Not recorded as processed, so a manual replay can still run
        assert StripeEvent.query.count() == 0
        audit = AuditEvent.query.filter_by(action="order.materialization_failed").one()
        assert audit.restaurant_id == seed_data["restaurant_id"]
        assert audit.metadata_["stripe_event_id"] == "evt_checkout_1"
        assert "S404" in audit.metadata_["error"]

    def test_unexpected_error_is_acknowledged(self, client, seed_data, fake_gateway):
        with patch(
            "tabletap.services.webhook_service.materialize_order",
            side_effect=RuntimeError("boom"),
        ):
            resp = post_event(client, checkout_completed(metadata=order_metadata(seed_data)))
        assert resp.status_code == 200
        assert AuditEvent.query.filter_by(action="order.materialization_failed").count() == 1

    def test_duplicate_lookup_error_is_audited(self, app, seed_data, fake_gateway):
        from sqlalchemy.exc import OperationalError

        with patch("tabletap.services.webhook_service.StripeEvent") as stripe_event:
            stripe_event.query.filter_by.side_effect = OperationalError(
                "SELECT", {}, Exception("database is locked")
            )
            result = handle_event(app, checkout_completed(metadata=order_metadata(seed_data)))

        assert result == "failed"
        assert Order.query.count() == 0
        audit = AuditEvent.query.filter_by(action="order.materialization_failed").one()
        assert "database is locked" in audit.metadata_["error"]


class TestIgnoredEvents:
    """Unrecognised events are acknowledged with no side effects."""

    @pytest.mark.parametrize("event_type", [
        "invoice.paid",
        "charge.refunded",
        "payment_intent.succeeded",
    ])
    def test_unknown_event_no_mutation(self, client, seed_data, fake_gateway, event_type):
        before = _row_counts()
        resp = post_event(client, {
            "id": "evt_unknown_1",
            "type": event_type,
            "data": {"object": {"id": "obj_1", "customer": "cus_1"}},
        })
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}
        assert _row_counts() == before
        assert fake_gateway.calls == []

    def test_payment_checkout_without_metadata_no_mutation(self, client, seed_data, fake_gateway):
        before = _row_counts()
        resp = post_event(client, checkout_completed(metadata={}))
        assert resp.status_code == 200
        assert _row_counts() == before


class TestSubscriptionEvents:
    """customer.subscription.* and subscription-mode checkouts resync."""

    def _mapping(self, seed_data, customer_id="cus_sub_1"):
        db.session.add(StripeCustomer(
            user_id=seed_data["user_id"],
            restaurant_id=seed_data["restaurant_id"],
            stripe_customer_id=customer_id,
        ))
        db.session.commit()

    def test_subscription_updated_syncs(self, client, seed_data, fake_gateway):
        self._mapping(seed_data)
        fake_gateway.subscription = {
            "id": "sub_1",
            "status": "active",
            "cancel_at_period_end": False,
            "cancel_at": None,
            "items": {"data": [{
                "price": {"id": "price_monthly_club"},
                "current_period_start": 1760000000,
                "current_period_end": 1762592000,
            }]},
            "default_payment_method": {"card": {"brand": "visa", "last4": "4242"}},
        }

        resp = post_event(client, {
            "id": "evt_sub_1",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "customer": "cus_sub_1"}},
        })
        assert resp.status_code == 200

        # Routed to the restaurant's own Stripe account
        fake_gateway.cls.assert_called_with("sk_test_restaurant_fake", currency="sgd")
        record = StripeSubscription.query.filter_by(customer_id="cus_sub_1").one()
        assert record.status == "active"
        assert record.subscription_id == "sub_1"
        assert record.price_id == "price_monthly_club"
        assert record.payment_method_brand == "visa"
        assert record.payment_method_last4 == "4242"
        assert record.user_id == seed_data["user_id"]
        assert AuditEvent.query.filter_by(action="subscription.synced").count() == 1

    def test_subscription_checkout_completed_syncs(self, client, seed_data, fake_gateway):
        self._mapping(seed_data)
        event = checkout_completed(
            session_id="cs_sub_1", metadata={"user_id": seed_data["user_id"]},
            mode="subscription", customer="cus_sub_1",
        )
        assert post_event(client, event).status_code == 200

        assert fake_gateway.called("latest_subscription") == [{"customer_id": "cus_sub_1"}]
        record = StripeSubscription.query.filter_by(customer_id="cus_sub_1").one()
        assert record.status == "not_started"
        assert Order.query.count() == 0

    def test_deleted_subscription_syncs_canceled(self, client, seed_data, fake_gateway):
        self._mapping(seed_data)
        fake_gateway.subscription = {"id": "sub_1", "status": "canceled", "items": {"data": []}}

        resp = post_event(client, {
            "id": "evt_sub_del",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_1", "customer": "cus_sub_1"}},
        })
        assert resp.status_code == 200
        record = StripeSubscription.query.filter_by(customer_id="cus_sub_1").one()
        assert record.status == "canceled"

    def test_sync_failure_is_audited(self, client, seed_data, fake_gateway):
        from tabletap.errors import UpstreamProcessorError

        self._mapping(seed_data)
        fake_gateway.fail_with["latest_subscription"] = UpstreamProcessorError(
            "Stripe subscription lookup failed", details="No such customer"
        )
        resp = post_event(client, {
            "id": "evt_sub_fail",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "customer": "cus_sub_1"}},
        })
        assert resp.status_code == 200
        assert StripeSubscription.query.count() == 0
        assert AuditEvent.query.filter_by(action="subscription.sync_failed").count() == 1


class TestBackgroundDispatch:
    """The default "thread" mode acknowledges before the handler runs."""

    @pytest.fixture
    def threaded_app(self, tmp_path):
        from tabletap import create_app
        from tabletap.config import TestConfig

        class ThreadedConfig(TestConfig):
            SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'webhooks.db'}"
            SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False}}
            WEBHOOK_DISPATCH_MODE = "thread"

        with patch.dict("tabletap.config_by_name", {"threaded": ThreadedConfig}):
            threaded = create_app("threaded")

        with threaded.app_context():
            db.create_all()
        yield threaded
        with threaded.app_context():
            db.drop_all()
            db.engine.dispose()

    def test_acknowledges_before_handler_runs(self, threaded_app, fake_gateway):
        import threading

        from flask import has_app_context

        from tabletap.services import webhook_service

        fake_gateway.subscription = {
            "id": "sub_1",
            "status": "active",
            "items": {"data": [{"price": {"id": "price_monthly_club"}}]},
        }
        release = threading.Event()
        seen = []
        real_handle_event = webhook_service.handle_event

        def _gated(app, event):
            release.wait(5)
            seen.append((threading.current_thread().name, has_app_context()))
            seen.append(real_handle_event(app, event))

        with patch("tabletap.services.webhook_service.handle_event", _gated):
            resp = post_event(threaded_app.test_client(), {
                "id": "evt_thread_1",
                "type": "customer.subscription.updated",
                "data": {"object": {"id": "sub_1", "customer": "cus_thread_1"}},
            })

            assert resp.status_code == 200
            assert resp.get_json() == {"received": True}
            assert seen == []

            worker = next(
                t for t in threading.enumerate() if t.name == "stripe-webhook-evt_thread_1"
            )
            assert worker.daemon is True
            release.set()
            worker.join(5)

        # No app context is inherited; handle_event pushes its own.
        assert seen == [("stripe-webhook-evt_thread_1", False), "processed"]
        with threaded_app.app_context():
            record = StripeSubscription.query.filter_by(customer_id="cus_thread_1").one()
            assert record.status == "active"
            assert StripeEvent.query.count() == 1
