"""Stripe gateway — every Stripe API call goes through here.

A StripeGateway is bound to one account's secret key and is constructed
per invocation (see tenant_service). The key is passed to each SDK call via
api_key=, so nothing touches the process-wide stripe.api_key and two
restaurants' requests can never see each other's credentials.

Stripe SDK errors are re-raised as UpstreamProcessorError with the
processor's message attached as details.
"""

import logging

import stripe

from tabletap.errors import UpstreamProcessorError

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, api_key, currency="sgd"):
        self.api_key = api_key
        self.currency = currency

    def _call(self, what, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe {what} failed: {message}")
            raise UpstreamProcessorError(
                f"Stripe {what} failed", details=message
            ) from e

    # ──────────────────────────────────────────────
    # Customers
    # ──────────────────────────────────────────────

    def create_customer(self, email=None, metadata=None):
        params = {"metadata": metadata or {}}
        if email:
            params["email"] = email
        return self._call("customer creation", stripe.Customer.create, **params)

    def delete_customer(self, customer_id):
        return self._call("customer deletion", stripe.Customer.delete, customer_id)

    # ──────────────────────────────────────────────
    # Checkout
    # ──────────────────────────────────────────────

    def create_coupon(self, amount_off, name="Loyalty discount"):
        """One-off fixed-amount coupon, amount_off in minor units."""
        return self._call(
            "coupon creation",
            stripe.Coupon.create,
            amount_off=amount_off,
            currency=self.currency,
            duration="once",
            name=name,
        )

    def create_checkout_session(self, **params):
        return self._call(
            "checkout session creation", stripe.checkout.Session.create, **params
        )

    def retrieve_checkout_session(self, session_id):
        return self._call(
            "checkout session lookup", stripe.checkout.Session.retrieve, session_id
        )

    def list_line_items(self, session_id):
        """Return the line items of a checkout session as a list."""
        result = self._call(
            "line item lookup",
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=100,
            expand=["data.price.product"],
        )
        return list(result.get("data") or [])

    # ──────────────────────────────────────────────
    # Products & prices (menu sync)
    # ──────────────────────────────────────────────

    def retrieve_product(self, product_id):
        return self._call("product lookup", stripe.Product.retrieve, product_id)

    def create_product(self, name, description=None, metadata=None):
        params = {"name": name, "metadata": metadata or {}}
        if description:
            params["description"] = description
        return self._call("product creation", stripe.Product.create, **params)

    def update_product(self, product_id, name, description=None):
        params = {"name": name}
        if description:
            params["description"] = description
        return self._call("product update", stripe.Product.modify, product_id, **params)

    def create_price(self, product_id, unit_amount, metadata=None):
        """One-time price in the gateway currency, unit_amount in minor units."""
        return self._call(
            "price creation",
            stripe.Price.create,
            product=product_id,
            unit_amount=unit_amount,
            currency=self.currency,
            metadata=metadata or {},
        )

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def latest_subscription(self, customer_id):
        """Most recent subscription of a customer in any status, or None.

        A customer is assumed to hold at most one subscription.
        """
        result = self._call(
            "subscription lookup",
            stripe.Subscription.list,
            customer=customer_id,
            limit=1,
            status="all",
            expand=["data.default_payment_method"],
        )
        data = result.get("data") or []
        return data[0] if data else None
