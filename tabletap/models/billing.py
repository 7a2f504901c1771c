"""Billing models.

- StripeCustomer: links a local user to a Stripe customer, scoped to the
  restaurant whose Stripe account holds that customer. At most one per
  (user, restaurant); never deleted by this service.
- StripeSubscription: mirrors the Stripe-side subscription state, one row
  per Stripe customer. Stripe is the source of truth: rows are overwritten
  on every sync, never merged.
"""

import uuid

from tabletap.extensions import db


class StripeCustomer(db.Model):
    __tablename__ = "stripe_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cus_Abc..."
    email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "restaurant_id", name="uq_stripe_customer_user_restaurant"
        ),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="stripe_customers")
    restaurant = db.relationship("Restaurant")

    def __repr__(self):
        return f"<StripeCustomer stripe={self.stripe_customer_id}>"


class StripeSubscription(db.Model):
    __tablename__ = "stripe_subscriptions"

    # -- Valid statuses (synced from Stripe, plus our placeholder) --
    STATUSES = [
        "not_started",
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # Stripe customer id, the upsert key
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=True
    )
    subscription_id = db.Column(db.String(255), nullable=True)
    price_id = db.Column(db.String(255), nullable=True)
    current_period_start = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    payment_method_brand = db.Column(db.String(50), nullable=True)
    payment_method_last4 = db.Column(db.String(4), nullable=True)
    status = db.Column(db.String(50), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<StripeSubscription {self.customer_id} ({self.status})>"
