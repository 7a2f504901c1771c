"""Stripe event model (processed-event log).

Every webhook event that reaches a handler and completes is recorded by its
Stripe event ID. A redelivered event whose ID is already here is skipped
before any handler runs. Orders carry their own uniqueness guarantee
(orders.stripe_checkout_session_id), so this table is the fast path, not
the only guard.
"""

import uuid

from tabletap.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
