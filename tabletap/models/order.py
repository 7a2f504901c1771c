"""Order models.

- Order: created exactly once per completed Stripe checkout session.
  stripe_checkout_session_id is unique; it is the idempotency key that
  keeps redelivered webhooks from creating a second order.
- OrderItem: one per line of an order, written in the same transaction.
- OrderNumberSequence: per-restaurant, per-day counter behind the
  human-facing order numbers ("20250715-0042").
"""

import uuid

from tabletap.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    STATUSES = [
        "pending",
        "confirmed",
        "preparing",
        "ready",
        "served",
        "paid",
        "completed",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    session_id = db.Column(
        db.String(36), db.ForeignKey("order_sessions.id"), nullable=False
    )
    table_id = db.Column(
        db.String(36), db.ForeignKey("restaurant_tables.id"), nullable=True
    )
    stripe_checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2..."
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    order_number = db.Column(db.String(20), nullable=False)
    loyalty_user_ids = db.Column(db.JSON, nullable=True)
    subtotal_sgd = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_sgd = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_sgd = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_applied = db.Column(db.Boolean, default=False, nullable=False)
    triggering_user_id = db.Column(db.String(36), nullable=True)
    status = db.Column(
        db.String(20), default="confirmed", nullable=False
    )  # see STATUSES
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "restaurant_id", "order_number", name="uq_order_restaurant_number"
        ),
    )

    # --- Relationships ---
    restaurant = db.relationship("Restaurant", back_populates="orders")
    items = db.relationship(
        "OrderItem", back_populates="order", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Order {self.order_number} ({self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=False
    )
    menu_item_id = db.Column(
        db.String(36), db.ForeignKey("menu_items.id"), nullable=False
    )
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_sgd = db.Column(db.Numeric(10, 2), nullable=False)
    total_price_sgd = db.Column(db.Numeric(10, 2), nullable=False)
    special_instructions = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="items")
    menu_item = db.relationship("MenuItem")

    def __repr__(self):
        return f"<OrderItem {self.menu_item_id} x{self.quantity}>"


class OrderNumberSequence(db.Model):
    __tablename__ = "order_number_sequences"

    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), primary_key=True
    )
    business_date = db.Column(db.Date, primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<OrderNumberSequence {self.business_date} @ {self.last_value}>"
