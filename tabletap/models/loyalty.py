"""Loyalty member model.

Tracks per-restaurant spend for diners who join the loyalty programme.
Members whose lifetime spend crosses the configured threshold unlock a
discount for the whole table.
"""

import uuid

from tabletap.extensions import db


class LoyaltyMember(db.Model):
    __tablename__ = "loyalty_members"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    user_id = db.Column(db.String(36), nullable=False)  # loyalty id, not always a User
    name = db.Column(db.String(255), nullable=True)
    total_spent_sgd = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    order_count = db.Column(db.Integer, nullable=False, default=0)
    discount_eligible = db.Column(db.Boolean, nullable=False, default=False)
    last_order_date = db.Column(db.DateTime(timezone=True), nullable=True)
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
            "restaurant_id", "user_id", name="uq_loyalty_restaurant_user"
        ),
    )

    def __repr__(self):
        return f"<LoyaltyMember {self.user_id} spent={self.total_spent_sgd}>"
