"""Loyalty service — discount eligibility and spend accounting.

A table can list the loyalty ids of everyone dining. If any of them has
spent at least LOYALTY_DISCOUNT_THRESHOLD_SGD at this restaurant, the
whole order gets LOYALTY_DISCOUNT_RATE off, attributed to the qualifying
member with the highest spend. Spend is credited when the paid order is
materialized from the webhook.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from tabletap.extensions import db
from tabletap.models.loyalty import LoyaltyMember

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class LoyaltyDiscount:
    discount_applied: bool = False
    discount_amount: Decimal = Decimal("0.00")
    triggering_user_id: str = None


def _threshold():
    return Decimal(str(current_app.config["LOYALTY_DISCOUNT_THRESHOLD_SGD"]))


def check_loyalty_discount(restaurant_id, loyalty_user_ids, subtotal):
    """Work out the loyalty discount for an order subtotal."""
    if not loyalty_user_ids:
        return LoyaltyDiscount()

    top_member = (
        LoyaltyMember.query
        .filter(
            LoyaltyMember.restaurant_id == restaurant_id,
            LoyaltyMember.user_id.in_(loyalty_user_ids),
            LoyaltyMember.total_spent_sgd >= _threshold(),
        )
        .order_by(LoyaltyMember.total_spent_sgd.desc())
        .first()
    )
    if top_member is None:
        return LoyaltyDiscount()

    rate = Decimal(str(current_app.config["LOYALTY_DISCOUNT_RATE"]))
    amount = (Decimal(subtotal) * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    return LoyaltyDiscount(
        discount_applied=amount > 0,
        discount_amount=amount,
        triggering_user_id=top_member.user_id,
    )


def update_loyalty_spending(restaurant_id, user_id, amount):
    """Credit a paid order to a loyalty member, creating the member if new.

    Uses flush() so the caller controls the commit boundary.
    """
    amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    member = LoyaltyMember.query.filter_by(
        restaurant_id=restaurant_id, user_id=user_id
    ).first()

    if member is None:
        member = LoyaltyMember(
            restaurant_id=restaurant_id,
            user_id=user_id,
            total_spent_sgd=Decimal("0.00"),
            order_count=0,
        )
        db.session.add(member)

    member.total_spent_sgd = Decimal(member.total_spent_sgd or 0) + amount
    member.order_count = (member.order_count or 0) + 1
    member.last_order_date = datetime.now(timezone.utc)
    member.discount_eligible = member.total_spent_sgd >= _threshold()
    db.session.flush()

    logger.info(
        f"Loyalty spend for {user_id} at restaurant {restaurant_id} "
        f"is now {member.total_spent_sgd}"
    )
    return member
