"""Checkout metadata schemas.

Checkout writes the cart and the order's correlation ids into the Stripe
session metadata so the webhook can build the order without another
lookup. That metadata comes back through Stripe, so it is validated on the
way in, never trusted as-is. Stripe stores metadata values as strings of
at most 500 characters.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)

STRIPE_METADATA_VALUE_LIMIT = 500


class CartLine(BaseModel):
    """One cart entry as embedded in session metadata (short keys)."""

    model_config = ConfigDict(populate_by_name=True)

    menu_item_id: str = Field(alias="id", min_length=1)
    quantity: int = Field(alias="qty", gt=0)
    unit_price_sgd: Decimal = Field(alias="price", gt=0, decimal_places=2)
    special_instructions: Optional[str] = Field(default=None, alias="note")

    @property
    def total_price_sgd(self):
        return self.unit_price_sgd * self.quantity


_cart_adapter = TypeAdapter(List[CartLine])


def dump_cart_payload(lines):
    """Serialize cart lines for metadata.

    Returns None when the JSON would not fit in one metadata value; the
    webhook then falls back to Stripe's line items.
    """
    payload = json.dumps(
        [line.model_dump(mode="json", by_alias=True, exclude_none=True) for line in lines],
        separators=(",", ":"),
    )
    if len(payload) > STRIPE_METADATA_VALUE_LIMIT:
        logger.info(
            f"Cart payload is {len(payload)} chars, over the metadata limit; not embedding"
        )
        return None
    return payload


def parse_cart_payload(raw):
    """Parse an embedded cart payload. Returns None if absent or malformed."""
    if not raw:
        return None
    try:
        lines = _cart_adapter.validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed cart payload in checkout metadata: {e}")
        return None
    return lines or None


class CheckoutMetadata(BaseModel):
    """Correlation ids and loyalty attribution carried on a checkout session."""

    restaurant_id: Optional[str] = None
    table_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    loyalty_user_ids: Optional[List[str]] = None
    discount_applied: bool = False
    triggering_user_id: Optional[str] = None
    discount_amount: Decimal = Decimal("0")

    @field_validator("loyalty_user_ids", mode="before")
    @classmethod
    def _parse_loyalty_ids(cls, value):
        if value in (None, ""):
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                logger.warning(f"Ignoring malformed loyalty_user_ids: {value!r}")
                return None
        if not isinstance(value, list):
            return None
        return [str(v) for v in value]

    @field_validator("discount_applied", mode="before")
    @classmethod
    def _parse_flag(cls, value):
        return str(value).lower() == "true"

    @field_validator("restaurant_id", "user_id", "triggering_user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        return value or None

    @field_validator("discount_amount", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        try:
            return Decimal(str(value or "0"))
        except InvalidOperation:
            logger.warning(f"Ignoring malformed discount_amount: {value!r}")
            return Decimal("0")

    def to_stripe_metadata(self, cart_payload=None):
        """Flatten to the string-only dict Stripe accepts."""
        metadata = {
            "restaurant_id": self.restaurant_id or "",
            "table_id": self.table_id,
            "session_id": self.session_id,
            "user_id": self.user_id or "",
            "discount_applied": "true" if self.discount_applied else "false",
            "discount_amount": str(self.discount_amount),
        }
        if self.loyalty_user_ids:
            metadata["loyalty_user_ids"] = json.dumps(self.loyalty_user_ids)
        if self.triggering_user_id:
            metadata["triggering_user_id"] = self.triggering_user_id
        if cart_payload:
            metadata["cart_items"] = cart_payload
        return metadata


def has_order_correlation(metadata):
    """True if metadata marks a restaurant order (table + session ids)."""
    metadata = metadata or {}
    return bool(metadata.get("table_id") and metadata.get("session_id"))
