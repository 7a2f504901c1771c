# Models package — import all models here so Alembic can discover them.

from tabletap.models.user import User  # noqa: F401
from tabletap.models.restaurant import (  # noqa: F401
    MenuItem,
    OrderSession,
    Restaurant,
    RestaurantTable,
)
from tabletap.models.billing import StripeCustomer, StripeSubscription  # noqa: F401
from tabletap.models.order import Order, OrderItem, OrderNumberSequence  # noqa: F401
from tabletap.models.loyalty import LoyaltyMember  # noqa: F401
from tabletap.models.stripe_event import StripeEvent  # noqa: F401
from tabletap.models.audit import AuditEvent  # noqa: F401
