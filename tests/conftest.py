"""Shared test fixtures for the TableTap test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, inline webhooks)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: user, restaurant with a Stripe key, table T5, open session S9,
  menu (Burger 12.50)
- auth_headers: builds a Bearer header for a user id
- fake_gateway: FakeGateway installed in place of StripeGateway
"""

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from jose import jwt

from tabletap import create_app
from tabletap.errors import UpstreamProcessorError
from tabletap.extensions import db as _db
from tabletap.models.user import User
from tabletap.models.restaurant import MenuItem, OrderSession, Restaurant, RestaurantTable


class FakeGateway:
    """In-memory stand-in for StripeGateway. Records every call."""

    def __init__(self, currency="sgd"):
        self.currency = currency
        self.calls = []
        self.deleted_customers = []
        self.checkout_params = []
        self.line_items = []
        self.subscription = None
        self.sessions = {}
        self.products = {}
        self.fail_with = {}
        self._ids = itertools.count(1)

    def _record(self, name, /, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail_with:
            raise self.fail_with[name]

    def create_customer(self, email=None, metadata=None):
        self._record("create_customer", email=email, metadata=metadata)
        return SimpleNamespace(id=f"cus_fake_{next(self._ids)}", email=email)

    def delete_customer(self, customer_id):
        self._record("delete_customer", customer_id=customer_id)
        self.deleted_customers.append(customer_id)
        return SimpleNamespace(id=customer_id, deleted=True)

    def create_coupon(self, amount_off, name="Loyalty discount"):
        self._record("create_coupon", amount_off=amount_off)
        return SimpleNamespace(id=f"coupon_fake_{next(self._ids)}", amount_off=amount_off)

    def create_checkout_session(self, **params):
        self._record("create_checkout_session", **params)
        self.checkout_params.append(params)
        session_id = f"cs_test_fake_{next(self._ids)}"
        return SimpleNamespace(
            id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}"
        )

    def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id=session_id)
        return self.sessions[session_id]

    def list_line_items(self, session_id):
        self._record("list_line_items", session_id=session_id)
        return list(self.line_items)

    def retrieve_product(self, product_id):
        self._record("retrieve_product", product_id=product_id)
        if product_id not in self.products:
            raise UpstreamProcessorError(
                "Stripe product lookup failed", details=f"No such product: '{product_id}'"
            )
        return self.products[product_id]

    def create_product(self, name, description=None, metadata=None):
        self._record("create_product", name=name, description=description, metadata=metadata)
        product = SimpleNamespace(
            id=f"prod_fake_{next(self._ids)}", name=name, description=description
        )
        self.products[product.id] = product
        return product

    def update_product(self, product_id, name, description=None):
        self._record("update_product", product_id=product_id, name=name, description=description)
        product = self.products[product_id]
        product.name = name
        product.description = description
        return product

    def create_price(self, product_id, unit_amount, metadata=None):
        self._record(
            "create_price", product_id=product_id, unit_amount=unit_amount, metadata=metadata
        )
        return SimpleNamespace(
            id=f"price_fake_{next(self._ids)}", product=product_id, unit_amount=unit_amount
        )

    def latest_subscription(self, customer_id):
        self._record("latest_subscription", customer_id=customer_id)
        return self.subscription

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def fake_gateway():
    """Route every StripeGateway construction to one FakeGateway."""
    gateway = FakeGateway()
    with patch(
        "tabletap.services.tenant_service.StripeGateway", return_value=gateway
    ) as gateway_cls:
        gateway.cls = gateway_cls
        yield gateway


@pytest.fixture
def auth_headers(app):
    """Build request headers carrying a valid bearer token for user_id."""

    def _headers(user_id, secret=None, audience="authenticated", expires_in=3600):
        claims = {
            "sub": user_id,
            "aud": audience,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        }
        token = jwt.encode(
            claims, secret or app.config["AUTH_JWT_SECRET"], algorithm="HS256"
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def seed_data(app, db_session):
    """Seed a diner, a restaurant with one table, an open session and a menu.

    Returns a dict of plain ids (and a few objects) for easy access in tests.
    """
    # --- Users ---
    diner = User(email="diner@example.com", full_name="Dina Diner")
    owner = User(email="owner@example.com", full_name="Olly Owner")
    _db.session.add_all([diner, owner])
    _db.session.flush()

    # --- Restaurant (own Stripe account) ---
    restaurant = Restaurant(
        name="Test Bistro",
        slug="test-bistro",
        owner_id=owner.id,
        stripe_secret_key="sk_test_restaurant_fake",
    )
    _db.session.add(restaurant)
    _db.session.flush()

    # --- Table T5 with open ordering session S9 ---
    table = RestaurantTable(id="T5", restaurant_id=restaurant.id, table_number="5")
    _db.session.add(table)
    _db.session.flush()

    order_session = OrderSession(
        id="S9",
        restaurant_id=restaurant.id,
        table_id=table.id,
        session_token="test-session-token-s9",
    )
    _db.session.add(order_session)

    # --- Menu ---
    burger = MenuItem(
        restaurant_id=restaurant.id,
        name="Burger",
        price_sgd=Decimal("12.50"),
        stripe_product_id="prod_burger",
    )
    fries = MenuItem(
        restaurant_id=restaurant.id,
        name="Fries",
        price_sgd=Decimal("4.35"),
    )
    sold_out = MenuItem(
        restaurant_id=restaurant.id,
        name="Chilli Crab",
        price_sgd=Decimal("68.00"),
        is_available=False,
    )
    _db.session.add_all([burger, fries, sold_out])
    _db.session.commit()

    return {
        "user": diner,
        "user_id": diner.id,
        "owner_id": owner.id,
        "restaurant": restaurant,
        "restaurant_id": restaurant.id,
        "table_id": table.id,
        "session_id": order_session.id,
        "burger_id": burger.id,
        "fries_id": fries.id,
        "sold_out_id": sold_out.id,
    }
