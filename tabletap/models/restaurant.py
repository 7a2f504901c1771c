"""Restaurant (tenant) models.

- Restaurant: the tenant. stripe_secret_key is the tenant credential used
  to act against Stripe on the restaurant's behalf.
- RestaurantTable: a physical table; QR codes point at one.
- OrderSession: a QR-scoped ordering session at a table.
- MenuItem: a priced dish. stripe_product_id cross-references the
  restaurant's Stripe product so webhook line items can be matched back.
  It and stripe_price_id are written by menu_service.sync_menu_item().

Menus, tables and sessions are managed by CRUD endpoints outside this
service; they are declared here because checkout and reconciliation read them.
"""

import uuid

from tabletap.extensions import db


class Restaurant(db.Model):
    __tablename__ = "restaurants"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    stripe_secret_key = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    owner = db.relationship("User", foreign_keys=[owner_id])
    tables = db.relationship(
        "RestaurantTable", back_populates="restaurant", lazy="dynamic"
    )
    menu_items = db.relationship(
        "MenuItem", back_populates="restaurant", lazy="dynamic"
    )
    orders = db.relationship(
        "Order", back_populates="restaurant", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Restaurant {self.slug}>"


class RestaurantTable(db.Model):
    __tablename__ = "restaurant_tables"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    table_number = db.Column(db.String(20), nullable=False)
    capacity = db.Column(db.Integer, default=4)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "restaurant_id", "table_number", name="uq_restaurant_table_number"
        ),
    )

    # --- Relationships ---
    restaurant = db.relationship("Restaurant", back_populates="tables")

    def __repr__(self):
        return f"<RestaurantTable {self.table_number}>"


class OrderSession(db.Model):
    __tablename__ = "order_sessions"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    table_id = db.Column(
        db.String(36), db.ForeignKey("restaurant_tables.id"), nullable=False
    )
    session_token = db.Column(db.String(64), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    table = db.relationship("RestaurantTable")

    def __repr__(self):
        return f"<OrderSession table={self.table_id} active={self.is_active}>"


class MenuItem(db.Model):
    __tablename__ = "menu_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    restaurant_id = db.Column(
        db.String(36), db.ForeignKey("restaurants.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_sgd = db.Column(db.Numeric(10, 2), nullable=False)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    stripe_product_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # e.g. "prod_Abc..."
    stripe_price_id = db.Column(db.String(255), nullable=True)  # latest synced price
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    restaurant = db.relationship("Restaurant", back_populates="menu_items")

    def __repr__(self):
        return f"<MenuItem {self.name} ({self.price_sgd})>"
