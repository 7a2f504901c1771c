import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from tabletap.config import config_by_name
from tabletap.errors import TableTapError
from tabletap.extensions import db, migrate, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from tabletap import models  # noqa: F401

    # --- Register blueprints ---
    from tabletap.blueprints.checkout import checkout_bp
    from tabletap.blueprints.webhooks import webhooks_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers (JSON API: every error is {"error", "details"?}) ---
    @app.errorhandler(TableTapError)
    def tabletap_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message} ({e.details})")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.name, "details": e.description}), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.exception(f"Unhandled error: {e}")
        return jsonify({"error": "Internal server error", "details": str(e)}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--email", default="owner@tabletap.local", help="Owner email")
    @click.option(
        "--stripe-key",
        default=lambda: os.environ.get("STRIPE_SECRET_KEY"),
        help="Restaurant Stripe secret key (defaults to STRIPE_SECRET_KEY)",
    )
    def seed_demo(email, stripe_key):
        """Create a demo restaurant with a table, an open session and a menu.

        Usage:
            flask seed-demo
            flask seed-demo --email me@example.com --stripe-key sk_test_...
        """
        import secrets
        from decimal import Decimal

        from tabletap.models.user import User
        from tabletap.models.restaurant import (
            MenuItem,
            OrderSession,
            Restaurant,
            RestaurantTable,
        )

        # --- 1. Owner ---
        owner = User.query.filter_by(email=email).first()
        if owner:
            click.echo(f"Owner already exists: {email}")
        else:
            owner = User(email=email, full_name="Demo Owner")
            db.session.add(owner)
            db.session.flush()
            click.echo(f"Created owner: {email}")

        # --- 2. Restaurant ---
        restaurant = Restaurant.query.filter_by(slug="demo-bistro").first()
        if restaurant:
            click.echo("Demo restaurant already exists, nothing to do.")
            return

        restaurant = Restaurant(
            name="Demo Bistro",
            slug="demo-bistro",
            owner_id=owner.id,
            stripe_secret_key=stripe_key,
        )
        db.session.add(restaurant)
        db.session.flush()

        # --- 3. Table + open ordering session ---
        table = RestaurantTable(
            restaurant_id=restaurant.id, table_number="5", capacity=4
        )
        db.session.add(table)
        db.session.flush()

        order_session = OrderSession(
            restaurant_id=restaurant.id,
            table_id=table.id,
            session_token=secrets.token_urlsafe(32),
        )
        db.session.add(order_session)

        # --- 4. Menu ---
        for name, price in [
            ("Burger", "12.50"),
            ("Laksa", "9.80"),
            ("Iced Milo", "3.20"),
        ]:
            db.session.add(MenuItem(
                restaurant_id=restaurant.id,
                name=name,
                price_sgd=Decimal(price),
            ))

        db.session.commit()

        if not stripe_key:
            click.echo("Warning: no Stripe key set; checkout will fail for this restaurant.")

        click.echo("")
        click.echo("=" * 50)
        click.echo("  Demo data seeded successfully!")
        click.echo("=" * 50)
        click.echo(f"  Restaurant: {restaurant.id}")
        click.echo(f"  Table:      {table.id}")
        click.echo(f"  Session:    {order_session.id}")
        click.echo(f"  Owner:      {owner.id}")
        click.echo("=" * 50)

    @app.cli.command("sync-subscription")
    @click.argument("customer_id")
    def sync_subscription(customer_id):
        """Re-sync a customer's subscription row from Stripe.

        Usage:
            flask sync-subscription cus_123
        """
        from tabletap.services.ledger_service import sync_from_processor

        try:
            record = sync_from_processor(customer_id)
        except TableTapError as e:
            raise click.ClickException(f"{e.message} ({e.details})" if e.details else e.message)

        click.echo(f"Synced {customer_id}: status={record.status}")

    @app.cli.command("sync-menu-item")
    @click.argument("menu_item_id")
    def sync_menu_item_command(menu_item_id):
        """Create or update a menu item's Stripe product and price.

        Usage:
            flask sync-menu-item <menu-item-id>
        """
        from tabletap.services.menu_service import sync_menu_item

        try:
            item = sync_menu_item(menu_item_id)
        except TableTapError as e:
            raise click.ClickException(f"{e.message} ({e.details})" if e.details else e.message)

        click.echo(
            f"Synced {item.name}: product={item.stripe_product_id} "
            f"price={item.stripe_price_id}"
        )

    @app.cli.command("reconcile-checkout")
    @click.argument("restaurant_id")
    @click.argument("session_id")
    def reconcile_checkout_command(restaurant_id, session_id):
        """Materialize the order for a paid checkout session.

        Recovery path when the webhook acknowledged an event but failed to
        write the order.

        Usage:
            flask reconcile-checkout <restaurant-id> cs_live_...
        """
        from tabletap.services.webhook_service import reconcile_checkout

        try:
            order, created = reconcile_checkout(restaurant_id, session_id)
        except TableTapError as e:
            raise click.ClickException(f"{e.message} ({e.details})" if e.details else e.message)

        if created:
            click.echo(f"Created order {order.order_number} for {session_id}")
        else:
            click.echo(f"Order {order.order_number} already exists for {session_id}")
