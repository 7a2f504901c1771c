import os


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Stripe ---
    # Platform key. Restaurant orders use each restaurant's own key
    # (restaurants.stripe_secret_key); this one is the fallback for
    # customers that aren't mapped to a restaurant.
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Accept unsigned webhook payloads when no signing secret is configured.
    # Never enable this in production.
    STRIPE_WEBHOOK_ALLOW_UNSIGNED = _env_flag("STRIPE_WEBHOOK_ALLOW_UNSIGNED")
    CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "sgd")

    # "thread" runs webhook side effects after the response is sent,
    # "inline" runs them before responding (tests, CLI).
    WEBHOOK_DISPATCH_MODE = os.environ.get("WEBHOOK_DISPATCH_MODE", "thread")

    # --- Auth (bearer tokens issued by the auth provider) ---
    AUTH_JWT_SECRET = os.environ.get("AUTH_JWT_SECRET")
    AUTH_JWT_AUDIENCE = os.environ.get("AUTH_JWT_AUDIENCE", "authenticated")

    # --- Loyalty ---
    LOYALTY_DISCOUNT_THRESHOLD_SGD = float(
        os.environ.get("LOYALTY_DISCOUNT_THRESHOLD_SGD", 100)
    )
    LOYALTY_DISCOUNT_RATE = float(os.environ.get("LOYALTY_DISCOUNT_RATE", 0.10))

    # --- CORS (checkout endpoint is called from the QR ordering UI) ---
    CORS_ALLOWED_ORIGIN = os.environ.get("CORS_ALLOWED_ORIGIN", "*")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "AUTH_JWT_SECRET",
        ]
        # Signing secret is only optional when unsigned mode is explicitly on
        if not _env_flag("STRIPE_WEBHOOK_ALLOW_UNSIGNED"):
            required.append("STRIPE_WEBHOOK_SECRET")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, webhooks handled inline."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_platform_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_WEBHOOK_ALLOW_UNSIGNED = False
    WEBHOOK_DISPATCH_MODE = "inline"
    AUTH_JWT_SECRET = "test-jwt-secret"
    AUTH_JWT_AUDIENCE = "authenticated"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
