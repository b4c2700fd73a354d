import os


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

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Marketplace payments ---
    # Platform fee retained on every destination charge, in basis points
    # (300 = 3%). A club may override it with clubs.platform_fee_bps.
    PLATFORM_FEE_BASIS_POINTS = int(os.environ.get("PLATFORM_FEE_BASIS_POINTS", 300))
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "usd")
    CONNECT_COUNTRY = os.environ.get("CONNECT_COUNTRY", "US")
    MIN_CHARGE_CENTS = int(os.environ.get("MIN_CHARGE_CENTS", 50))
    MIN_ACCOUNT_CREDIT_CENTS = int(os.environ.get("MIN_ACCOUNT_CREDIT_CENTS", 1000))
    # How far below zero a member's club balance may go when a booking is
    # charged to it.
    MAX_NEGATIVE_BALANCE_CENTS = int(os.environ.get("MAX_NEGATIVE_BALANCE_CENTS", 10000))

    # --- Booking payments ---
    # Bookings left with payment_in_progress longer than this are released
    # by `flask release-stale-payments`.
    PAYMENT_LOCK_TIMEOUT_MINUTES = int(os.environ.get("PAYMENT_LOCK_TIMEOUT_MINUTES", 15))
    # Attempts for a read-check-write transaction before giving up.
    TRANSACTION_MAX_ATTEMPTS = int(os.environ.get("TRANSACTION_MAX_ATTEMPTS", 3))

    # --- API tokens ---
    JWT_ALGORITHM = "HS256"
    API_TOKEN_TTL_SECONDS = int(os.environ.get("API_TOKEN_TTL_SECONDS", 7 * 24 * 3600))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, Stripe keys faked."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_PUBLISHABLE_KEY = "pk_test_fake"
    APP_BASE_URL = "http://localhost:5000"
    PLATFORM_FEE_BASIS_POINTS = 300
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
