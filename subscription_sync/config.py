import os

class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- PortOne (recurring payments gateway) ---
    PORTONE_API_SECRET = os.getenv("PORTONE_API_SECRET")
    PORTONE_API_BASE = os.getenv("PORTONE_API_BASE", "https://api.portone.io")
    PORTONE_TIMEOUT_SECONDS = float(os.getenv("PORTONE_TIMEOUT_SECONDS", "10"))
    # Payment lookup is fatal for the webhook, so it gets a few attempts;
    # schedule calls are best-effort and default to a single try.
    PORTONE_MAX_ATTEMPTS = int(os.getenv("PORTONE_MAX_ATTEMPTS", "3"))
    PORTONE_NONFATAL_MAX_ATTEMPTS = int(os.getenv("PORTONE_NONFATAL_MAX_ATTEMPTS", "1"))
    PORTONE_RETRY_BASE_DELAY = float(os.getenv("PORTONE_RETRY_BASE_DELAY", "0.5"))

    # --- Plan (single fixed plan) ---
    SUBSCRIPTION_CURRENCY = os.getenv("SUBSCRIPTION_CURRENCY", "KRW")
    SUBSCRIPTION_CANCEL_REASON = os.getenv("SUBSCRIPTION_CANCEL_REASON", "Subscription cancelled by customer")
    # Next charge lands between 10:00 and 10:59 on this zone's calendar day
    SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")

class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")

class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # REQUIRE env vars in production (fail fast if missing)
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")

class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    PORTONE_API_SECRET = os.getenv("PORTONE_API_SECRET", "test-portone-secret")
    PORTONE_RETRY_BASE_DELAY = 0.0

_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "staging": ProductionConfig,
    "testing": TestingConfig,
}

def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
