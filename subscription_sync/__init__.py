import os
from flask import Flask, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=True)


from .config import get_config
from .extensions import db, migrate, limiter
from .security import init_security
from .observability import init_logging, init_sentry

def create_app(config_overrides=None, gateway=None, calculator=None):
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("PORTONE_API_SECRET")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)

    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    limiter.init_app(app)

    # Gateway client + ledger are process-wide; a missing PortOne secret
    # fails here, at startup, not on the first webhook.
    from .billing import init_billing
    init_billing(app, db, gateway=gateway, calculator=calculator)

    from .blueprints.webhooks import bp as webhooks_bp
    from .blueprints.payments import bp as payments_bp

    app.register_blueprint(webhooks_bp, url_prefix="/api")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: this service only answers JSON
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"success": False, "error": "rate_limited"}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return (jsonify(payload), 429, headers)

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"success": False, "error": "internal_error"}), 500

    # CLI commands (operator utilities)
    from .cli import register_cli
    register_cli(app)

    return app
