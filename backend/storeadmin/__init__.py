# backend/storeadmin/__init__.py
from flask import Flask, jsonify, request

from .config import Config, SecuritySettings
from .extensions import db, migrate, RUNTIME_KEY, SecurityRuntime


def _build_runtime(app: Flask) -> SecurityRuntime:
    """Read secrets once and construct the components that use them."""
    from .services.audit_service import AuditSink
    from .services.crypto_service import FieldCipher
    from .services.rate_limit_service import RateLimiter
    from .services.token_service import TokenService

    settings = SecuritySettings.from_mapping(app.config)
    cipher = FieldCipher(settings.pii_key_hex)
    if not settings.jwt_secret:
        app.logger.warning("JWT_SECRET is not set; privileged endpoints will answer 500")
    return SecurityRuntime(
        settings=settings,
        tokens=TokenService(settings.jwt_secret),
        cipher=cipher,
        limiter=RateLimiter(settings.rate_limits),
        audit=AuditSink(app, mode=settings.audit_mode, queue_size=settings.audit_queue_size),
    )


def create_app(config_overrides=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Applied before extensions initialise: Flask-SQLAlchemy builds engines in init_app.
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    app.extensions[RUNTIME_KEY] = _build_runtime(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.settings import settings_bp
    from .routes.audit import audit_bp
    from .routes.gift_cards import gift_cards_bp, public_gift_cards_bp
    from .routes.orders import orders_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(gift_cards_bp)
    app.register_blueprint(public_gift_cards_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(webhooks_bp)

    allowed_origins = app.extensions[RUNTIME_KEY].settings.allowed_origins

    @app.before_request
    def answer_preflight():
        if request.method == "OPTIONS":
            return app.make_default_options_response()
        return None

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        # Disallowed origins get the first allowed one, which the browser then rejects.
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        elif allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = allowed_origins[0]
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, x-csrf-token"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        return response

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(_error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
