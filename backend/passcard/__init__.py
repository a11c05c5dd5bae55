# backend/passcard/__init__.py
from flask import Flask, g, jsonify, request

from .config import Config
from .errors import PasscardError
from .extensions import db, migrate
from .services.rate_limit_service import EXTENSION_KEY, RateLimiter


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before extensions bind to the database URI
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    app.extensions[EXTENSION_KEY] = app.config.get("RATE_LIMITER") or RateLimiter()

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.upgrade import upgrade_bp
    from .routes.transactions import transactions_bp
    from .routes.memberships import memberships_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(upgrade_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(memberships_bp)

    @app.before_request
    def reset_principal():
        # g outlives a request when an app context is already pushed
        g.pop("principal", None)

    @app.errorhandler(PasscardError)
    def handle_passcard_error(error):
        return jsonify(error.to_dict()), error.status

    @app.after_request
    def add_security_headers(response):
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)

        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
