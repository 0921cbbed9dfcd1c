# backend/cashbook/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # Busy timeout bounds how long a writer waits on SQLite's file lock
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["LOCK_TIMEOUT_SECONDS"])
        connect_args.setdefault("check_same_thread", False)
        options["connect_args"] = connect_args
    return options


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.auth import auth_bp
    from .routes.registers import registers_bp
    from .routes.ledger import ledger_bp
    from .routes.inventory import inventory_bp
    from .routes.pos import pos_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(pos_bp)

    from .routes.errors import register_error_handlers
    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
