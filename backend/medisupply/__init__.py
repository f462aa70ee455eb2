# backend/medisupply/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.workflow import workflow_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.invoice_receivings import invoice_receivings_bp
    from .routes.quality_control import quality_control_bp
    from .routes.warehouse_approvals import warehouse_approvals_bp
    from .routes.inventory import inventory_bp
    from .routes.master_data import master_data_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(invoice_receivings_bp)
    app.register_blueprint(quality_control_bp)
    app.register_blueprint(warehouse_approvals_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(master_data_bp)
    app.register_blueprint(audit_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
