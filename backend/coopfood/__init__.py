# backend/coopfood/__init__.py
from flask import Flask, jsonify, request

from .config import Config
from .errors import CoopError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.reference import reference_bp
    from .routes.orders import orders_bp
    from .routes.members import members_bp
    from .routes.admin_orders import admin_orders_bp
    from .routes.inventory import inventory_bp
    from .routes.markups import markups_bp
    from .routes.imports import imports_bp
    from .routes.reports import reports_bp
    from .routes.rep import rep_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(reference_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(members_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(markups_bp)
    app.register_blueprint(imports_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(rep_bp)

    @app.errorhandler(CoopError)
    def handle_coop_error(error: CoopError):
        return jsonify(error.to_dict()), error.status_code

    @app.after_request
    def add_cors_headers(response):
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
            response.headers["Access-Control-Expose-Headers"] = "Retry-After, X-Export-Warnings"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
