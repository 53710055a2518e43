# backend/vitana/__init__.py
from __future__ import annotations

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, install_sqlite_pragmas
from .formatting import format_brl, format_cep, format_cnpj, format_datetime_br, group_access_key



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

    with app.app_context():
        install_sqlite_pragmas(db.engine)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.stock import stock_bp
    from .routes.nfce import nfce_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(nfce_bp)

    # Fiscal transmitter is swappable per app (tests install their own)
    from .services.transmitters import build_transmitter
    app.extensions["fiscal_transmitter"] = build_transmitter(app.config)

    app.add_template_filter(format_brl, "brl")
    app.add_template_filter(format_cnpj, "cnpj")
    app.add_template_filter(format_cep, "cep")
    app.add_template_filter(group_access_key, "chave")
    app.add_template_filter(format_datetime_br, "brt")

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = (
                "Content-Type, X-Business-Id, X-User-Id, X-User-Role"
            )
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
