"""
CD3 Prioritizer
Flask Application Factory.

Usage:
    from prioritizer import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os
import threading

from flask import Flask, request
from flask_cors import CORS

from prioritizer.config import config
from prioritizer.core.exceptions import PersistenceError
from prioritizer.middleware.logging_config import configure_logging
from prioritizer.middleware.timing import init_request_timing
from prioritizer.models import db
from prioritizer.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so production's required-env checks run
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    from prioritizer.models import store as _store_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
                ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

        # ── Prioritization engine (one per app, serialised by a lock) ────
        init_engine(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from prioritizer.blueprints.health_bp import health_bp
    from prioritizer.blueprints.prioritizer_bp import prioritizer_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(prioritizer_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("clear-data")
    def clear_data_cmd():
        """Drop all items and state; bucket settings are kept."""
        with app.extensions["prioritizer_lock"]:
            result = app.extensions["prioritizer_engine"].clear_all_data()
        logger.info("clear-data: %s", result)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(PersistenceError)
    def persistence_failed(e):
        logger.error("Persistence failure: %s", e)
        return api_error(E.PERSISTENCE, str(e))

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    return app


def init_engine(app):
    """Build the engine from config and park it on ``app.extensions``."""
    from prioritizer.services.analytics import build_analytics
    from prioritizer.services.persistence import build_adapter
    from prioritizer.services.prioritization_engine import PrioritizationEngine

    engine = PrioritizationEngine(
        persistence=build_adapter(app.config["PRIORITIZER_STORAGE"]),
        analytics=build_analytics(app.config["PRIORITIZER_ANALYTICS"]),
    )
    app.extensions["prioritizer_engine"] = engine
    app.extensions["prioritizer_lock"] = threading.Lock()
    return engine
