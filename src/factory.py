# -*- coding: utf-8 -*-
import os
from flask import Flask
from src.config import Config, load_trust_policy
from src.database import db

# Observability imports
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import init_logging

from src.services.alerting_service import AlertingService
from src.services.trust_engine import TrustEngine


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _migrate_db(app):
    """Run Alembic migrations to head using the app's DB URL."""
    from pathlib import Path
    from alembic import command
    from alembic.config import Config as AlembicConfig

    BASE_DIR = Path(__file__).resolve().parent.parent
    cfg = AlembicConfig()  # in-memory config, avoid alembic.ini dependency
    cfg.set_main_option("script_location", str(BASE_DIR / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])

    try:
        command.upgrade(cfg, "head")
        app.logger.info("Database migrations applied successfully")
    except Exception as e:
        app.logger.error(f"Migration failed: {e}")
        raise


def create_app(test_config: dict = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # --- DB config ---
    app.config["SQLALCHEMY_DATABASE_URI"] = _normalize_db_url(app.config["SQLALCHEMY_DATABASE_URI"])
    db.init_app(app)

    # --- Initialize observability ---
    init_request_context(app)
    init_logging(app)
    init_metrics(app)

    # --- Error handlers ---
    from src.middleware.errors import register_error_handlers
    register_error_handlers(app)

    # --- Trust engine ---
    policy = app.config.get("TRUST_POLICY") or load_trust_policy(app.config.get("TRUST_POLICY_FILE"))
    alerting = AlertingService(webhook_url=app.config.get("TRUST_ALERT_WEBHOOK_URL"),
                               max_alerts=app.config.get("TRUST_ALERT_BUFFER_SIZE", 500))
    app.extensions['trust_engine'] = TrustEngine(db.session, policy, alerting=alerting)

    # --- Mount blueprints ---
    from src.routes import health, trust
    app.register_blueprint(health.health_bp, url_prefix="/")
    app.register_blueprint(trust.trust_bp)

    # --- DB init ---
    with app.app_context():
        # Only auto-create tables in testing; migrations own the schema otherwise
        is_testing = app.config.get("TESTING") or os.getenv("TESTING", "false").lower() == "true"
        if is_testing:
            db.create_all()
        elif app.config.get("TRUST_DB_MIGRATE_ON_START"):
            _migrate_db(app)

    return app
