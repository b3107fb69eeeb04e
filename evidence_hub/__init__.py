"""
Evidence Hub
Flask Application Factory.

Usage:
    from evidence_hub import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from evidence_hub.config import config
from evidence_hub.middleware.logging_config import configure_logging
from evidence_hub.middleware.principal import init_principal_context
from evidence_hub.middleware.rate_limiter import init_rate_limits
from evidence_hub.middleware.timing import init_request_timing
from evidence_hub.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


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
    config_class = config[config_name]
    # ProductionConfig validates required env vars in __init__
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_principal_context(app)

    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # ── Import all models so Alembic can detect them ─────────────────────
    from evidence_hub.models import audit as _audit_models          # noqa: F401
    from evidence_hub.models import auth as _auth_models            # noqa: F401
    from evidence_hub.models import evidence as _evidence_models    # noqa: F401
    from evidence_hub.models import hierarchy as _hierarchy_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from evidence_hub.blueprints.evidence_bp import evidence_bp
    from evidence_hub.blueprints.file_bp import file_bp
    from evidence_hub.blueprints.health_bp import health_bp
    from evidence_hub.blueprints.hierarchy_bp import hierarchy_bp
    from evidence_hub.blueprints.user_bp import user_bp

    app.register_blueprint(hierarchy_bp)
    app.register_blueprint(evidence_bp)
    app.register_blueprint(file_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def request_too_large(e):
        return {"error": "Request body too large", "code": "ERR_VALIDATION_INVALID"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-db")
    def create_db_cmd():
        """Create all tables (development convenience; use `flask db upgrade` elsewhere)."""
        db.create_all()
        logger.info("All tables created.")

    return app
