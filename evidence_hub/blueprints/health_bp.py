"""
Health check blueprint.

Endpoints:
    GET /api/v1/health         — simple status
    GET /api/v1/health/ready   — simple 200 for load balancers
    GET /api/v1/health/live    — database and upload-folder status
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from evidence_hub.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "Evidence Hub"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── File storage ─────────────────────────────────────────────────
    upload_folder = current_app.config["UPLOAD_FOLDER"]
    if os.path.isdir(upload_folder) and os.access(upload_folder, os.W_OK):
        checks["storage"] = {"status": "ok"}
    else:
        checks["storage"] = {"status": "error", "detail": "upload folder missing or not writable"}
        overall = False
        logger.error("Health check — upload folder unusable: %s", upload_folder)

    checks["app"] = {
        "name": "Evidence Hub",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
