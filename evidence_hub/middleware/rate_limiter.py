"""
Rate limiting configuration.

The Limiter instance is created in evidence_hub/__init__.py with no default
limits; this module applies limits per blueprint. The upload route carries
its own shared limit (UPLOAD_RATE_LIMIT) declared in file_bp.

Usage:
    from evidence_hub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"


def rate_limit_key():
    """Limit per resolved user when known, else per remote IP."""
    principal = getattr(g, "principal", None)
    if principal is not None and principal.id is not None:
        return f"user:{principal.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Hierarchy / evidence / user API:  WRITE_LIMIT
        - File API:                  READ_LIMIT (upload has its own, stricter limit)
        - Health check:              exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("hierarchy", "evidence", "user"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("file")
    if bp:
        limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — hierarchy/evidence: %s, files: %s, upload: %s",
        WRITE_LIMIT, READ_LIMIT, app.config.get("UPLOAD_RATE_LIMIT"),
    )
