"""
Principal Context Middleware — resolves the calling user for API requests.

Authentication happens upstream (gateway / SSO). The gateway forwards the
authenticated user id in the ``X-User-Id`` header; this middleware loads the
User row and exposes it to handlers as:

    g.user       — User model instance
    g.principal  — access_policy.Principal (role + grant sets)

Missing header, non-integer id, unknown user or inactive user → 401.

Chain order:
  timing.py  →  principal.py  →  route handler
"""

import logging

from flask import g, request

from evidence_hub.models import db
from evidence_hub.models.auth import User
from evidence_hub.services.access_policy import Principal
from evidence_hub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

# Paths that do not need a principal
PRINCIPAL_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _unauthorized(reason: str):
    logger.info(
        "Unauthenticated request %s %s: %s", request.method, request.path, reason,
        extra={"request_id": getattr(g, "request_id", None)},
    )
    return api_error(E.UNAUTHORIZED, "Authentication required", details={"reason": reason})


def init_principal_context(app):
    """Register principal resolution as a before_request hook."""

    @app.before_request
    def _principal_context():
        g.user = None
        g.principal = None

        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith(PRINCIPAL_SKIP_PREFIXES):
            return None

        raw = (request.headers.get(USER_HEADER) or "").strip()
        if not raw:
            return _unauthorized("missing_user")
        try:
            user_id = int(raw)
        except ValueError:
            return _unauthorized("invalid_user_id")

        user = db.session.get(User, user_id)
        if user is None:
            return _unauthorized("unknown_user")
        if not user.is_active:
            return _unauthorized("inactive_user")

        g.user = user
        g.principal = Principal.from_user(user)
        return None


def current_principal() -> Principal:
    """The principal resolved for this request. Only valid on protected paths."""
    principal = getattr(g, "principal", None)
    if principal is None:
        raise RuntimeError("No principal resolved for this request")
    return principal
