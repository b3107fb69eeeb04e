"""Standardised API error responses.

Usage
-----
    from evidence_hub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Evidence not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")

Blueprints map service-layer exceptions to these responses once:

    register_error_handlers(evidence_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from evidence_hub.core.exceptions import (
    ConflictError,
    EvidenceHubError,
    HierarchyIntegrityError,
    InUseError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from evidence_hub.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    HIERARCHY_INTEGRITY = "ERR_HIERARCHY_INTEGRITY"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_IN_USE = "ERR_CONFLICT_IN_USE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.HIERARCHY_INTEGRITY: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_IN_USE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, dependent counts, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def _from_exception(error: EvidenceHubError):
    return api_error(error.code, str(error), details=error.details)


def register_error_handlers(bp) -> None:
    """Map the service exception hierarchy to JSON responses on *bp*."""

    @bp.errorhandler(NotFoundError)
    @bp.errorhandler(PermissionDeniedError)
    @bp.errorhandler(ValidationError)
    @bp.errorhandler(ConflictError)
    @bp.errorhandler(InUseError)
    @bp.errorhandler(HierarchyIntegrityError)
    def _handle_business_error(error: EvidenceHubError):
        return _from_exception(error)

    @bp.errorhandler(SQLAlchemyError)
    def _handle_database_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
