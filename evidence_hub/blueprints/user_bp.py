"""
Evidence Hub
User Blueprint — user listing and scoped evidence grants.

Endpoints:
    GET    /api/v1/users                      — List (?role=&status=), admin only
    GET    /api/v1/users/me                   — Caller, with grants
    GET    /api/v1/users/<id>                 — Detail with grants (admin or self)
    PUT    /api/v1/users/<id>/permissions     — Replace {standard_access?, criteria_access?}, admin only
"""

import logging

from flask import Blueprint, g, jsonify, request

from evidence_hub.core.exceptions import ValidationError
from evidence_hub.middleware.principal import current_principal
from evidence_hub.services import user_service
from evidence_hub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

user_bp = Blueprint("user", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["GET"])
def list_users():
    users = user_service.list_users(
        current_principal(),
        role=request.args.get("role"),
        status=request.args.get("status"),
    )
    return jsonify([u.to_dict() for u in users])


@user_bp.route("/me", methods=["GET"])
def current_user():
    current_principal()
    return jsonify(g.user.to_dict(include_access=True))


@user_bp.route("/<int:user_id>", methods=["GET"])
def get_user(user_id):
    user = user_service.get_user(user_id, current_principal())
    return jsonify(user.to_dict(include_access=True))


@user_bp.route("/<int:user_id>/permissions", methods=["PUT"])
def update_user_permissions(user_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "invalid"})
    user = user_service.update_user_permissions(user_id, data, current_principal())
    access = user.to_dict(include_access=True)
    return jsonify({
        "id": user.id,
        "standard_access": access["standard_access"],
        "criteria_access": access["criteria_access"],
    })
