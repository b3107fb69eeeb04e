"""
Evidence Hub
Hierarchy Blueprint — CRUD API for programs, organizations, standards and
criteria.

Endpoints:
    Programs:
        GET    /api/v1/programs                     — List (?status=)
        POST   /api/v1/programs                     — Create
        GET    /api/v1/programs/<id>                — Detail (+ usage)
        PUT    /api/v1/programs/<id>                — Update
        DELETE /api/v1/programs/<id>                — Delete

    Organizations:
        GET    /api/v1/organizations                — List (?status=&type=)
        POST   /api/v1/organizations                — Create
        GET    /api/v1/organizations/<id>           — Detail (+ usage)
        PUT    /api/v1/organizations/<id>           — Update
        DELETE /api/v1/organizations/<id>           — Delete

    Standards:
        GET    /api/v1/standards                    — List (?program_id=&organization_id=&status=)
        POST   /api/v1/standards                    — Create
        GET    /api/v1/standards/<id>               — Detail (+ usage)
        PUT    /api/v1/standards/<id>               — Update
        DELETE /api/v1/standards/<id>               — Delete

    Criteria:
        GET    /api/v1/criteria                     — List (?standard_id=&program_id=&organization_id=&status=)
        POST   /api/v1/criteria                     — Create
        GET    /api/v1/criteria/<id>                — Detail (+ usage)
        PUT    /api/v1/criteria/<id>                — Update
        DELETE /api/v1/criteria/<id>                — Delete

Create/update/delete require role admin or manager (enforced in the service).
"""

import logging

from flask import Blueprint, jsonify, request

from evidence_hub.core.exceptions import ValidationError
from evidence_hub.middleware.principal import current_principal
from evidence_hub.services import hierarchy_guard, hierarchy_service
from evidence_hub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

hierarchy_bp = Blueprint("hierarchy", __name__, url_prefix="/api/v1")
register_error_handlers(hierarchy_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "invalid"})
    return data


def _detail(kind: str, node) -> dict:
    return {**node.to_dict(), "usage": hierarchy_guard.usage_summary(kind, node.id)}


# ═════════════════════════════════════════════════════════════════════════════
# PROGRAMS
# ═════════════════════════════════════════════════════════════════════════════


@hierarchy_bp.route("/programs", methods=["GET"])
def list_programs():
    programs = hierarchy_service.list_programs(status=request.args.get("status"))
    return jsonify([p.to_dict() for p in programs])


@hierarchy_bp.route("/programs", methods=["POST"])
def create_program():
    program = hierarchy_service.create_program(_json_body(), current_principal())
    return jsonify(program.to_dict()), 201


@hierarchy_bp.route("/programs/<int:program_id>", methods=["GET"])
def get_program(program_id):
    return jsonify(_detail("program", hierarchy_service.get_program(program_id)))


@hierarchy_bp.route("/programs/<int:program_id>", methods=["PUT"])
def update_program(program_id):
    program = hierarchy_service.update_program(program_id, _json_body(), current_principal())
    return jsonify(program.to_dict())


@hierarchy_bp.route("/programs/<int:program_id>", methods=["DELETE"])
def delete_program(program_id):
    hierarchy_service.delete_program(program_id, current_principal())
    return jsonify({"message": "Program deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# ORGANIZATIONS
# ═════════════════════════════════════════════════════════════════════════════


@hierarchy_bp.route("/organizations", methods=["GET"])
def list_organizations():
    organizations = hierarchy_service.list_organizations(
        status=request.args.get("status"),
        type=request.args.get("type"),
    )
    return jsonify([o.to_dict() for o in organizations])


@hierarchy_bp.route("/organizations", methods=["POST"])
def create_organization():
    organization = hierarchy_service.create_organization(_json_body(), current_principal())
    return jsonify(organization.to_dict()), 201


@hierarchy_bp.route("/organizations/<int:organization_id>", methods=["GET"])
def get_organization(organization_id):
    return jsonify(_detail("organization", hierarchy_service.get_organization(organization_id)))


@hierarchy_bp.route("/organizations/<int:organization_id>", methods=["PUT"])
def update_organization(organization_id):
    organization = hierarchy_service.update_organization(
        organization_id, _json_body(), current_principal(),
    )
    return jsonify(organization.to_dict())


@hierarchy_bp.route("/organizations/<int:organization_id>", methods=["DELETE"])
def delete_organization(organization_id):
    hierarchy_service.delete_organization(organization_id, current_principal())
    return jsonify({"message": "Organization deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# STANDARDS
# ═════════════════════════════════════════════════════════════════════════════


@hierarchy_bp.route("/standards", methods=["GET"])
def list_standards():
    standards = hierarchy_service.list_standards(
        program_id=request.args.get("program_id", type=int),
        organization_id=request.args.get("organization_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify([s.to_dict() for s in standards])


@hierarchy_bp.route("/standards", methods=["POST"])
def create_standard():
    standard = hierarchy_service.create_standard(_json_body(), current_principal())
    return jsonify(standard.to_dict()), 201


@hierarchy_bp.route("/standards/<int:standard_id>", methods=["GET"])
def get_standard(standard_id):
    return jsonify(_detail("standard", hierarchy_service.get_standard(standard_id)))


@hierarchy_bp.route("/standards/<int:standard_id>", methods=["PUT"])
def update_standard(standard_id):
    standard = hierarchy_service.update_standard(standard_id, _json_body(), current_principal())
    return jsonify(standard.to_dict())


@hierarchy_bp.route("/standards/<int:standard_id>", methods=["DELETE"])
def delete_standard(standard_id):
    hierarchy_service.delete_standard(standard_id, current_principal())
    return jsonify({"message": "Standard deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# CRITERIA
# ═════════════════════════════════════════════════════════════════════════════


@hierarchy_bp.route("/criteria", methods=["GET"])
def list_criteria():
    criteria = hierarchy_service.list_criteria(
        standard_id=request.args.get("standard_id", type=int),
        program_id=request.args.get("program_id", type=int),
        organization_id=request.args.get("organization_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify([c.to_dict() for c in criteria])


@hierarchy_bp.route("/criteria", methods=["POST"])
def create_criteria():
    criteria = hierarchy_service.create_criteria(_json_body(), current_principal())
    return jsonify(criteria.to_dict()), 201


@hierarchy_bp.route("/criteria/<int:criteria_id>", methods=["GET"])
def get_criteria(criteria_id):
    return jsonify(_detail("criteria", hierarchy_service.get_criteria(criteria_id)))


@hierarchy_bp.route("/criteria/<int:criteria_id>", methods=["PUT"])
def update_criteria(criteria_id):
    criteria = hierarchy_service.update_criteria(criteria_id, _json_body(), current_principal())
    return jsonify(criteria.to_dict())


@hierarchy_bp.route("/criteria/<int:criteria_id>", methods=["DELETE"])
def delete_criteria(criteria_id):
    hierarchy_service.delete_criteria(criteria_id, current_principal())
    return jsonify({"message": "Criteria deleted"}), 200
