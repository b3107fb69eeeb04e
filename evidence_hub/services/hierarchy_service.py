"""Hierarchy service layer — Program / Organization / Standard / Criteria CRUD.

Transaction policy: public functions call db.session.commit() on success.
Every mutation runs the hierarchy guard first, so no write is attempted
until all checks pass.

Provides:
- Program and Organization CRUD with simple unique codes
- Standard CRUD with (program, organization, code) uniqueness
- Criteria CRUD with (standard, code) uniqueness and parent consistency
- In-use protection for identity changes and deletes
- Audit trail for all write operations
"""
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from evidence_hub.core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from evidence_hub.models import db
from evidence_hub.models.audit import write_audit
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services import hierarchy_guard as guard
from evidence_hub.services.access_policy import Principal
from evidence_hub.services.code_generator import normalize_entity_code, normalize_hierarchy_code
from evidence_hub.services.helpers.fields import (
    date_field,
    id_field,
    number_field,
    text_field,
    validate_enum,
)

logger = logging.getLogger(__name__)

# ── Allowed enum values ──────────────────────────────────────────────────

NODE_STATUSES = {"draft", "active", "inactive", "archived"}
PROGRAM_TYPES = {"undergraduate", "graduate", "institution", "other"}
ORGANIZATION_TYPES = {"government", "education", "professional", "international", "other"}
ORGANIZATION_LEVELS = {"national", "international", "regional", "institutional"}
CRITERIA_TYPES = {"mandatory", "optional", "conditional"}

HIERARCHY_EDITOR_ROLES = {"admin", "manager"}


def _require_editor(principal: Principal, action: str, resource: str) -> None:
    if principal.role not in HIERARCHY_EDITOR_ROLES:
        raise PermissionDeniedError(action, resource)


def _commit(resource: str, field: str, value) -> None:
    """Commit, translating a storage-level unique violation into ConflictError."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Unique constraint hit on %s %s=%r: %s", resource, field, value, exc.orig)
        raise ConflictError(resource, field, value) from exc


def _apply(node, values: dict[str, Any]) -> dict[str, dict]:
    """Assign *values* to *node*; return {field: {old, new}} for real changes."""
    diff = {}
    for name, value in values.items():
        old = getattr(node, name)
        if old != value:
            diff[name] = {"old": old, "new": value}
            setattr(node, name, value)
    return diff


# ═════════════════════════════════════════════════════════════════════════════
# PROGRAM / ORGANIZATION
# ═════════════════════════════════════════════════════════════════════════════


def _program_values(data: dict, *, partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "code" in data:
        values["code"] = normalize_entity_code(data.get("code"))
    if not partial or "name" in data:
        values["name"] = text_field(data, "name", 300, required=True)
    if "description" in data:
        values["description"] = text_field(data, "description", 2000)
    if not partial or "type" in data:
        values["type"] = data.get("type") or "undergraduate"
        validate_enum(values["type"], PROGRAM_TYPES, "type")
    if "version" in data:
        values["version"] = text_field(data, "version", 10) or "1.0"
    if "applicable_year" in data:
        values["applicable_year"] = number_field(
            data, "applicable_year", minimum=2000, maximum=2100, integer=True,
        )
    if not partial or "status" in data:
        values["status"] = data.get("status") or "draft"
        validate_enum(values["status"], NODE_STATUSES, "status")
    if "effective_date" in data:
        values["effective_date"] = date_field(data, "effective_date")
    if "expiry_date" in data:
        values["expiry_date"] = date_field(data, "expiry_date")
    if "objectives" in data:
        values["objectives"] = text_field(data, "objectives", 2000)
    if "guidelines" in data:
        values["guidelines"] = text_field(data, "guidelines", 3000)
    return values


def _organization_values(data: dict, *, partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "code" in data:
        values["code"] = normalize_entity_code(data.get("code"))
    if not partial or "name" in data:
        values["name"] = text_field(data, "name", 300, required=True)
    if "description" in data:
        values["description"] = text_field(data, "description", 2000)
    if not partial or "level" in data:
        values["level"] = data.get("level") or "national"
        validate_enum(values["level"], ORGANIZATION_LEVELS, "level")
    if not partial or "type" in data:
        values["type"] = data.get("type") or "education"
        validate_enum(values["type"], ORGANIZATION_TYPES, "type")
    for field, limit in (
        ("website", 300), ("contact_email", 200), ("contact_phone", 30),
        ("address", 500), ("country", 100),
    ):
        if field in data:
            values[field] = text_field(data, field, limit)
    if not partial or "status" in data:
        values["status"] = data.get("status") or "active"
        validate_enum(values["status"], NODE_STATUSES, "status")
    return values


def list_programs(*, status: str | None = None) -> list[Program]:
    query = Program.query.order_by(Program.code)
    if status:
        query = query.filter_by(status=status)
    return query.all()


def get_program(program_id: int) -> Program:
    return guard.get_or_raise(Program, program_id)


def create_program(data: dict[str, Any], principal: Principal) -> Program:
    _require_editor(principal, "create", "Program")
    values = _program_values(data, partial=False)
    guard.check_program_code_available(values["code"])

    program = Program(**values, created_by=principal.id, updated_by=principal.id)
    db.session.add(program)
    db.session.flush()
    write_audit(
        entity_type="program", entity_id=program.id, entity_code=program.code,
        action="program.create", actor_user_id=principal.id,
    )
    _commit("Program", "code", program.code)
    logger.info("Program created id=%s code=%s", program.id, program.code)
    return program


def update_program(program_id: int, data: dict[str, Any], principal: Principal) -> Program:
    _require_editor(principal, "update", "Program")
    program = get_program(program_id)
    values = _program_values(data, partial=True)

    guard.check_identity_update("program", program, values)
    if "code" in values and values["code"] != program.code:
        guard.check_program_code_available(values["code"], exclude_id=program.id)

    diff = _apply(program, values)
    if diff:
        program.updated_by = principal.id
        write_audit(
            entity_type="program", entity_id=program.id, entity_code=program.code,
            action="program.update", actor_user_id=principal.id, diff=diff,
        )
    _commit("Program", "code", program.code)
    logger.info("Program updated id=%s fields=%s", program.id, sorted(diff))
    return program


def delete_program(program_id: int, principal: Principal) -> None:
    _require_editor(principal, "delete", "Program")
    program = get_program(program_id)
    guard.check_delete("program", program)

    write_audit(
        entity_type="program", entity_id=program.id, entity_code=program.code,
        action="program.delete", actor_user_id=principal.id, diff=program.to_dict(),
    )
    db.session.delete(program)
    db.session.commit()
    logger.info("Program deleted id=%s code=%s", program_id, program.code)


def list_organizations(*, status: str | None = None, type: str | None = None) -> list[Organization]:
    query = Organization.query.order_by(Organization.code)
    if status:
        query = query.filter_by(status=status)
    if type:
        query = query.filter_by(type=type)
    return query.all()


def get_organization(organization_id: int) -> Organization:
    return guard.get_or_raise(Organization, organization_id)


def create_organization(data: dict[str, Any], principal: Principal) -> Organization:
    _require_editor(principal, "create", "Organization")
    values = _organization_values(data, partial=False)
    guard.check_organization_code_available(values["code"])

    organization = Organization(**values, created_by=principal.id, updated_by=principal.id)
    db.session.add(organization)
    db.session.flush()
    write_audit(
        entity_type="organization", entity_id=organization.id, entity_code=organization.code,
        action="organization.create", actor_user_id=principal.id,
    )
    _commit("Organization", "code", organization.code)
    logger.info("Organization created id=%s code=%s", organization.id, organization.code)
    return organization


def update_organization(organization_id: int, data: dict[str, Any], principal: Principal) -> Organization:
    _require_editor(principal, "update", "Organization")
    organization = get_organization(organization_id)
    values = _organization_values(data, partial=True)

    guard.check_identity_update("organization", organization, values)
    if "code" in values and values["code"] != organization.code:
        guard.check_organization_code_available(values["code"], exclude_id=organization.id)

    diff = _apply(organization, values)
    if diff:
        organization.updated_by = principal.id
        write_audit(
            entity_type="organization", entity_id=organization.id, entity_code=organization.code,
            action="organization.update", actor_user_id=principal.id, diff=diff,
        )
    _commit("Organization", "code", organization.code)
    logger.info("Organization updated id=%s fields=%s", organization.id, sorted(diff))
    return organization


def delete_organization(organization_id: int, principal: Principal) -> None:
    _require_editor(principal, "delete", "Organization")
    organization = get_organization(organization_id)
    guard.check_delete("organization", organization)

    write_audit(
        entity_type="organization", entity_id=organization.id, entity_code=organization.code,
        action="organization.delete", actor_user_id=principal.id, diff=organization.to_dict(),
    )
    db.session.delete(organization)
    db.session.commit()
    logger.info("Organization deleted id=%s code=%s", organization_id, organization.code)


# ═════════════════════════════════════════════════════════════════════════════
# STANDARD
# ═════════════════════════════════════════════════════════════════════════════


def _standard_values(data: dict, *, partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "code" in data:
        values["code"] = normalize_hierarchy_code(data.get("code"))
    if not partial or "name" in data:
        values["name"] = text_field(data, "name", 500, required=True)
    if not partial or "program_id" in data:
        values["program_id"] = id_field(data, "program_id")
    if not partial or "organization_id" in data:
        values["organization_id"] = id_field(data, "organization_id")
    if "description" in data:
        values["description"] = text_field(data, "description", 3000)
    if "order" in data:
        values["order"] = number_field(data, "order", minimum=1, integer=True) or 1
    if "weight" in data:
        values["weight"] = number_field(data, "weight", minimum=0, maximum=100)
    if "objectives" in data:
        values["objectives"] = text_field(data, "objectives", 2000)
    if "guidelines" in data:
        values["guidelines"] = text_field(data, "guidelines", 3000)
    if "evaluation_criteria" in data:
        items = data.get("evaluation_criteria") or []
        if not isinstance(items, list):
            raise ValidationError(
                "evaluation_criteria must be a list", details={"evaluation_criteria": "invalid"},
            )
        values["evaluation_criteria"] = items
    if not partial or "status" in data:
        values["status"] = data.get("status") or "draft"
        validate_enum(values["status"], NODE_STATUSES, "status")
    return values


def list_standards(
    *,
    program_id: int | None = None,
    organization_id: int | None = None,
    status: str | None = None,
) -> list[Standard]:
    query = Standard.query.order_by(Standard.order, Standard.code)
    if program_id is not None:
        query = query.filter_by(program_id=program_id)
    if organization_id is not None:
        query = query.filter_by(organization_id=organization_id)
    if status:
        query = query.filter_by(status=status)
    return query.all()


def get_standard(standard_id: int) -> Standard:
    return guard.get_or_raise(Standard, standard_id)


def create_standard(data: dict[str, Any], principal: Principal) -> Standard:
    _require_editor(principal, "create", "Standard")
    values = _standard_values(data, partial=False)
    guard.check_standard_create(values["program_id"], values["organization_id"], values["code"])

    standard = Standard(**values, created_by=principal.id, updated_by=principal.id)
    db.session.add(standard)
    db.session.flush()
    write_audit(
        entity_type="standard", entity_id=standard.id, entity_code=standard.code,
        action="standard.create", actor_user_id=principal.id,
    )
    _commit("Standard", "code", standard.code)
    logger.info(
        "Standard created id=%s code=%s program_id=%s organization_id=%s",
        standard.id, standard.code, standard.program_id, standard.organization_id,
    )
    return standard


def update_standard(standard_id: int, data: dict[str, Any], principal: Principal) -> Standard:
    _require_editor(principal, "update", "Standard")
    standard = get_standard(standard_id)
    values = _standard_values(data, partial=True)

    guard.check_identity_update("standard", standard, values)

    program_id = values.get("program_id", standard.program_id)
    organization_id = values.get("organization_id", standard.organization_id)
    code = values.get("code", standard.code)
    if (program_id, organization_id, code) != (
        standard.program_id, standard.organization_id, standard.code,
    ):
        guard.get_or_raise(Program, program_id)
        guard.get_or_raise(Organization, organization_id)
        guard.check_standard_code_available(
            program_id, organization_id, code, exclude_id=standard.id,
        )

    diff = _apply(standard, values)
    if diff:
        standard.updated_by = principal.id
        write_audit(
            entity_type="standard", entity_id=standard.id, entity_code=standard.code,
            action="standard.update", actor_user_id=principal.id, diff=diff,
        )
    _commit("Standard", "code", standard.code)
    logger.info("Standard updated id=%s fields=%s", standard.id, sorted(diff))
    return standard


def delete_standard(standard_id: int, principal: Principal) -> None:
    _require_editor(principal, "delete", "Standard")
    standard = get_standard(standard_id)
    guard.check_delete("standard", standard)

    write_audit(
        entity_type="standard", entity_id=standard.id, entity_code=standard.code,
        action="standard.delete", actor_user_id=principal.id, diff=standard.to_dict(),
    )
    db.session.delete(standard)
    db.session.commit()
    logger.info("Standard deleted id=%s code=%s", standard_id, standard.code)


# ═════════════════════════════════════════════════════════════════════════════
# CRITERIA
# ═════════════════════════════════════════════════════════════════════════════


def _criteria_values(data: dict, *, partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "code" in data:
        values["code"] = normalize_hierarchy_code(data.get("code"))
    if not partial or "name" in data:
        values["name"] = text_field(data, "name", 500, required=True)
    if not partial or "standard_id" in data:
        values["standard_id"] = id_field(data, "standard_id")
    if "description" in data:
        values["description"] = text_field(data, "description", 3000)
    if "order" in data:
        values["order"] = number_field(data, "order", minimum=1, integer=True) or 1
    if "weight" in data:
        values["weight"] = number_field(data, "weight", minimum=0, maximum=100)
    if not partial or "type" in data:
        values["type"] = data.get("type") or "mandatory"
        validate_enum(values["type"], CRITERIA_TYPES, "type")
    if "requirements" in data:
        values["requirements"] = text_field(data, "requirements", 2000)
    if "guidelines" in data:
        values["guidelines"] = text_field(data, "guidelines", 3000)
    if "indicators" in data:
        indicators = data.get("indicators") or []
        if not isinstance(indicators, list) or any(
            not isinstance(i, dict) or not str(i.get("name") or "").strip() for i in indicators
        ):
            raise ValidationError(
                "indicators must be a list of objects with a name",
                details={"indicators": "invalid"},
            )
        values["indicators"] = indicators
    if not partial or "status" in data:
        values["status"] = data.get("status") or "draft"
        validate_enum(values["status"], NODE_STATUSES, "status")
    return values


def _optional_id(data: dict, field: str) -> int | None:
    if data.get(field) in (None, ""):
        return None
    return id_field(data, field)


def list_criteria(
    *,
    standard_id: int | None = None,
    program_id: int | None = None,
    organization_id: int | None = None,
    status: str | None = None,
) -> list[Criteria]:
    query = Criteria.query.order_by(Criteria.standard_id, Criteria.order, Criteria.code)
    if standard_id is not None:
        query = query.filter_by(standard_id=standard_id)
    if program_id is not None:
        query = query.filter_by(program_id=program_id)
    if organization_id is not None:
        query = query.filter_by(organization_id=organization_id)
    if status:
        query = query.filter_by(status=status)
    return query.all()


def get_criteria(criteria_id: int) -> Criteria:
    return guard.get_or_raise(Criteria, criteria_id)


def create_criteria(data: dict[str, Any], principal: Principal) -> Criteria:
    """Create a criterion. program_id / organization_id are taken from the
    parent standard; when supplied they must match it."""
    _require_editor(principal, "create", "Criteria")
    values = _criteria_values(data, partial=False)
    standard = guard.check_criteria_create(
        values["standard_id"],
        values["code"],
        program_id=_optional_id(data, "program_id"),
        organization_id=_optional_id(data, "organization_id"),
    )

    criteria = Criteria(
        **values,
        program_id=standard.program_id,
        organization_id=standard.organization_id,
        created_by=principal.id,
        updated_by=principal.id,
    )
    db.session.add(criteria)
    db.session.flush()
    write_audit(
        entity_type="criteria", entity_id=criteria.id, entity_code=criteria.code,
        action="criteria.create", actor_user_id=principal.id,
    )
    _commit("Criteria", "code", criteria.code)
    logger.info(
        "Criteria created id=%s code=%s standard_id=%s",
        criteria.id, criteria.code, criteria.standard_id,
    )
    return criteria


def update_criteria(criteria_id: int, data: dict[str, Any], principal: Principal) -> Criteria:
    _require_editor(principal, "update", "Criteria")
    criteria = get_criteria(criteria_id)
    values = _criteria_values(data, partial=True)

    guard.check_identity_update("criteria", criteria, values)

    standard_id = values.get("standard_id", criteria.standard_id)
    code = values.get("code", criteria.code)
    if (standard_id, code) != (criteria.standard_id, criteria.code):
        standard = guard.get_or_raise(Standard, standard_id)
        guard.check_criteria_code_available(standard.id, code, exclude_id=criteria.id)
        values["program_id"] = standard.program_id
        values["organization_id"] = standard.organization_id

    diff = _apply(criteria, values)
    if diff:
        criteria.updated_by = principal.id
        write_audit(
            entity_type="criteria", entity_id=criteria.id, entity_code=criteria.code,
            action="criteria.update", actor_user_id=principal.id, diff=diff,
        )
    _commit("Criteria", "code", criteria.code)
    logger.info("Criteria updated id=%s fields=%s", criteria.id, sorted(diff))
    return criteria


def delete_criteria(criteria_id: int, principal: Principal) -> None:
    _require_editor(principal, "delete", "Criteria")
    criteria = get_criteria(criteria_id)
    guard.check_delete("criteria", criteria)

    write_audit(
        entity_type="criteria", entity_id=criteria.id, entity_code=criteria.code,
        action="criteria.delete", actor_user_id=principal.id, diff=criteria.to_dict(),
    )
    db.session.delete(criteria)
    db.session.commit()
    logger.info("Criteria deleted id=%s code=%s", criteria_id, criteria.code)
