"""
Evidence Lifecycle Manager — create / update / move / copy / delete evidences.

Transaction policy: public mutators call db.session.commit() on success.
Order inside every mutator is fixed:

    1. load the evidence (NotFoundError)
    2. access policy on the evidence and, for placement, on the target scope
    3. hierarchy guard (placement path, code format and uniqueness)
    4. stage the write plus its history row, then commit

History:
    Each mutation appends exactly one EvidenceHistory row in the same
    transaction as the write. An update that changes nothing appends none.
    Deletion is recorded in AuditLog, since history rows go with the record.

Codes:
    A generated code can lose a race with a concurrent writer; the unique
    constraint on evidences.code catches it at commit and the write is
    retried with a fresh code up to EVIDENCE_CODE_MAX_RETRIES times.
    Caller-supplied codes are never replaced.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Callable

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from evidence_hub.core.exceptions import ConflictError, InUseError, NotFoundError, ValidationError
from evidence_hub.models import db
from evidence_hub.models.audit import write_audit
from evidence_hub.models.evidence import (
    EVIDENCE_DOCUMENT_TYPES,
    EVIDENCE_STATUSES,
    Evidence,
    EvidenceFile,
    EvidenceHistory,
)
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services import access_policy
from evidence_hub.services import hierarchy_guard as guard
from evidence_hub.services.access_policy import Principal
from evidence_hub.services.code_generator import (
    generate_evidence_code,
    parse_evidence_code,
    validate_box_number,
    validate_evidence_code,
)
from evidence_hub.services.file_storage import LocalFileStorage
from evidence_hub.services.helpers.fields import (
    date_field,
    id_field,
    tags_field,
    text_field,
    validate_enum,
)

logger = logging.getLogger(__name__)

HIERARCHY_FIELDS = ("program_id", "organization_id", "standard_id", "criteria_id")

# Non-identity fields carried over by copy.
COPYABLE_FIELDS = (
    "name", "description", "document_number", "issue_date", "effective_date",
    "issuing_agency", "document_type", "status", "notes", "tags",
)


def _storage() -> LocalFileStorage:
    return LocalFileStorage(current_app.config["UPLOAD_FOLDER"])


def _max_code_attempts() -> int:
    return max(1, int(current_app.config.get("EVIDENCE_CODE_MAX_RETRIES", 3)))


def _json_safe(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


def _evidence_values(data: dict, *, partial: bool) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if not partial or "name" in data:
        values["name"] = text_field(data, "name", 500, required=True)
    if "description" in data:
        values["description"] = text_field(data, "description", 2000)
    if "document_number" in data:
        values["document_number"] = text_field(data, "document_number", 100)
    if "issue_date" in data:
        values["issue_date"] = date_field(data, "issue_date")
    if "effective_date" in data:
        values["effective_date"] = date_field(data, "effective_date")
    if "issuing_agency" in data:
        values["issuing_agency"] = text_field(data, "issuing_agency", 200)
    if not partial or "document_type" in data:
        values["document_type"] = data.get("document_type") or "Khác"
        validate_enum(values["document_type"], EVIDENCE_DOCUMENT_TYPES, "document_type")
    if not partial or "status" in data:
        values["status"] = data.get("status") or "active"
        validate_enum(values["status"], EVIDENCE_STATUSES, "status")
    if "notes" in data:
        values["notes"] = text_field(data, "notes", 1000)
    if "tags" in data:
        values["tags"] = tags_field(data)
    return values


def _append_history(
    evidence: Evidence,
    action: str,
    principal: Principal,
    changes: dict | None = None,
    description: str = "",
) -> EvidenceHistory:
    entry = EvidenceHistory(
        evidence_id=evidence.id,
        action=action,
        changed_by=principal.id,
        changes=changes or {},
        description=description[:500],
    )
    db.session.add(entry)
    return entry


def _commit_with_code(
    stage: Callable[[str], Evidence],
    next_code: Callable[[], str],
    *,
    generated: bool,
) -> Evidence:
    """Stage a write carrying an evidence code and commit it.

    ``stage(code)`` applies the whole write to the session. When the code
    was generated, a unique-constraint failure at flush or commit rolls
    back and repeats with the next generated code; a supplied code fails
    at once.
    """
    attempts = _max_code_attempts() if generated else 1
    for attempt in range(1, attempts + 1):
        code = next_code()
        try:
            evidence = stage(code)
            db.session.commit()
            return evidence
        except IntegrityError as exc:
            db.session.rollback()
            if attempt >= attempts:
                logger.warning(
                    "Evidence code %s still taken after %d attempt(s): %s",
                    code, attempt, exc.orig,
                )
                raise ConflictError("Evidence", "code", code) from exc
            logger.info("Evidence code %s lost a race, regenerating (attempt %d)", code, attempt)
    raise AssertionError("unreachable")


def _box_number(data: dict) -> Any:
    """Requested box, 1 only when the field is absent or null."""
    value = data.get("box_number")
    return 1 if value is None else value


def _target_code(
    new_code: str | None,
    standard: Standard,
    criteria: Criteria,
    box_number: int,
    *,
    exclude_id: int | None = None,
) -> tuple[Callable[[], str], bool]:
    """Return (code supplier, generated?) for a write into (standard, criteria)."""
    if new_code:
        code = guard.check_evidence_code_available(new_code, exclude_id=exclude_id)
        return (lambda: code), False
    return (lambda: generate_evidence_code(standard.code, criteria.code, box_number)), True


# ── Reads ────────────────────────────────────────────────────────────────────


def get_evidence(evidence_id: int, principal: Principal) -> Evidence:
    evidence = guard.get_or_raise(Evidence, evidence_id)
    access_policy.require_evidence_access(principal, evidence, "view")
    return evidence


def get_evidence_history(evidence_id: int, principal: Principal) -> list[EvidenceHistory]:
    """Change history ordered oldest first."""
    evidence = get_evidence(evidence_id, principal)
    return (
        EvidenceHistory.query
        .filter_by(evidence_id=evidence.id)
        .order_by(EvidenceHistory.changed_at, EvidenceHistory.id)
        .all()
    )


def _scope_extra(filters: dict[str, Any]) -> dict[str, Any]:
    """Hierarchy id filters as logging ``extra`` fields; call after _scoped_query validated them."""
    extra = {}
    for field in HIERARCHY_FIELDS:
        value = id_field(filters, field, required=False)
        if value is not None:
            extra[field] = value
    return extra


def _scoped_query(filters: dict[str, Any], principal: Principal):
    """Evidences visible to *principal*, narrowed by the hierarchy id filters."""
    query = Evidence.query
    restriction = access_policy.accessible_evidence_filter(principal)
    if restriction is not None:
        query = query.filter(restriction)
    for field in HIERARCHY_FIELDS:
        value = id_field(filters, field, required=False)
        if value is not None:
            query = query.filter(getattr(Evidence, field) == value)
    return query


def search_evidences(filters: dict[str, Any], principal: Principal) -> list[Evidence]:
    """
    Filter evidences visible to *principal*.

    Supported filters:
        keyword          case-insensitive match on name, description,
                         document_number and code
        program_id, organization_id, standard_id, criteria_id
        status, document_type
        date_from, date_to   inclusive bounds on created_at (dates)
    """
    query = _scoped_query(filters, principal)

    keyword = (filters.get("keyword") or "").strip()
    if keyword:
        pattern = f"%{keyword}%"
        query = query.filter(or_(
            Evidence.name.ilike(pattern),
            Evidence.description.ilike(pattern),
            Evidence.document_number.ilike(pattern),
            Evidence.code.ilike(pattern),
        ))

    if filters.get("status"):
        validate_enum(filters["status"], EVIDENCE_STATUSES, "status")
        query = query.filter(Evidence.status == filters["status"])
    if filters.get("document_type"):
        validate_enum(filters["document_type"], EVIDENCE_DOCUMENT_TYPES, "document_type")
        query = query.filter(Evidence.document_type == filters["document_type"])

    date_from = date_field(filters, "date_from")
    date_to = date_field(filters, "date_to")
    if date_from and date_to and date_from > date_to:
        raise ValidationError(
            "date_from must not be after date_to", details={"date_from": "out_of_range"},
        )
    if date_from:
        query = query.filter(
            Evidence.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc)
        )
    if date_to:
        query = query.filter(
            Evidence.created_at <= datetime.combine(date_to, time.max, tzinfo=timezone.utc)
        )

    results = query.order_by(Evidence.created_at.desc(), Evidence.id.desc()).all()
    logger.debug(
        "Evidence search keyword=%r matched %d", keyword, len(results),
        extra={**_scope_extra(filters), "result_count": len(results)},
    )
    return results


def get_evidence_statistics(filters: dict[str, Any], principal: Principal) -> dict:
    """
    Counts over the evidences visible to *principal*.

    Accepts the hierarchy id filters of search_evidences. Every known status
    and document type is reported, zero when unused.
    """
    query = _scoped_query(filters, principal)

    by_status = {status: 0 for status in sorted(EVIDENCE_STATUSES)}
    by_status.update(
        query.with_entities(Evidence.status, func.count(Evidence.id))
        .group_by(Evidence.status)
        .all()
    )
    by_document_type = {doc_type: 0 for doc_type in sorted(EVIDENCE_DOCUMENT_TYPES)}
    by_document_type.update(
        query.with_entities(Evidence.document_type, func.count(Evidence.id))
        .filter(Evidence.document_type.isnot(None))
        .group_by(Evidence.document_type)
        .all()
    )
    by_standard = [
        {"standard_id": sid, "code": code, "name": name, "count": count}
        for sid, code, name, count in (
            query.join(Standard, Standard.id == Evidence.standard_id)
            .with_entities(Standard.id, Standard.code, Standard.name, func.count(Evidence.id))
            .group_by(Standard.id, Standard.code, Standard.name)
            .order_by(Standard.code, Standard.id)
            .all()
        )
    ]
    by_criteria = [
        {"criteria_id": cid, "standard_id": sid, "code": code, "count": count}
        for cid, sid, code, count in (
            query.join(Criteria, Criteria.id == Evidence.criteria_id)
            .with_entities(Criteria.id, Criteria.standard_id, Criteria.code, func.count(Evidence.id))
            .group_by(Criteria.id, Criteria.standard_id, Criteria.code)
            .order_by(Criteria.standard_id, Criteria.code)
            .all()
        )
    ]

    file_query = query.join(EvidenceFile, EvidenceFile.evidence_id == Evidence.id)
    total = query.count()
    logger.debug("Evidence statistics over %d evidence(s)", total, extra=_scope_extra(filters))
    with_files = file_query.with_entities(func.count(func.distinct(Evidence.id))).scalar() or 0
    return {
        "total_evidences": total,
        "with_files": with_files,
        "without_files": total - with_files,
        "total_files": file_query.with_entities(func.count(EvidenceFile.id)).scalar() or 0,
        "by_status": by_status,
        "by_document_type": by_document_type,
        "by_standard": by_standard,
        "by_criteria": by_criteria,
    }


def get_evidence_tree(program_id: int, organization_id: int, principal: Principal) -> dict:
    """
    Nested view Standard → Criteria → Evidence for one (program, organization).

    Every standard and criterion of the scope is listed; evidences are
    limited to those the principal may access.
    """
    program = guard.get_or_raise(Program, program_id)
    organization = guard.get_or_raise(Organization, organization_id)

    standards = (
        Standard.query
        .filter_by(program_id=program.id, organization_id=organization.id)
        .order_by(Standard.order, Standard.code)
        .all()
    )
    standard_ids = [s.id for s in standards]

    criteria_by_standard: dict[int, list[Criteria]] = {sid: [] for sid in standard_ids}
    evidences_by_criteria: dict[int, list[Evidence]] = {}
    if standard_ids:
        for criteria in (
            Criteria.query
            .filter(Criteria.standard_id.in_(standard_ids))
            .order_by(Criteria.order, Criteria.code)
        ):
            criteria_by_standard[criteria.standard_id].append(criteria)

        evidence_query = Evidence.query.filter(Evidence.standard_id.in_(standard_ids))
        restriction = access_policy.accessible_evidence_filter(principal)
        if restriction is not None:
            evidence_query = evidence_query.filter(restriction)
        for evidence in evidence_query.order_by(Evidence.code):
            evidences_by_criteria.setdefault(evidence.criteria_id, []).append(evidence)

    file_counts = dict(
        db.session.query(EvidenceFile.evidence_id, func.count(EvidenceFile.id))
        .join(Evidence, Evidence.id == EvidenceFile.evidence_id)
        .filter(Evidence.standard_id.in_(standard_ids or [-1]))
        .group_by(EvidenceFile.evidence_id)
        .all()
    )

    total = 0
    tree = []
    for standard in standards:
        criteria_nodes = []
        for criteria in criteria_by_standard[standard.id]:
            evidences = evidences_by_criteria.get(criteria.id, [])
            total += len(evidences)
            criteria_nodes.append({
                "id": criteria.id,
                "code": criteria.code,
                "name": criteria.name,
                "evidence_count": len(evidences),
                "evidences": [
                    {
                        "id": e.id,
                        "code": e.code,
                        "name": e.name,
                        "status": e.status,
                        "file_count": file_counts.get(e.id, 0),
                    }
                    for e in evidences
                ],
            })
        tree.append({
            "id": standard.id,
            "code": standard.code,
            "name": standard.name,
            "criteria": criteria_nodes,
        })

    logger.debug(
        "Evidence tree %s/%s: %d standard(s), %d evidence(s)",
        program.code, organization.code, len(tree), total,
        extra={"program_id": program.id, "organization_id": organization.id, "result_count": total},
    )
    return {
        "program": {"id": program.id, "code": program.code, "name": program.name},
        "organization": {"id": organization.id, "code": organization.code, "name": organization.name},
        "standards": tree,
        "total_evidences": total,
    }


# ── Create / update ──────────────────────────────────────────────────────────


def create_evidence(data: dict[str, Any], principal: Principal) -> Evidence:
    """
    Create an evidence at a validated hierarchy path.

    ``code`` is optional; when absent it is generated from the standard and
    criteria codes and ``box_number`` (default 1).

    Raises:
        ValidationError, NotFoundError, HierarchyIntegrityError,
        PermissionDeniedError, ConflictError
    """
    ids = {field: id_field(data, field) for field in HIERARCHY_FIELDS}
    standard, criteria = guard.check_evidence_placement(**ids)
    access_policy.require_scope_access(principal, standard.id, criteria.id, "create")

    values = _evidence_values(data, partial=False)
    box_number = validate_box_number(_box_number(data))
    next_code, generated = _target_code(data.get("code"), standard, criteria, box_number)

    def stage(code: str) -> Evidence:
        evidence = Evidence(
            code=code, **ids, **values, created_by=principal.id, updated_by=principal.id,
        )
        db.session.add(evidence)
        db.session.flush()
        _append_history(evidence, "created", principal, description=f"Created {code}")
        return evidence

    evidence = _commit_with_code(stage, next_code, generated=generated)
    logger.info(
        "Evidence created id=%s code=%s standard_id=%s criteria_id=%s user_id=%s",
        evidence.id, evidence.code, evidence.standard_id, evidence.criteria_id, principal.id,
        extra={"evidence_id": evidence.id, "evidence_code": evidence.code, "criteria_id": evidence.criteria_id},
    )
    return evidence


def update_evidence(evidence_id: int, data: dict[str, Any], principal: Principal) -> Evidence:
    """Update descriptive fields (and optionally the code) in place.

    Hierarchy ids cannot change here; that is what move is for.
    """
    evidence = guard.get_or_raise(Evidence, evidence_id)
    access_policy.require_evidence_access(principal, evidence, "update")

    for field in HIERARCHY_FIELDS:
        if field in data and id_field(data, field, required=False) not in (None, getattr(evidence, field)):
            raise ValidationError(
                f"{field} cannot be changed by update; use move instead",
                details={field: "immutable"},
            )

    values = _evidence_values(data, partial=True)
    if data.get("code"):
        code = validate_evidence_code(data["code"])
        if code != evidence.code:
            values["code"] = guard.check_evidence_code_available(code, exclude_id=evidence.id)

    changes = {}
    for name, value in values.items():
        old = getattr(evidence, name)
        if old != value:
            changes[name] = {"old": _json_safe(old), "new": _json_safe(value)}
            setattr(evidence, name, value)

    if not changes:
        return evidence

    evidence.updated_by = principal.id
    _append_history(
        evidence, "updated", principal, changes,
        description=f"Updated {', '.join(sorted(changes))}",
    )
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Evidence", "code", values.get("code")) from exc

    logger.info(
        "Evidence updated id=%s code=%s fields=%s user_id=%s",
        evidence.id, evidence.code, sorted(changes), principal.id,
    )
    return evidence


# ── Move / copy ──────────────────────────────────────────────────────────────


def _check_target(
    evidence: Evidence,
    target_standard_id,
    target_criteria_id,
    principal: Principal,
    action: str,
) -> tuple[Standard, Criteria]:
    target = {
        "target_standard_id": target_standard_id,
        "target_criteria_id": target_criteria_id,
    }
    standard_id = id_field(target, "target_standard_id")
    criteria_id = id_field(target, "target_criteria_id")

    access_policy.require_evidence_access(principal, evidence, action)
    standard, criteria = guard.check_evidence_placement(
        evidence.program_id, evidence.organization_id, standard_id, criteria_id,
    )
    access_policy.require_scope_access(principal, standard.id, criteria.id, action)
    return standard, criteria


def move_evidence(
    evidence_id: int,
    target_standard_id: int,
    target_criteria_id: int,
    principal: Principal,
    new_code: str | None = None,
) -> Evidence:
    """
    Relocate an evidence to another (standard, criteria) of the same
    program/organization, in place.

    Without ``new_code`` a code is generated in the target scope using the
    evidence's current box number. Attached files keep their stored names.
    """
    evidence = guard.get_or_raise(Evidence, evidence_id)
    standard, criteria = _check_target(
        evidence, target_standard_id, target_criteria_id, principal, "move",
    )

    if (standard.id, criteria.id) == (evidence.standard_id, evidence.criteria_id) and (
        not new_code or validate_evidence_code(new_code) == evidence.code
    ):
        raise ValidationError(
            "Evidence is already in the target criteria",
            details={"target_criteria_id": "unchanged"},
        )

    evidence_pk = evidence.id
    old = {
        "code": evidence.code,
        "standard_id": evidence.standard_id,
        "criteria_id": evidence.criteria_id,
    }
    box_number = parse_evidence_code(evidence.code).box
    next_code, generated = _target_code(
        new_code, standard, criteria, box_number, exclude_id=evidence_pk,
    )
    target_standard_pk, target_criteria_pk = standard.id, criteria.id

    def stage(code: str) -> Evidence:
        moved = db.session.get(Evidence, evidence_pk)
        moved.code = code
        moved.standard_id = target_standard_pk
        moved.criteria_id = target_criteria_pk
        moved.updated_by = principal.id
        _append_history(
            moved, "moved", principal,
            {
                "old_code": old["code"],
                "old_standard_id": old["standard_id"],
                "old_criteria_id": old["criteria_id"],
                "new_code": code,
                "new_standard_id": target_standard_pk,
                "new_criteria_id": target_criteria_pk,
            },
            description=f"Moved from {old['code']}",
        )
        return moved

    moved = _commit_with_code(stage, next_code, generated=generated)
    logger.info(
        "Evidence moved id=%s %s -> %s criteria_id=%s user_id=%s",
        moved.id, old["code"], moved.code, moved.criteria_id, principal.id,
        extra={"evidence_id": moved.id, "evidence_code": moved.code, "criteria_id": moved.criteria_id},
    )
    return moved


def copy_evidence(
    evidence_id: int,
    target_standard_id: int,
    target_criteria_id: int,
    principal: Principal,
    new_code: str | None = None,
) -> Evidence:
    """
    Create a new evidence in the target scope from the source's descriptive
    fields. Files are not copied; the copy's history starts with a single
    ``copied`` entry and the source is left untouched.
    """
    source = guard.get_or_raise(Evidence, evidence_id)
    standard, criteria = _check_target(
        source, target_standard_id, target_criteria_id, principal, "copy",
    )

    snapshot = {field: getattr(source, field) for field in COPYABLE_FIELDS}
    snapshot["tags"] = list(snapshot["tags"] or [])
    origin = {
        "original_id": source.id,
        "original_code": source.code,
        "original_standard_id": source.standard_id,
        "original_criteria_id": source.criteria_id,
    }
    placement = {
        "program_id": source.program_id,
        "organization_id": source.organization_id,
        "standard_id": standard.id,
        "criteria_id": criteria.id,
    }
    box_number = parse_evidence_code(source.code).box
    next_code, generated = _target_code(new_code, standard, criteria, box_number)

    def stage(code: str) -> Evidence:
        copy = Evidence(
            code=code, **placement, **snapshot,
            created_by=principal.id, updated_by=principal.id,
        )
        db.session.add(copy)
        db.session.flush()
        _append_history(
            copy, "copied", principal, origin,
            description=f"Copied from {origin['original_code']}",
        )
        return copy

    copy = _commit_with_code(stage, next_code, generated=generated)
    logger.info(
        "Evidence copied source_id=%s %s -> id=%s %s user_id=%s",
        origin["original_id"], origin["original_code"], copy.id, copy.code, principal.id,
    )
    return copy


# ── Delete ───────────────────────────────────────────────────────────────────


def _check_deletable(evidence: Evidence, principal: Principal, cascade_files: bool) -> None:
    access_policy.require_evidence_access(principal, evidence, "delete")
    file_count = evidence.files.count()
    if file_count and not cascade_files:
        raise InUseError("Evidence", evidence.id, {"files": file_count})


def _stage_delete(evidence: Evidence, principal: Principal) -> list[str]:
    """Stage deletion of the evidence and its file rows; return stored paths."""
    paths = [f.file_path for f in evidence.files]
    write_audit(
        entity_type="evidence",
        entity_id=evidence.id,
        entity_code=evidence.code,
        action="evidence.delete",
        actor_user_id=principal.id,
        diff=evidence.to_dict(include_files=True),
    )
    db.session.delete(evidence)
    return paths


def _remove_stored_files(paths: list[str]) -> None:
    storage = _storage()
    for path in paths:
        try:
            storage.delete(path)
        except OSError:
            logger.exception("Stored file %s could not be removed; left orphaned", path)


def delete_evidence(evidence_id: int, principal: Principal, cascade_files: bool = False) -> None:
    """
    Delete one evidence.

    An evidence with files is only deleted with ``cascade_files=True``; its
    stored files are then removed after the rows are gone.
    """
    evidence = guard.get_or_raise(Evidence, evidence_id)
    _check_deletable(evidence, principal, cascade_files)

    code = evidence.code
    paths = _stage_delete(evidence, principal)
    db.session.commit()
    _remove_stored_files(paths)
    logger.info(
        "Evidence deleted id=%s code=%s files=%d user_id=%s",
        evidence_id, code, len(paths), principal.id,
    )


def bulk_delete_evidences(
    evidence_ids: list[int],
    principal: Principal,
    cascade_files: bool = False,
) -> list[str]:
    """
    Delete several evidences all-or-nothing.

    Every id is loaded and checked before anything is deleted; one missing,
    denied or in-use evidence aborts the whole batch.

    Returns:
        The codes of the deleted evidences.
    """
    ids = list(dict.fromkeys(evidence_ids or []))
    if not ids:
        raise ValidationError("ids must be a non-empty list", details={"ids": "required"})

    found = {e.id: e for e in Evidence.query.filter(Evidence.id.in_(ids))}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(resource="Evidence", resource_id=missing[0])

    evidences = [found[i] for i in ids]
    for evidence in evidences:
        _check_deletable(evidence, principal, cascade_files)

    codes = [e.code for e in evidences]
    paths: list[str] = []
    for evidence in evidences:
        paths.extend(_stage_delete(evidence, principal))
    db.session.commit()
    _remove_stored_files(paths)

    logger.info(
        "Evidences bulk-deleted count=%d files=%d user_id=%s",
        len(codes), len(paths), principal.id,
    )
    return codes
