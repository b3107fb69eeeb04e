"""
Hierarchy Consistency Guard — uniqueness, path and in-use rules.

Hierarchy:
  Program ─┐
           ├─ Standard ── Criteria ── Evidence
  Organization ┘

Checks run before any write and never write themselves; a caller that gets
through every check then mutates and commits in one transaction.

In-use rule (identity change or delete blocked while dependents exist):
  Program / Organization → Standards, Evidences
  Standard               → Criteria, Evidences
  Criteria               → Evidences
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import func

from evidence_hub.core.exceptions import (
    ConflictError,
    HierarchyIntegrityError,
    InUseError,
    NotFoundError,
)
from evidence_hub.models import db
from evidence_hub.models.evidence import Evidence
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services.code_generator import validate_evidence_code

logger = logging.getLogger(__name__)


# ── Dependent counters ───────────────────────────────────────────────────────


def _count(model, column, node_id: int) -> int:
    return (
        db.session.query(func.count(model.id))
        .filter(column == node_id)
        .scalar()
    ) or 0


@dataclass(frozen=True)
class DependentCounter:
    """Counts the dependents of one hierarchy kind, grouped by dependent kind."""

    resource: str
    model: Any
    counters: tuple[tuple[str, Callable[[int], int]], ...]

    def dependents(self, node_id: int) -> dict[str, int]:
        return {kind: counter(node_id) for kind, counter in self.counters}

    def count_dependents(self, node_id: int) -> int:
        return sum(self.dependents(node_id).values())


DEPENDENT_COUNTERS: dict[str, DependentCounter] = {
    "program": DependentCounter(
        resource="Program",
        model=Program,
        counters=(
            ("standards", lambda nid: _count(Standard, Standard.program_id, nid)),
            ("evidences", lambda nid: _count(Evidence, Evidence.program_id, nid)),
        ),
    ),
    "organization": DependentCounter(
        resource="Organization",
        model=Organization,
        counters=(
            ("standards", lambda nid: _count(Standard, Standard.organization_id, nid)),
            ("evidences", lambda nid: _count(Evidence, Evidence.organization_id, nid)),
        ),
    ),
    "standard": DependentCounter(
        resource="Standard",
        model=Standard,
        counters=(
            ("criteria", lambda nid: _count(Criteria, Criteria.standard_id, nid)),
            ("evidences", lambda nid: _count(Evidence, Evidence.standard_id, nid)),
        ),
    ),
    "criteria": DependentCounter(
        resource="Criteria",
        model=Criteria,
        counters=(
            ("evidences", lambda nid: _count(Evidence, Evidence.criteria_id, nid)),
        ),
    ),
}

# Fields that define a node's identity; frozen while the node is in use.
IDENTITY_FIELDS: dict[str, frozenset[str]] = {
    "program": frozenset({"code", "type"}),
    "organization": frozenset({"code", "type"}),
    "standard": frozenset({"code", "program_id", "organization_id"}),
    "criteria": frozenset({"code", "type", "standard_id"}),
}


def _counter(kind: str) -> DependentCounter:
    try:
        return DEPENDENT_COUNTERS[kind]
    except KeyError:
        raise ValueError(f"Unknown hierarchy kind: {kind!r}") from None


def count_dependents(kind: str, node_id: int) -> int:
    return _counter(kind).count_dependents(node_id)


def usage_summary(kind: str, node_id: int) -> dict[str, int]:
    """Dependent counts by dependent kind, e.g. {"criteria": 3, "evidences": 12}."""
    return _counter(kind).dependents(node_id)


def is_in_use(kind: str, node_id: int) -> bool:
    return count_dependents(kind, node_id) > 0


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_or_raise(model, pk, resource: str | None = None):
    """Fetch *model* by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=resource or model.__name__, resource_id=pk)
    return obj


# ── Code availability ────────────────────────────────────────────────────────


def check_program_code_available(code: str, *, exclude_id: int | None = None) -> None:
    query = Program.query.filter(Program.code == code)
    if exclude_id is not None:
        query = query.filter(Program.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Program", "code", code)


def check_organization_code_available(code: str, *, exclude_id: int | None = None) -> None:
    query = Organization.query.filter(Organization.code == code)
    if exclude_id is not None:
        query = query.filter(Organization.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Organization", "code", code)


def check_standard_code_available(
    program_id: int,
    organization_id: int,
    code: str,
    *,
    exclude_id: int | None = None,
) -> None:
    query = Standard.query.filter_by(
        program_id=program_id, organization_id=organization_id, code=code,
    )
    if exclude_id is not None:
        query = query.filter(Standard.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(
            "Standard", "code", code,
            scope=f"program_id={program_id}, organization_id={organization_id}",
        )


def check_criteria_code_available(
    standard_id: int,
    code: str,
    *,
    exclude_id: int | None = None,
) -> None:
    query = Criteria.query.filter_by(standard_id=standard_id, code=code)
    if exclude_id is not None:
        query = query.filter(Criteria.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Criteria", "code", code, scope=f"standard_id={standard_id}")


def check_evidence_code_available(code: str, *, exclude_id: int | None = None) -> str:
    """Validate the evidence code format and global uniqueness. Returns the normalized code."""
    normalized = validate_evidence_code(code)
    query = Evidence.query.filter(Evidence.code == normalized)
    if exclude_id is not None:
        query = query.filter(Evidence.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Evidence", "code", normalized)
    return normalized


# ── Create-time checks ───────────────────────────────────────────────────────


def check_standard_create(program_id: int, organization_id: int, code: str) -> tuple[Program, Organization]:
    """Program and organization must exist; (program, organization, code) must be free."""
    program = get_or_raise(Program, program_id)
    organization = get_or_raise(Organization, organization_id)
    check_standard_code_available(program.id, organization.id, code)
    return program, organization


def check_criteria_create(
    standard_id: int,
    code: str,
    *,
    program_id: int | None = None,
    organization_id: int | None = None,
) -> Standard:
    """Standard must exist; (standard, code) must be free; supplied program /
    organization ids, when given, must equal the parent standard's."""
    standard = get_or_raise(Standard, standard_id)
    mismatched = {}
    if program_id is not None and program_id != standard.program_id:
        mismatched["program_id"] = program_id
    if organization_id is not None and organization_id != standard.organization_id:
        mismatched["organization_id"] = organization_id
    if mismatched:
        raise HierarchyIntegrityError(
            f"Criteria program/organization must match standard id={standard.id} "
            f"(program_id={standard.program_id}, organization_id={standard.organization_id})",
            details=mismatched,
        )
    check_criteria_code_available(standard.id, code)
    return standard


def check_evidence_placement(
    program_id: int,
    organization_id: int,
    standard_id: int,
    criteria_id: int,
) -> tuple[Standard, Criteria]:
    """The four ids must form a path: standard ∈ (program, organization), criteria ∈ standard.

    Raises:
        NotFoundError: an id does not resolve.
        HierarchyIntegrityError: the ids resolve but do not line up.
    """
    get_or_raise(Program, program_id)
    get_or_raise(Organization, organization_id)
    standard = get_or_raise(Standard, standard_id)
    criteria = get_or_raise(Criteria, criteria_id)

    if standard.program_id != program_id or standard.organization_id != organization_id:
        raise HierarchyIntegrityError(
            f"Standard id={standard.id} does not belong to "
            f"program_id={program_id}, organization_id={organization_id}",
            details={"standard_id": standard.id},
        )
    if criteria.standard_id != standard.id:
        raise HierarchyIntegrityError(
            f"Criteria id={criteria.id} does not belong to standard id={standard.id}",
            details={"criteria_id": criteria.id},
        )
    return standard, criteria


# ── Update / delete checks ───────────────────────────────────────────────────


def check_identity_update(kind: str, node, changes: dict[str, Any]) -> None:
    """Reject changes to identity fields while *node* has dependents.

    *changes* maps field name to proposed value; unchanged values are ignored.
    """
    identity = IDENTITY_FIELDS[kind]
    altered = sorted(
        name for name, value in changes.items()
        if name in identity and value != getattr(node, name)
    )
    if not altered:
        return
    dependents = usage_summary(kind, node.id)
    if any(dependents.values()):
        logger.info(
            "Identity update blocked kind=%s id=%s fields=%s dependents=%s",
            kind, node.id, altered, dependents,
        )
        raise InUseError(_counter(kind).resource, node.id, dependents, operation="update")


def check_delete(kind: str, node) -> None:
    """Reject deletion of *node* while it has dependents."""
    dependents = usage_summary(kind, node.id)
    if any(dependents.values()):
        logger.info("Delete blocked kind=%s id=%s dependents=%s", kind, node.id, dependents)
        raise InUseError(_counter(kind).resource, node.id, dependents, operation="delete")
