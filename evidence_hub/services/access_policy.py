"""
Access Policy — role + scoped grants for evidence and file operations.

Rule:
  - role "admin" short-circuits every check to True
  - otherwise access to an evidence (or to a target scope for create/move/copy)
    is granted when the standard id is in the principal's standard grants
    OR the criteria id is in its criteria grants

The rule is a disjunction: a criteria-level grant opens that one criterion,
never its siblings under the same standard.

Lookups happen in the caller before these checks, so a missing entity
surfaces as NotFoundError rather than PermissionDeniedError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import false, or_

from evidence_hub.core.exceptions import PermissionDeniedError
from evidence_hub.models.evidence import Evidence

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the access policy."""

    id: int | None
    role: str
    standard_access: frozenset[int] = field(default_factory=frozenset)
    criteria_access: frozenset[int] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @classmethod
    def from_user(cls, user) -> "Principal":
        """Build a principal from a ``User`` row and its grant relationships."""
        return cls(
            id=user.id,
            role=user.role,
            standard_access=frozenset(s.id for s in user.standard_access),
            criteria_access=frozenset(c.id for c in user.criteria_access),
        )


def can_access_standard(principal: Principal, standard_id: int) -> bool:
    if principal.is_admin:
        return True
    return standard_id in principal.standard_access


def can_access_criteria(principal: Principal, criteria_id: int) -> bool:
    if principal.is_admin:
        return True
    return criteria_id in principal.criteria_access


def can_access_scope(principal: Principal, standard_id: int, criteria_id: int) -> bool:
    """Standard grant OR criteria grant on a (standard, criteria) scope."""
    if principal.is_admin:
        return True
    return (
        standard_id in principal.standard_access
        or criteria_id in principal.criteria_access
    )


def can_access_evidence(principal: Principal, evidence: Evidence) -> bool:
    return can_access_scope(principal, evidence.standard_id, evidence.criteria_id)


def require_evidence_access(principal: Principal, evidence: Evidence, action: str) -> None:
    """Raise PermissionDeniedError unless *principal* may act on *evidence*."""
    if can_access_evidence(principal, evidence):
        return
    logger.warning(
        "Access denied user_id=%s role=%s action=%s evidence_id=%s code=%s",
        principal.id, principal.role, action, evidence.id, evidence.code,
    )
    raise PermissionDeniedError(action, "Evidence", evidence.id)


def require_scope_access(
    principal: Principal,
    standard_id: int,
    criteria_id: int,
    action: str,
) -> None:
    """Raise PermissionDeniedError unless *principal* may place evidence in the scope."""
    if can_access_scope(principal, standard_id, criteria_id):
        return
    logger.warning(
        "Access denied user_id=%s role=%s action=%s standard_id=%s criteria_id=%s",
        principal.id, principal.role, action, standard_id, criteria_id,
    )
    raise PermissionDeniedError(action, "Criteria", criteria_id)


def accessible_evidence_filter(principal: Principal):
    """SQLAlchemy criterion restricting Evidence queries to what *principal* may see.

    Returns None for admins (no restriction).
    """
    if principal.is_admin:
        return None
    clauses = []
    if principal.standard_access:
        clauses.append(Evidence.standard_id.in_(sorted(principal.standard_access)))
    if principal.criteria_access:
        clauses.append(Evidence.criteria_id.in_(sorted(principal.criteria_access)))
    if not clauses:
        return false()
    return or_(*clauses)
