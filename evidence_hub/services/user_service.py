"""User read access and scoped grant management.

Users are provisioned upstream; this service only reads them and edits the
two grant sets the access policy evaluates:

    standard_access   ids of standards the user may work in
    criteria_access   ids of criteria the user may work in

Grant edits are admin-only. A key absent from the payload leaves that set
untouched; a present key replaces the set (an empty list clears it).
"""
import logging
from typing import Any

from evidence_hub.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from evidence_hub.models import db
from evidence_hub.models.audit import write_audit
from evidence_hub.models.auth import USER_ROLES, USER_STATUSES, User
from evidence_hub.models.hierarchy import Criteria, Standard
from evidence_hub.services import hierarchy_guard as guard
from evidence_hub.services.access_policy import Principal
from evidence_hub.services.helpers.fields import validate_enum
from evidence_hub.utils.helpers import parse_id_list

logger = logging.getLogger(__name__)

GRANT_FIELDS = {
    "standard_access": Standard,
    "criteria_access": Criteria,
}


def _require_admin(principal: Principal, action: str) -> None:
    if not principal.is_admin:
        raise PermissionDeniedError(action, "User")


def list_users(principal: Principal, role: str | None = None, status: str | None = None) -> list[User]:
    _require_admin(principal, "list")
    validate_enum(role, USER_ROLES, "role")
    validate_enum(status, USER_STATUSES, "status")
    query = User.query
    if role:
        query = query.filter_by(role=role)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(User.username).all()


def get_user(user_id: int, principal: Principal) -> User:
    """Admins see anyone; other users only themselves."""
    user = guard.get_or_raise(User, user_id)
    if not principal.is_admin and principal.id != user.id:
        raise PermissionDeniedError("view", "User", user_id)
    return user


def _resolve_grants(data: dict, field: str, model) -> list:
    try:
        ids = parse_id_list(data.get(field))
    except ValueError as exc:
        raise ValidationError(str(exc), details={field: "invalid"}) from None
    ids = list(dict.fromkeys(ids))
    found = {row.id: row for row in model.query.filter(model.id.in_(ids or [-1]))}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(resource=model.__name__, resource_id=missing[0])
    return [found[i] for i in ids]


def update_user_permissions(user_id: int, data: dict[str, Any], principal: Principal) -> User:
    """
    Replace a user's standard and/or criteria grants.

    Raises:
        PermissionDeniedError: caller is not an admin.
        NotFoundError: unknown user, standard or criteria id.
        ValidationError: a grant value is not a list of integer ids.
    """
    _require_admin(principal, "update permissions of")
    user = guard.get_or_raise(User, user_id)

    # Resolve every requested set before touching the user.
    requested = {
        field: _resolve_grants(data, field, model)
        for field, model in GRANT_FIELDS.items()
        if field in data
    }

    changes = {}
    for field, rows in requested.items():
        old_ids = sorted(r.id for r in getattr(user, field))
        new_ids = sorted(r.id for r in rows)
        if old_ids != new_ids:
            changes[field] = {"old": old_ids, "new": new_ids}
            setattr(user, field, rows)

    if not changes:
        return user

    write_audit(
        entity_type="user",
        entity_id=user.id,
        entity_code=user.username,
        action="user.permissions",
        actor_user_id=principal.id,
        diff=changes,
    )
    db.session.commit()
    logger.info(
        "User permissions updated user_id=%s fields=%s by user_id=%s",
        user.id, ",".join(sorted(changes)), principal.id,
    )
    return user
