"""
Tests: user reads and admin-managed evidence grants.

Covers:
  - admin-only listing with role/status filters
  - self vs. other user detail
  - partial replace of standard/criteria grants, clear, unknown ids
  - one audit row per effective change, none for a no-op
"""

import json

import pytest

from evidence_hub.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from evidence_hub.models import db as _db
from evidence_hub.models.audit import AuditLog
from evidence_hub.models.auth import User
from evidence_hub.services import user_service as svc
from evidence_hub.services.access_policy import Principal, can_access_scope


def _grants(user_id):
    user = _db.session.get(User, user_id)
    return sorted(s.id for s in user.standard_access), sorted(c.id for c in user.criteria_access)


class TestReadUsers:
    def test_list_filters(self, admin, make_user):
        make_user("carol", role="staff")
        make_user("dave", role="staff", status="suspended")
        assert [u.username for u in svc.list_users(admin)] == ["admin", "carol", "dave"]
        assert [u.username for u in svc.list_users(admin, role="staff", status="active")] == ["carol"]

    def test_list_rejects_unknown_role(self, admin):
        with pytest.raises(ValidationError) as exc_info:
            svc.list_users(admin, role="owner")
        assert exc_info.value.details == {"role": "invalid_choice"}

    def test_list_admin_only(self, make_user, principal_for):
        with pytest.raises(PermissionDeniedError):
            svc.list_users(principal_for(make_user()))

    def test_get_self_or_admin(self, admin, make_user, principal_for):
        alice = make_user("alice")
        bob = make_user("bob")
        assert svc.get_user(alice.id, principal_for(alice)) is alice
        assert svc.get_user(alice.id, admin) is alice
        with pytest.raises(PermissionDeniedError):
            svc.get_user(alice.id, principal_for(bob))

    def test_get_unknown(self, admin):
        with pytest.raises(NotFoundError):
            svc.get_user(9999, admin)


class TestUpdatePermissions:
    def test_replace_both_sets(self, admin, make_user, hierarchy):
        user = make_user(standards=[hierarchy.s1])
        svc.update_user_permissions(user.id, {
            "standard_access": [hierarchy.s2.id],
            "criteria_access": f"{hierarchy.c11.id},{hierarchy.c12.id}",
        }, admin)
        assert _grants(user.id) == ([hierarchy.s2.id], sorted([hierarchy.c11.id, hierarchy.c12.id]))

    def test_absent_key_left_untouched(self, admin, make_user, hierarchy):
        user = make_user(standards=[hierarchy.s1], criteria=[hierarchy.c21])
        svc.update_user_permissions(user.id, {"criteria_access": [hierarchy.c12.id]}, admin)
        assert _grants(user.id) == ([hierarchy.s1.id], [hierarchy.c12.id])

    @pytest.mark.parametrize("cleared", [[], None])
    def test_empty_or_null_clears(self, admin, make_user, hierarchy, cleared):
        user = make_user(standards=[hierarchy.s1, hierarchy.s2])
        svc.update_user_permissions(user.id, {"standard_access": cleared}, admin)
        assert _grants(user.id) == ([], [])

    def test_new_grant_drives_access(self, admin, make_user, hierarchy):
        user = make_user()
        assert not can_access_scope(Principal.from_user(user), hierarchy.s1.id, hierarchy.c11.id)
        svc.update_user_permissions(user.id, {"standard_access": [hierarchy.s1.id]}, admin)
        assert can_access_scope(Principal.from_user(user), hierarchy.s1.id, hierarchy.c11.id)

    def test_audit_row_carries_diff(self, admin, make_user, hierarchy):
        user = make_user("erin", standards=[hierarchy.s1])
        svc.update_user_permissions(user.id, {"standard_access": [hierarchy.s2.id, hierarchy.s1.id]}, admin)

        log = AuditLog.query.filter_by(action="user.permissions").one()
        assert log.entity_type == "user"
        assert log.entity_id == str(user.id)
        assert log.entity_code == "erin"
        assert log.actor_user_id == admin.id
        assert json.loads(log.diff_json) == {
            "standard_access": {"old": [hierarchy.s1.id], "new": sorted([hierarchy.s1.id, hierarchy.s2.id])},
        }

    def test_no_change_writes_no_audit(self, admin, make_user, hierarchy):
        user = make_user(standards=[hierarchy.s1])
        svc.update_user_permissions(user.id, {"standard_access": [hierarchy.s1.id]}, admin)
        svc.update_user_permissions(user.id, {}, admin)
        assert AuditLog.query.filter_by(action="user.permissions").count() == 0

    def test_unknown_id_changes_nothing(self, admin, make_user, hierarchy):
        user = make_user(standards=[hierarchy.s1])
        with pytest.raises(NotFoundError) as exc_info:
            svc.update_user_permissions(user.id, {
                "standard_access": [hierarchy.s2.id],
                "criteria_access": [hierarchy.c11.id, 9999],
            }, admin)
        assert exc_info.value.resource == "Criteria"
        assert _grants(user.id) == ([hierarchy.s1.id], [])

    def test_malformed_ids(self, admin, make_user):
        user = make_user()
        with pytest.raises(ValidationError) as exc_info:
            svc.update_user_permissions(user.id, {"criteria_access": ["abc"]}, admin)
        assert exc_info.value.details == {"criteria_access": "invalid"}

    def test_non_admin_denied(self, make_user, principal_for, hierarchy):
        staff = make_user(standards=[hierarchy.s1])
        target = make_user()
        with pytest.raises(PermissionDeniedError):
            svc.update_user_permissions(target.id, {"standard_access": [hierarchy.s1.id]}, principal_for(staff))
        assert _grants(target.id) == ([], [])

    def test_unknown_user(self, admin):
        with pytest.raises(NotFoundError):
            svc.update_user_permissions(9999, {"standard_access": []}, admin)
