"""
Tests: hierarchy service — Program / Organization / Standard / Criteria CRUD.

Covers:
  - create with code normalization and defaults
  - uniqueness conflicts per scope
  - in-use protection on identity update and delete
  - editor role requirement
  - audit rows for every mutation
"""

import pytest

from evidence_hub.core.exceptions import (
    ConflictError,
    HierarchyIntegrityError,
    InUseError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from evidence_hub.models import db as _db
from evidence_hub.models.audit import AuditLog
from evidence_hub.models.hierarchy import Criteria, Program, Standard
from evidence_hub.services import hierarchy_service as svc


def _audit_actions(entity_type):
    return [
        a.action for a in
        AuditLog.query.filter_by(entity_type=entity_type).order_by(AuditLog.id)
    ]


class TestPrograms:
    def test_create_normalizes_code_and_defaults(self, admin):
        program = svc.create_program({"code": " aun-qa ", "name": "AUN-QA"}, admin)
        assert program.code == "AUN-QA"
        assert program.type == "undergraduate"
        assert program.status == "draft"
        assert program.created_by == admin.id
        assert _audit_actions("program") == ["program.create"]

    def test_duplicate_code_conflict(self, admin):
        svc.create_program({"code": "AUN", "name": "One"}, admin)
        with pytest.raises(ConflictError):
            svc.create_program({"code": "aun", "name": "Two"}, admin)

    def test_name_required(self, admin):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_program({"code": "AUN"}, admin)
        assert exc_info.value.details == {"name": "required"}

    def test_invalid_status(self, admin):
        with pytest.raises(ValidationError):
            svc.create_program({"code": "AUN", "name": "x", "status": "bogus"}, admin)

    def test_list_type_is_rejected(self, admin):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_program({"code": "AUN", "name": "x", "type": ["undergraduate"]}, admin)
        assert exc_info.value.details == {"type": "invalid_choice"}
        assert Program.query.count() == 0

    def test_staff_cannot_create(self, make_user, principal_for):
        staff = principal_for(make_user(role="staff"))
        with pytest.raises(PermissionDeniedError):
            svc.create_program({"code": "AUN", "name": "x"}, staff)

    def test_manager_can_create(self, make_user, principal_for):
        manager = principal_for(make_user(role="manager"))
        assert svc.create_program({"code": "AUN", "name": "x"}, manager).id

    def test_update_records_diff(self, admin):
        program = svc.create_program({"code": "AUN", "name": "Old"}, admin)
        svc.update_program(program.id, {"name": "New", "applicable_year": 2024}, admin)
        assert program.name == "New"
        log = AuditLog.query.filter_by(action="program.update").one()
        assert log.diff["name"] == {"old": "Old", "new": "New"}
        assert log.diff["applicable_year"] == {"old": None, "new": 2024}

    def test_noop_update_writes_no_audit(self, admin):
        program = svc.create_program({"code": "AUN", "name": "Same"}, admin)
        svc.update_program(program.id, {"name": "Same"}, admin)
        assert _audit_actions("program") == ["program.create"]

    def test_code_change_blocked_while_in_use(self, hierarchy, admin):
        with pytest.raises(InUseError) as exc_info:
            svc.update_program(hierarchy.program.id, {"code": "AUN2"}, admin)
        assert exc_info.value.dependents["standards"] == 2

    def test_rename_allowed_while_in_use(self, hierarchy, admin):
        program = svc.update_program(hierarchy.program.id, {"name": "Renamed"}, admin)
        assert program.name == "Renamed"

    def test_delete_in_use_blocked(self, hierarchy, admin):
        with pytest.raises(InUseError):
            svc.delete_program(hierarchy.program.id, admin)
        assert _db.session.get(Program, hierarchy.program.id) is not None

    def test_delete_unused(self, admin):
        program = svc.create_program({"code": "TMP", "name": "Temp"}, admin)
        svc.delete_program(program.id, admin)
        assert _db.session.get(Program, program.id) is None
        log = AuditLog.query.filter_by(action="program.delete").one()
        assert log.entity_code == "TMP"
        assert log.diff["name"] == "Temp"

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            svc.get_program(9999)

    def test_list_filters_by_status(self, admin):
        svc.create_program({"code": "A", "name": "a", "status": "active"}, admin)
        svc.create_program({"code": "B", "name": "b"}, admin)
        assert [p.code for p in svc.list_programs(status="active")] == ["A"]


class TestOrganizations:
    def test_create_and_list_by_type(self, admin):
        svc.create_organization({"code": "moet", "name": "MOET", "type": "government"}, admin)
        svc.create_organization({"code": "aun", "name": "AUN", "type": "international"}, admin)
        orgs = svc.list_organizations(type="government")
        assert [o.code for o in orgs] == ["MOET"]
        assert orgs[0].level == "national"

    def test_invalid_level(self, admin):
        with pytest.raises(ValidationError):
            svc.create_organization({"code": "X", "name": "x", "level": "galactic"}, admin)

    def test_program_and_organization_codes_independent(self, admin):
        svc.create_program({"code": "SAME", "name": "p"}, admin)
        assert svc.create_organization({"code": "SAME", "name": "o"}, admin).code == "SAME"


class TestStandards:
    def test_create_pads_code(self, hierarchy, admin):
        standard = svc.create_standard({
            "code": "3", "name": "Staff",
            "program_id": hierarchy.program.id, "organization_id": hierarchy.organization.id,
        }, admin)
        assert standard.code == "03"
        assert _audit_actions("standard") == ["standard.create"]

    def test_duplicate_in_scope_conflict(self, hierarchy, admin):
        with pytest.raises(ConflictError):
            svc.create_standard({
                "code": "1", "name": "Dup",
                "program_id": hierarchy.program.id, "organization_id": hierarchy.organization.id,
            }, admin)

    def test_same_code_other_scope_allowed(self, hierarchy, other_scope, admin):
        standard = svc.create_standard({
            "code": "02", "name": "Other",
            "program_id": other_scope.program.id, "organization_id": other_scope.organization.id,
        }, admin)
        assert standard.id

    def test_unknown_program(self, hierarchy, admin):
        with pytest.raises(NotFoundError):
            svc.create_standard({
                "code": "05", "name": "x", "program_id": 9999,
                "organization_id": hierarchy.organization.id,
            }, admin)

    def test_weight_out_of_range(self, hierarchy, admin):
        with pytest.raises(ValidationError):
            svc.create_standard({
                "code": "05", "name": "x", "weight": 150,
                "program_id": hierarchy.program.id, "organization_id": hierarchy.organization.id,
            }, admin)

    def test_code_change_blocked_with_criteria(self, hierarchy, admin):
        with pytest.raises(InUseError):
            svc.update_standard(hierarchy.s1.id, {"code": "09"}, admin)

    def test_code_change_on_empty_standard(self, hierarchy, admin):
        standard = svc.create_standard({
            "code": "07", "name": "Empty",
            "program_id": hierarchy.program.id, "organization_id": hierarchy.organization.id,
        }, admin)
        svc.update_standard(standard.id, {"code": "8"}, admin)
        assert standard.code == "08"

    def test_code_change_to_taken_code(self, hierarchy, admin):
        standard = svc.create_standard({
            "code": "07", "name": "Empty",
            "program_id": hierarchy.program.id, "organization_id": hierarchy.organization.id,
        }, admin)
        with pytest.raises(ConflictError):
            svc.update_standard(standard.id, {"code": "02"}, admin)

    def test_list_by_scope(self, hierarchy, other_scope):
        standards = svc.list_standards(program_id=hierarchy.program.id)
        assert [s.code for s in standards] == ["01", "02"]

    def test_delete_with_criteria_blocked(self, hierarchy, admin):
        with pytest.raises(InUseError) as exc_info:
            svc.delete_standard(hierarchy.s2.id, admin)
        assert exc_info.value.dependents == {"criteria": 1, "evidences": 0}
        assert _db.session.get(Standard, hierarchy.s2.id) is not None


class TestCriteria:
    def test_create_inherits_program_and_organization(self, hierarchy, admin):
        criteria = svc.create_criteria({"code": "3", "name": "New", "standard_id": hierarchy.s1.id}, admin)
        assert criteria.code == "03"
        assert criteria.program_id == hierarchy.program.id
        assert criteria.organization_id == hierarchy.organization.id
        assert criteria.type == "mandatory"

    def test_create_rejects_mismatched_organization(self, hierarchy, other_scope, admin):
        with pytest.raises(HierarchyIntegrityError):
            svc.create_criteria({
                "code": "3", "name": "New", "standard_id": hierarchy.s1.id,
                "organization_id": other_scope.organization.id,
            }, admin)

    def test_duplicate_in_standard(self, hierarchy, admin):
        with pytest.raises(ConflictError):
            svc.create_criteria({"code": "02", "name": "Dup", "standard_id": hierarchy.s1.id}, admin)

    def test_same_code_in_other_standard(self, hierarchy, admin):
        criteria = svc.create_criteria({"code": "02", "name": "Ok", "standard_id": hierarchy.s2.id}, admin)
        assert criteria.standard_id == hierarchy.s2.id

    def test_invalid_indicators(self, hierarchy, admin):
        with pytest.raises(ValidationError):
            svc.create_criteria({
                "code": "05", "name": "x", "standard_id": hierarchy.s1.id,
                "indicators": [{"weight": 1}],
            }, admin)

    def test_move_unused_criteria_to_other_standard(self, hierarchy, admin):
        criteria = svc.update_criteria(hierarchy.c12.id, {"standard_id": hierarchy.s2.id}, admin)
        assert criteria.standard_id == hierarchy.s2.id
        assert criteria.program_id == hierarchy.s2.program_id

    def test_reparent_blocked_when_in_use(self, hierarchy, make_evidence, admin):
        make_evidence("H1.01.02.01", criteria=hierarchy.c12)
        with pytest.raises(InUseError):
            svc.update_criteria(hierarchy.c12.id, {"standard_id": hierarchy.s2.id}, admin)

    def test_delete_unused(self, hierarchy, admin):
        svc.delete_criteria(hierarchy.c12.id, admin)
        assert _db.session.get(Criteria, hierarchy.c12.id) is None
        assert _audit_actions("criteria") == ["criteria.delete"]

    def test_delete_in_use(self, hierarchy, make_evidence, admin):
        make_evidence("H1.01.01.01")
        with pytest.raises(InUseError):
            svc.delete_criteria(hierarchy.c11.id, admin)

    def test_list_filters(self, hierarchy):
        assert [c.code for c in svc.list_criteria(standard_id=hierarchy.s1.id)] == ["01", "02"]
        assert len(svc.list_criteria(program_id=hierarchy.program.id)) == 3


class TestDeleteOrder:
    def test_standard_deletable_once_its_criteria_are_gone(self, hierarchy, admin):
        with pytest.raises(InUseError):
            svc.delete_standard(hierarchy.s2.id, admin)
        svc.delete_criteria(hierarchy.c21.id, admin)
        svc.delete_standard(hierarchy.s2.id, admin)
        assert _db.session.get(Standard, hierarchy.s2.id) is None
