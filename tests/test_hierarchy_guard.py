"""
Tests: hierarchy consistency guard.

Covers placement paths, compound-key uniqueness, code availability and the
in-use rule for identity changes and deletes.
"""

import pytest

from evidence_hub.core.exceptions import (
    ConflictError,
    HierarchyIntegrityError,
    InUseError,
    NotFoundError,
    ValidationError,
)
from evidence_hub.services import hierarchy_guard as guard


class TestEvidencePlacement:
    def test_valid_path(self, hierarchy):
        standard, criteria = guard.check_evidence_placement(
            hierarchy.program.id, hierarchy.organization.id, hierarchy.s1.id, hierarchy.c12.id,
        )
        assert standard.id == hierarchy.s1.id
        assert criteria.id == hierarchy.c12.id

    def test_criteria_under_other_standard(self, hierarchy):
        with pytest.raises(HierarchyIntegrityError) as exc_info:
            guard.check_evidence_placement(
                hierarchy.program.id, hierarchy.organization.id, hierarchy.s1.id, hierarchy.c21.id,
            )
        assert exc_info.value.details == {"criteria_id": hierarchy.c21.id}

    def test_standard_under_other_program(self, hierarchy, other_scope):
        with pytest.raises(HierarchyIntegrityError):
            guard.check_evidence_placement(
                hierarchy.program.id, hierarchy.organization.id,
                other_scope.standard.id, other_scope.criteria.id,
            )

    def test_missing_id_is_not_found(self, hierarchy):
        with pytest.raises(NotFoundError) as exc_info:
            guard.check_evidence_placement(
                hierarchy.program.id, hierarchy.organization.id, hierarchy.s1.id, 9999,
            )
        assert exc_info.value.resource == "Criteria"


class TestCodeAvailability:
    def test_standard_code_scoped_to_program_and_organization(self, hierarchy, other_scope):
        with pytest.raises(ConflictError):
            guard.check_standard_code_available(hierarchy.program.id, hierarchy.organization.id, "01")
        # Same code in a different (program, organization) is free
        guard.check_standard_code_available(other_scope.program.id, other_scope.organization.id, "02")

    def test_standard_code_exclude_self(self, hierarchy):
        guard.check_standard_code_available(
            hierarchy.program.id, hierarchy.organization.id, "01", exclude_id=hierarchy.s1.id,
        )

    def test_criteria_code_scoped_to_standard(self, hierarchy):
        with pytest.raises(ConflictError):
            guard.check_criteria_code_available(hierarchy.s1.id, "02")
        guard.check_criteria_code_available(hierarchy.s2.id, "02")

    def test_evidence_code_global(self, hierarchy, make_evidence):
        make_evidence("H1.01.01.01")
        with pytest.raises(ConflictError):
            guard.check_evidence_code_available("h1.01.01.01")
        assert guard.check_evidence_code_available("H1.01.01.02") == "H1.01.01.02"

    def test_evidence_code_format_checked(self, hierarchy):
        with pytest.raises(ValidationError):
            guard.check_evidence_code_available("E-001")


class TestCreateChecks:
    def test_criteria_create_rejects_mismatched_program(self, hierarchy, other_scope):
        with pytest.raises(HierarchyIntegrityError) as exc_info:
            guard.check_criteria_create(hierarchy.s1.id, "05", program_id=other_scope.program.id)
        assert "program_id" in exc_info.value.details

    def test_criteria_create_matching_ids_accepted(self, hierarchy):
        standard = guard.check_criteria_create(
            hierarchy.s1.id, "05",
            program_id=hierarchy.program.id, organization_id=hierarchy.organization.id,
        )
        assert standard.id == hierarchy.s1.id

    def test_standard_create_unknown_program(self, hierarchy):
        with pytest.raises(NotFoundError):
            guard.check_standard_create(9999, hierarchy.organization.id, "05")


class TestInUseRule:
    def test_usage_summary(self, hierarchy, make_evidence):
        make_evidence("H1.01.01.01")
        make_evidence("H1.01.01.02")
        assert guard.usage_summary("standard", hierarchy.s1.id) == {"criteria": 2, "evidences": 2}
        assert guard.usage_summary("criteria", hierarchy.c11.id) == {"evidences": 2}
        assert guard.usage_summary("program", hierarchy.program.id) == {"standards": 2, "evidences": 2}

    def test_unused_criteria_can_be_deleted(self, hierarchy):
        guard.check_delete("criteria", hierarchy.c12)

    def test_criteria_with_evidence_cannot_be_deleted(self, hierarchy, make_evidence):
        make_evidence("H1.01.01.01")
        with pytest.raises(InUseError) as exc_info:
            guard.check_delete("criteria", hierarchy.c11)
        assert exc_info.value.dependents == {"evidences": 1}

    def test_identity_change_blocked_while_in_use(self, hierarchy):
        with pytest.raises(InUseError) as exc_info:
            guard.check_identity_update("standard", hierarchy.s1, {"code": "09"})
        assert exc_info.value.operation == "update"

    def test_non_identity_change_allowed_while_in_use(self, hierarchy):
        guard.check_identity_update("standard", hierarchy.s1, {"name": "Renamed", "code": "01"})

    def test_identity_change_allowed_when_unused(self, hierarchy):
        guard.check_identity_update("criteria", hierarchy.c12, {"code": "07"})

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            guard.usage_summary("evidence", 1)
