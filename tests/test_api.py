"""
Tests: HTTP API — principal resolution, error mapping and the main flows.

Covers:
  - 401 for missing / unknown / inactive principals; health is open
  - service exceptions → JSON error bodies with ERR_* codes
  - hierarchy CRUD round trip with usage counts
  - evidence create / move / copy / history / bulk delete / tree
  - multipart upload, download and file delete
  - statistics, export, import, bulk download
  - user grants
"""

import io
import zipfile

import pytest
from openpyxl import load_workbook

from evidence_hub.models.evidence import Evidence


def _headers(user):
    return {"X-User-Id": str(user.id)}


def _create_payload(hierarchy, criteria=None, **extra):
    criteria = criteria or hierarchy.c11
    return {
        "name": "Quality manual",
        "program_id": hierarchy.program.id,
        "organization_id": hierarchy.organization.id,
        "standard_id": criteria.standard_id,
        "criteria_id": criteria.id,
        **extra,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Principal / health
# ═════════════════════════════════════════════════════════════════════════════


class TestPrincipal:
    def test_missing_header(self, client):
        res = client.get("/api/v1/programs")
        assert res.status_code == 401
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHORIZED"
        assert body["details"] == {"reason": "missing_user"}

    def test_non_integer_header(self, client):
        res = client.get("/api/v1/programs", headers={"X-User-Id": "abc"})
        assert res.status_code == 401

    def test_unknown_user(self, client):
        res = client.get("/api/v1/programs", headers={"X-User-Id": "9999"})
        assert res.get_json()["details"] == {"reason": "unknown_user"}

    def test_inactive_user(self, client, make_user):
        user = make_user(status="suspended")
        res = client.get("/api/v1/programs", headers=_headers(user))
        assert res.status_code == 401
        assert res.get_json()["details"] == {"reason": "inactive_user"}

    def test_health_needs_no_principal(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_health_live_reports_checks(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "healthy"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"


# ═════════════════════════════════════════════════════════════════════════════
# Hierarchy
# ═════════════════════════════════════════════════════════════════════════════


class TestHierarchyApi:
    def test_program_crud(self, client, admin_user):
        headers = _headers(admin_user)
        res = client.post("/api/v1/programs", json={"code": "aun", "name": "AUN-QA"}, headers=headers)
        assert res.status_code == 201
        program_id = res.get_json()["id"]
        assert res.get_json()["code"] == "AUN"

        res = client.put(f"/api/v1/programs/{program_id}", json={"status": "active"}, headers=headers)
        assert res.get_json()["status"] == "active"

        res = client.get(f"/api/v1/programs/{program_id}", headers=headers)
        assert res.get_json()["usage"] == {"standards": 0, "evidences": 0}

        res = client.delete(f"/api/v1/programs/{program_id}", headers=headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/programs/{program_id}", headers=headers).status_code == 404

    def test_duplicate_is_409(self, client, admin_user, hierarchy):
        res = client.post("/api/v1/programs", json={"code": "AUN", "name": "Again"}, headers=_headers(admin_user))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_delete_in_use_is_409_with_dependents(self, client, admin_user, hierarchy):
        res = client.delete(f"/api/v1/standards/{hierarchy.s1.id}", headers=_headers(admin_user))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_IN_USE"
        assert body["details"]["dependents"]["criteria"] == 2

    def test_criteria_mismatch_is_422(self, client, admin_user, hierarchy, other_scope):
        res = client.post("/api/v1/criteria", json={
            "code": "05", "name": "x", "standard_id": hierarchy.s1.id,
            "program_id": other_scope.program.id,
        }, headers=_headers(admin_user))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_HIERARCHY_INTEGRITY"

    def test_staff_cannot_edit_hierarchy(self, client, make_user):
        res = client.post("/api/v1/programs", json={"code": "X", "name": "x"}, headers=_headers(make_user()))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_list_criteria_by_standard(self, client, make_user, hierarchy):
        res = client.get(f"/api/v1/criteria?standard_id={hierarchy.s2.id}", headers=_headers(make_user()))
        assert [c["code"] for c in res.get_json()] == ["01"]

    def test_non_object_body(self, client, admin_user):
        res = client.post("/api/v1/programs", json=["AUN"], headers=_headers(admin_user))
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# Evidences
# ═════════════════════════════════════════════════════════════════════════════


class TestEvidenceApi:
    def test_create_returns_history(self, client, admin_user, hierarchy):
        res = client.post("/api/v1/evidences", json=_create_payload(hierarchy), headers=_headers(admin_user))
        assert res.status_code == 201
        body = res.get_json()
        assert body["code"] == "H1.01.01.01"
        assert body["file_name"] == "H1.01.01.01-Quality manual"
        assert [h["action"] for h in body["change_history"]] == ["created"]

    def test_validation_error_body(self, client, admin_user, hierarchy):
        res = client.post(
            "/api/v1/evidences", json=_create_payload(hierarchy, name=""), headers=_headers(admin_user),
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"name": "required"}

    def test_non_string_status_is_422(self, client, admin_user, hierarchy):
        res = client.post(
            "/api/v1/evidences", json=_create_payload(hierarchy, status=["active"]), headers=_headers(admin_user),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"status": "invalid_choice"}
        assert Evidence.query.count() == 0

    def test_zero_box_number_is_422(self, client, admin_user, hierarchy):
        res = client.post(
            "/api/v1/evidences", json=_create_payload(hierarchy, box_number=0), headers=_headers(admin_user),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"box_number": "invalid"}

    def test_not_found(self, client, admin_user):
        res = client.get("/api/v1/evidences/9999", headers=_headers(admin_user))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_forbidden(self, client, make_user, hierarchy, make_evidence):
        evidence = make_evidence("H1.01.01.01")
        staff = make_user(criteria=[hierarchy.c12])
        res = client.get(f"/api/v1/evidences/{evidence.id}", headers=_headers(staff))
        assert res.status_code == 403

    def test_search_lists_only_visible(self, client, make_user, hierarchy, make_evidence):
        make_evidence("H1.01.01.01", name="Visible")
        make_evidence("H1.02.01.01", standard=hierarchy.s2, criteria=hierarchy.c21, name="Hidden")
        staff = make_user(standards=[hierarchy.s1])

        res = client.get("/api/v1/evidences", headers=_headers(staff))
        assert [e["name"] for e in res.get_json()] == ["Visible"]

        res = client.post("/api/v1/evidences/search", json={"keyword": "hid"}, headers=_headers(staff))
        assert res.get_json() == {"total": 0, "evidences": []}

    def test_move_and_history(self, client, admin_user, hierarchy, make_evidence):
        evidence = make_evidence("H1.01.01.01")
        headers = _headers(admin_user)
        res = client.post(f"/api/v1/evidences/{evidence.id}/move", json={
            "target_standard_id": hierarchy.s2.id, "target_criteria_id": hierarchy.c21.id,
        }, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["code"] == "H1.02.01.01"

        history = client.get(f"/api/v1/evidences/{evidence.id}/history", headers=headers).get_json()
        assert [h["action"] for h in history] == ["moved"]
        assert history[0]["changes"]["old_code"] == "H1.01.01.01"

    def test_move_missing_target_is_422(self, client, admin_user, make_evidence):
        evidence = make_evidence("H1.01.01.01")
        res = client.post(f"/api/v1/evidences/{evidence.id}/move", json={}, headers=_headers(admin_user))
        assert res.status_code == 422
        assert res.get_json()["details"] == {"target_standard_id": "required"}

    def test_copy(self, client, admin_user, hierarchy, make_evidence):
        evidence = make_evidence("H1.01.01.01")
        res = client.post(f"/api/v1/evidences/{evidence.id}/copy", json={
            "target_standard_id": hierarchy.s1.id, "target_criteria_id": hierarchy.c12.id,
        }, headers=_headers(admin_user))
        assert res.status_code == 201
        body = res.get_json()
        assert body["code"] == "H1.01.02.01"
        assert body["change_history"][0]["changes"]["original_code"] == "H1.01.01.01"

    def test_update_rejects_hierarchy_change(self, client, admin_user, hierarchy, make_evidence):
        evidence = make_evidence("H1.01.01.01")
        res = client.put(
            f"/api/v1/evidences/{evidence.id}",
            json={"criteria_id": hierarchy.c12.id},
            headers=_headers(admin_user),
        )
        assert res.status_code == 422

    def test_bulk_delete(self, client, admin_user, make_evidence):
        a = make_evidence("H1.01.01.01")
        b = make_evidence("H1.01.01.02")
        res = client.delete(
            "/api/v1/evidences/bulk", json={"ids": f"{a.id},{b.id}"}, headers=_headers(admin_user),
        )
        assert res.status_code == 200
        assert res.get_json() == {"deleted": 2, "codes": ["H1.01.01.01", "H1.01.01.02"]}
        assert Evidence.query.count() == 0

    def test_bulk_delete_invalid_ids(self, client, admin_user):
        res = client.delete("/api/v1/evidences/bulk", json={"ids": ["x"]}, headers=_headers(admin_user))
        assert res.status_code == 422

    def test_tree_requires_scope(self, client, admin_user):
        res = client.get("/api/v1/evidences/tree", headers=_headers(admin_user))
        assert res.status_code == 422
        assert res.get_json()["details"] == {"program_id": "required"}

    def test_tree(self, client, admin_user, hierarchy, make_evidence):
        make_evidence("H1.01.01.01")
        res = client.get(
            f"/api/v1/evidences/tree?program_id={hierarchy.program.id}"
            f"&organization_id={hierarchy.organization.id}",
            headers=_headers(admin_user),
        )
        assert res.status_code == 200
        assert res.get_json()["total_evidences"] == 1

    def test_generate_code_preview(self, client, admin_user, make_evidence):
        make_evidence("H1.01.01.03")
        res = client.post(
            "/api/v1/evidences/generate-code",
            json={"standard_code": "1", "criteria_code": "1"},
            headers=_headers(admin_user),
        )
        assert res.get_json() == {"code": "H1.01.01.04"}
        assert Evidence.query.count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Files
# ═════════════════════════════════════════════════════════════════════════════


class TestFileApi:
    @pytest.fixture()
    def evidence(self, make_evidence):
        return make_evidence("H1.01.01.01", name="Charter")

    def _upload(self, client, evidence, user, *files):
        return client.post(
            f"/api/v1/evidences/{evidence.id}/files",
            data={"files": [(io.BytesIO(content), name, mimetype) for name, content, mimetype in files]},
            content_type="multipart/form-data",
            headers=_headers(user),
        )

    def test_upload_download_delete(self, client, admin_user, evidence, upload_dir):
        res = self._upload(client, evidence, admin_user, ("scan.pdf", b"%PDF-1.4", "application/pdf"))
        assert res.status_code == 201
        body = res.get_json()
        assert body["count"] == 1
        file_id = body["files"][0]["id"]
        assert body["files"][0]["stored_name"] == "H1.01.01.01-Charter.pdf"

        res = client.get(f"/api/v1/files/{file_id}/download", headers=_headers(admin_user))
        assert res.status_code == 200
        assert res.data == b"%PDF-1.4"
        assert "scan.pdf" in res.headers["Content-Disposition"]
        res.close()

        info = client.get(f"/api/v1/files/{file_id}", headers=_headers(admin_user)).get_json()
        assert info["download_count"] == 1

        res = client.delete(f"/api/v1/files/{file_id}", headers=_headers(admin_user))
        assert res.status_code == 200
        assert client.get(f"/api/v1/evidences/{evidence.id}/files", headers=_headers(admin_user)).get_json() == []

    def test_upload_without_files(self, client, admin_user, evidence):
        res = client.post(
            f"/api/v1/evidences/{evidence.id}/files",
            data={}, content_type="multipart/form-data", headers=_headers(admin_user),
        )
        assert res.status_code == 422

    def test_upload_conflict(self, client, admin_user, evidence):
        res = self._upload(
            client, evidence, admin_user,
            ("a.pdf", b"1", "application/pdf"), ("b.pdf", b"2", "application/pdf"),
        )
        assert res.status_code == 409

    def test_delete_evidence_with_files_needs_cascade(self, client, admin_user, evidence, upload_dir):
        self._upload(client, evidence, admin_user, ("a.pdf", b"1", "application/pdf"))
        res = client.delete(f"/api/v1/evidences/{evidence.id}", headers=_headers(admin_user))
        assert res.status_code == 409
        assert res.get_json()["details"] == {"dependents": {"files": 1}}

        res = client.delete(f"/api/v1/evidences/{evidence.id}?cascade_files=true", headers=_headers(admin_user))
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# Statistics / export / import / bulk download
# ═════════════════════════════════════════════════════════════════════════════


class TestExchangeApi:
    def _scope_query(self, hierarchy):
        return f"program_id={hierarchy.program.id}&organization_id={hierarchy.organization.id}"

    def test_statistics(self, client, admin_user, hierarchy, make_evidence):
        make_evidence("H1.01.01.01")
        make_evidence("H1.02.01.01", standard=hierarchy.s2, criteria=hierarchy.c21, status="pending")
        res = client.get(
            f"/api/v1/evidences/statistics?standard_id={hierarchy.s2.id}", headers=_headers(admin_user),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["total_evidences"] == 1
        assert body["by_status"]["pending"] == 1

    def test_export_xlsx(self, client, admin_user, make_evidence):
        make_evidence("H1.01.01.01", name="Charter")
        res = client.get("/api/v1/evidences/export", headers=_headers(admin_user))
        assert res.status_code == 200
        assert res.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        assert ".xlsx" in res.headers["Content-Disposition"]

        ws = load_workbook(io.BytesIO(res.data))["Evidences"]
        assert ws["A5"].value == "H1.01.01.01"
        assert ws["B5"].value == "Charter"

    def test_export_csv_applies_filters(self, client, admin_user, hierarchy, make_evidence):
        make_evidence("H1.01.01.01", name="Charter")
        make_evidence("H1.02.01.01", standard=hierarchy.s2, criteria=hierarchy.c21, name="Syllabus")
        res = client.get(
            f"/api/v1/evidences/export?format=csv&standard_id={hierarchy.s2.id}", headers=_headers(admin_user),
        )
        assert res.mimetype == "text/csv"
        lines = res.get_data(as_text=True).strip().splitlines()
        assert lines[0].startswith("code,name,standard_code")
        assert len(lines) == 2
        assert lines[1].startswith("H1.02.01.01,Syllabus,02")

    def test_export_unknown_format(self, client, admin_user):
        res = client.get("/api/v1/evidences/export?format=pdf", headers=_headers(admin_user))
        assert res.status_code == 422
        assert res.get_json()["details"] == {"format": "invalid_choice"}

    def test_import_template(self, client, admin_user, hierarchy):
        res = client.get(
            f"/api/v1/evidences/import-template?{self._scope_query(hierarchy)}", headers=_headers(admin_user),
        )
        assert res.status_code == 200
        wb = load_workbook(io.BytesIO(res.data))
        assert wb.sheetnames == ["Evidences", "Criteria", "Values"]

    def test_import_csv(self, client, admin_user, hierarchy):
        content = "standard_code,criteria_code,name\n01,01,Charter\n09,01,Lost\n".encode("utf-8")
        res = client.post(
            "/api/v1/evidences/import",
            data={
                "file": (io.BytesIO(content), "evidences.csv", "text/csv"),
                "program_id": str(hierarchy.program.id),
                "organization_id": str(hierarchy.organization.id),
            },
            content_type="multipart/form-data",
            headers=_headers(admin_user),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "partial"
        assert [c["code"] for c in body["created"]] == ["H1.01.01.01"]
        assert body["validation_errors"][0]["row_num"] == 3

    def test_import_without_file(self, client, admin_user, hierarchy):
        res = client.post(
            "/api/v1/evidences/import",
            data={"program_id": str(hierarchy.program.id), "organization_id": str(hierarchy.organization.id)},
            content_type="multipart/form-data",
            headers=_headers(admin_user),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"file": "required"}

    def test_bulk_download(self, client, admin_user, make_evidence):
        a = make_evidence("H1.01.01.01", name="Charter")
        b = make_evidence("H1.01.01.02", name="Minutes")
        for evidence in (a, b):
            client.post(
                f"/api/v1/evidences/{evidence.id}/files",
                data={"files": [(io.BytesIO(b"%PDF-1.4"), "scan.pdf", "application/pdf")]},
                content_type="multipart/form-data",
                headers=_headers(admin_user),
            )

        res = client.post(
            "/api/v1/evidences/bulk-download", json={"ids": [a.id, b.id]}, headers=_headers(admin_user),
        )
        assert res.status_code == 200
        assert res.mimetype == "application/zip"
        with zipfile.ZipFile(io.BytesIO(res.data)) as archive:
            assert sorted(archive.namelist()) == [
                "H1.01.01.01/H1.01.01.01-Charter.pdf",
                "H1.01.01.02/H1.01.01.02-Minutes.pdf",
            ]
        res.close()

    def test_bulk_download_invalid_ids(self, client, admin_user):
        res = client.post("/api/v1/evidences/bulk-download", json={"ids": ["x"]}, headers=_headers(admin_user))
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


class TestUserApi:
    def test_me(self, client, make_user, hierarchy):
        staff = make_user("alice", standards=[hierarchy.s1])
        res = client.get("/api/v1/users/me", headers=_headers(staff))
        assert res.status_code == 200
        body = res.get_json()
        assert body["username"] == "alice"
        assert body["standard_access"] == [hierarchy.s1.id]

    def test_list_is_admin_only(self, client, admin_user, make_user):
        staff = make_user("bob")
        assert client.get("/api/v1/users", headers=_headers(staff)).status_code == 403
        res = client.get("/api/v1/users?role=staff", headers=_headers(admin_user))
        assert [u["username"] for u in res.get_json()] == ["bob"]

    def test_grant_applies_on_next_request(self, client, admin_user, make_user, hierarchy):
        staff = make_user()
        payload = _create_payload(hierarchy)
        assert client.post("/api/v1/evidences", json=payload, headers=_headers(staff)).status_code == 403

        res = client.put(
            f"/api/v1/users/{staff.id}/permissions",
            json={"criteria_access": [hierarchy.c11.id]},
            headers=_headers(admin_user),
        )
        assert res.status_code == 200
        assert res.get_json() == {
            "id": staff.id, "standard_access": [], "criteria_access": [hierarchy.c11.id],
        }
        assert client.post("/api/v1/evidences", json=payload, headers=_headers(staff)).status_code == 201

    def test_permissions_body_must_be_object(self, client, admin_user, make_user):
        staff = make_user()
        res = client.put(
            f"/api/v1/users/{staff.id}/permissions", json=[1, 2], headers=_headers(admin_user),
        )
        assert res.status_code == 422

    def test_permissions_unknown_criteria(self, client, admin_user, make_user):
        staff = make_user()
        res = client.put(
            f"/api/v1/users/{staff.id}/permissions",
            json={"criteria_access": [9999]},
            headers=_headers(admin_user),
        )
        assert res.status_code == 404
