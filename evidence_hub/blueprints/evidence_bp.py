"""
Evidence Hub
Evidence Blueprint — lifecycle API for evidences.

Endpoints:
    GET    /api/v1/evidences                         — Search via query string
    POST   /api/v1/evidences/search                  — Search via JSON body
    POST   /api/v1/evidences                         — Create (code optional)
    GET    /api/v1/evidences/<id>                    — Detail (+ files)
    PUT    /api/v1/evidences/<id>                    — Update descriptive fields / code
    DELETE /api/v1/evidences/<id>?cascade_files=1    — Delete
    DELETE /api/v1/evidences/bulk                    — Bulk delete {ids, cascade_files}
    POST   /api/v1/evidences/<id>/move               — Move {target_standard_id, target_criteria_id, new_code?}
    POST   /api/v1/evidences/<id>/copy               — Copy (same body as move)
    GET    /api/v1/evidences/<id>/history            — Change history, oldest first
    GET    /api/v1/evidences/tree                    — ?program_id=&organization_id=
    POST   /api/v1/evidences/generate-code           — Preview next code {standard_code, criteria_code, box_number?}
    GET    /api/v1/evidences/statistics              — Counts by status, document type, standard, criteria
    GET    /api/v1/evidences/export                  — ?format=xlsx|csv plus search filters
    GET    /api/v1/evidences/import-template         — ?program_id=&organization_id= (xlsx)
    POST   /api/v1/evidences/import                  — Multipart {file, program_id, organization_id}
    POST   /api/v1/evidences/bulk-download           — Zip of the files of {ids}

Service layer owns all business logic and commits.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, jsonify, request, send_file

from evidence_hub.core.exceptions import ValidationError
from evidence_hub.middleware.principal import current_principal
from evidence_hub.services import evidence_service, export_service, file_service, import_service
from evidence_hub.services.code_generator import generate_evidence_code
from evidence_hub.services.helpers.fields import id_field
from evidence_hub.utils.errors import register_error_handlers
from evidence_hub.utils.helpers import parse_id_list

logger = logging.getLogger(__name__)

evidence_bp = Blueprint("evidence", __name__, url_prefix="/api/v1/evidences")
register_error_handlers(evidence_bp)

_TRUE_VALUES = {"1", "true", "yes", "on"}
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "invalid"})
    return data


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_VALUES


# ── Search / tree ────────────────────────────────────────────────────────────


@evidence_bp.route("", methods=["GET"])
def list_evidences():
    evidences = evidence_service.search_evidences(request.args, current_principal())
    return jsonify([e.to_dict() for e in evidences])


@evidence_bp.route("/search", methods=["POST"])
def advanced_search():
    evidences = evidence_service.search_evidences(_json_body(), current_principal())
    return jsonify({"total": len(evidences), "evidences": [e.to_dict() for e in evidences]})


@evidence_bp.route("/tree", methods=["GET"])
def evidence_tree():
    tree = evidence_service.get_evidence_tree(
        id_field(request.args, "program_id"),
        id_field(request.args, "organization_id"),
        current_principal(),
    )
    return jsonify(tree)


@evidence_bp.route("/generate-code", methods=["POST"])
def generate_code():
    data = _json_body()
    code = generate_evidence_code(
        data.get("standard_code"),
        data.get("criteria_code"),
        1 if data.get("box_number") is None else data["box_number"],
    )
    return jsonify({"code": code})


# ── CRUD ─────────────────────────────────────────────────────────────────────


@evidence_bp.route("", methods=["POST"])
def create_evidence():
    evidence = evidence_service.create_evidence(_json_body(), current_principal())
    return jsonify(evidence.to_dict(include_history=True)), 201


@evidence_bp.route("/<int:evidence_id>", methods=["GET"])
def get_evidence(evidence_id):
    evidence = evidence_service.get_evidence(evidence_id, current_principal())
    return jsonify(evidence.to_dict(include_files=True))


@evidence_bp.route("/<int:evidence_id>", methods=["PUT"])
def update_evidence(evidence_id):
    evidence = evidence_service.update_evidence(evidence_id, _json_body(), current_principal())
    return jsonify(evidence.to_dict())


@evidence_bp.route("/<int:evidence_id>", methods=["DELETE"])
def delete_evidence(evidence_id):
    evidence_service.delete_evidence(
        evidence_id,
        current_principal(),
        cascade_files=_flag(request.args.get("cascade_files")),
    )
    return jsonify({"message": "Evidence deleted"}), 200


@evidence_bp.route("/bulk", methods=["DELETE"])
def bulk_delete_evidences():
    data = _json_body()
    try:
        ids = parse_id_list(data.get("ids"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"ids": "invalid"}) from None
    codes = evidence_service.bulk_delete_evidences(
        ids, current_principal(), cascade_files=_flag(data.get("cascade_files")),
    )
    return jsonify({"deleted": len(codes), "codes": codes}), 200


# ── Move / copy / history ────────────────────────────────────────────────────


@evidence_bp.route("/<int:evidence_id>/move", methods=["POST"])
def move_evidence(evidence_id):
    data = _json_body()
    evidence = evidence_service.move_evidence(
        evidence_id,
        data.get("target_standard_id"),
        data.get("target_criteria_id"),
        current_principal(),
        new_code=data.get("new_code") or None,
    )
    return jsonify(evidence.to_dict())


@evidence_bp.route("/<int:evidence_id>/copy", methods=["POST"])
def copy_evidence(evidence_id):
    data = _json_body()
    evidence = evidence_service.copy_evidence(
        evidence_id,
        data.get("target_standard_id"),
        data.get("target_criteria_id"),
        current_principal(),
        new_code=data.get("new_code") or None,
    )
    return jsonify(evidence.to_dict(include_history=True)), 201


@evidence_bp.route("/<int:evidence_id>/history", methods=["GET"])
def evidence_history(evidence_id):
    entries = evidence_service.get_evidence_history(evidence_id, current_principal())
    return jsonify([h.to_dict() for h in entries])


# ── Statistics / export / import / bulk download ─────────────────────────────


@evidence_bp.route("/statistics", methods=["GET"])
def evidence_statistics():
    stats = evidence_service.get_evidence_statistics(request.args, current_principal())
    return jsonify(stats)


@evidence_bp.route("/export", methods=["GET"])
def export_evidences():
    fmt = (request.args.get("format") or "xlsx").lower()
    if fmt not in ("xlsx", "csv"):
        raise ValidationError(
            "Unsupported format. Supported values: xlsx, csv.", details={"format": "invalid_choice"},
        )
    evidences = evidence_service.search_evidences(request.args, current_principal())
    filename = f"evidences_{datetime.now(timezone.utc).strftime('%Y%m%d')}.{fmt}"

    if fmt == "xlsx":
        content = export_service.export_evidences_xlsx(evidences)
        mimetype = XLSX_MIMETYPE
    else:
        content = export_service.export_evidences_csv(evidences)
        mimetype = "text/csv"
    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@evidence_bp.route("/import-template", methods=["GET"])
def download_import_template():
    program_id = id_field(request.args, "program_id")
    organization_id = id_field(request.args, "organization_id")
    content = export_service.generate_import_template(program_id, organization_id)
    return Response(
        content,
        mimetype=XLSX_MIMETYPE,
        headers={"Content-Disposition": "attachment; filename=evidence_import_template.xlsx"},
    )


@evidence_bp.route("/import", methods=["POST"])
def import_evidences():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("Import file is required (multipart field 'file')", details={"file": "required"})
    result = import_service.import_evidences(
        id_field(request.form, "program_id"),
        id_field(request.form, "organization_id"),
        upload.filename,
        upload.read(),
        current_principal(),
    )
    return jsonify(result), 201 if result["created_count"] else 200


@evidence_bp.route("/bulk-download", methods=["POST"])
def bulk_download():
    data = _json_body()
    try:
        ids = parse_id_list(data.get("ids"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"ids": "invalid"}) from None
    archive, _ = file_service.build_bulk_archive(ids, current_principal())
    filename = f"evidences_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.zip"
    return send_file(archive, mimetype="application/zip", as_attachment=True, download_name=filename)
