"""
Evidence Hub
File Blueprint — evidence file attachments.

Endpoints:
    POST   /api/v1/evidences/<id>/files      — Upload (multipart, field "files"; rate-limited)
    GET    /api/v1/evidences/<id>/files      — List files of an evidence
    GET    /api/v1/files/<id>                — File info
    GET    /api/v1/files/<id>/download       — Download (counts the download)
    DELETE /api/v1/files/<id>                — Delete file row and stored file
"""

import logging

from flask import Blueprint, current_app, jsonify, request, send_file

from evidence_hub import limiter
from evidence_hub.middleware.principal import current_principal
from evidence_hub.middleware.rate_limiter import rate_limit_key
from evidence_hub.services import file_service
from evidence_hub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

file_bp = Blueprint("file", __name__, url_prefix="/api/v1")
register_error_handlers(file_bp)

_upload_limit = limiter.shared_limit(
    lambda: current_app.config["UPLOAD_RATE_LIMIT"],
    scope="evidence_upload",
    key_func=rate_limit_key,
)


@file_bp.route("/evidences/<int:evidence_id>/files", methods=["POST"])
@_upload_limit
def upload_files(evidence_id):
    uploads = [f for f in request.files.getlist("files") if f and f.filename]
    records = file_service.upload_files(evidence_id, uploads, current_principal())
    return jsonify({"count": len(records), "files": [r.to_dict() for r in records]}), 201


@file_bp.route("/evidences/<int:evidence_id>/files", methods=["GET"])
def list_files(evidence_id):
    records = file_service.list_files(evidence_id, current_principal())
    return jsonify([r.to_dict() for r in records])


@file_bp.route("/files/<int:file_id>", methods=["GET"])
def file_info(file_id):
    record = file_service.get_file_info(file_id, current_principal())
    return jsonify(record.to_dict())


@file_bp.route("/files/<int:file_id>/download", methods=["GET"])
def download_file(file_id):
    record, path = file_service.download_file(file_id, current_principal())
    return send_file(
        path,
        mimetype=record.mime_type or None,
        as_attachment=True,
        download_name=record.original_name,
    )


@file_bp.route("/files/<int:file_id>", methods=["DELETE"])
def delete_file(file_id):
    file_service.delete_file(file_id, current_principal())
    return jsonify({"message": "File deleted"}), 200
