"""
Evidence file operations — upload, download, bulk zip download, info, delete.

Uploads are validated as a batch before anything touches the disk:
count (MAX_FILES_PER_UPLOAD), per-file size (MAX_FILE_SIZE) and mime type
(ALLOWED_MIME_TYPES). Files are then written one by one under the name
produced by the naming engine. If any write or the commit fails, the files
already written by this call are removed and the error propagates.

Uploaded objects only need ``filename``, ``mimetype`` and ``stream``
(werkzeug.datastructures.FileStorage fits).
"""

import io
import logging
import os
import zipfile
from datetime import datetime, timezone

from flask import current_app

from evidence_hub.core.exceptions import NotFoundError, ValidationError
from evidence_hub.models import db
from evidence_hub.models.audit import write_audit
from evidence_hub.models.evidence import Evidence, EvidenceFile
from evidence_hub.services import access_policy
from evidence_hub.services import hierarchy_guard as guard
from evidence_hub.services.access_policy import Principal
from evidence_hub.services.file_storage import LocalFileStorage
from evidence_hub.services.naming import derive_stored_name, file_extension

logger = logging.getLogger(__name__)


def _storage() -> LocalFileStorage:
    return LocalFileStorage(current_app.config["UPLOAD_FOLDER"])


def _stream_size(stream) -> int:
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def _validate_batch(uploads: list) -> list[tuple]:
    """Check the whole batch; return [(upload, original_name, size)]."""
    config = current_app.config
    max_files = config["MAX_FILES_PER_UPLOAD"]
    max_size = config["MAX_FILE_SIZE"]
    allowed = config["ALLOWED_MIME_TYPES"]

    if not uploads:
        raise ValidationError("No files uploaded", details={"files": "required"})
    if len(uploads) > max_files:
        raise ValidationError(
            f"Too many files ({len(uploads)}); maximum is {max_files}",
            details={"files": "too_many"},
        )

    checked = []
    for upload in uploads:
        original_name = os.path.basename((upload.filename or "").replace("\\", "/")).strip()
        if not original_name:
            raise ValidationError("Every file needs a filename", details={"files": "missing_filename"})
        if upload.mimetype not in allowed:
            raise ValidationError(
                f"File type {upload.mimetype or 'unknown'} is not supported ({original_name})",
                details={"files": "unsupported_type"},
            )
        size = _stream_size(upload.stream)
        if size > max_size:
            raise ValidationError(
                f"{original_name} is too large (maximum {max_size // (1024 * 1024)}MB)",
                details={"files": "too_large"},
            )
        checked.append((upload, original_name, size))
    return checked


def list_files(evidence_id: int, principal: Principal) -> list[EvidenceFile]:
    evidence = guard.get_or_raise(Evidence, evidence_id)
    access_policy.require_evidence_access(principal, evidence, "view")
    return evidence.files.all()


def upload_files(evidence_id: int, uploads: list, principal: Principal) -> list[EvidenceFile]:
    """
    Attach uploaded files to an evidence.

    Stored names come from derive_stored_name(code, name, original name).
    Storage never overwrites: a name already on disk, including one written
    earlier in the same batch, fails the batch with ConflictError.

    Returns:
        The created EvidenceFile rows, in upload order.
    """
    evidence = guard.get_or_raise(Evidence, evidence_id)
    access_policy.require_evidence_access(principal, evidence, "upload")
    checked = _validate_batch(uploads)

    storage = _storage()
    directory = storage.evidence_directory(evidence.id)
    written: list[str] = []
    created: list[EvidenceFile] = []
    try:
        for upload, original_name, _ in checked:
            stored_name = derive_stored_name(evidence.code, evidence.name, original_name)
            upload.stream.seek(0)
            file_path, size = storage.save(upload.stream, stored_name, directory)
            written.append(file_path)

            record = EvidenceFile(
                original_name=original_name[:255],
                stored_name=stored_name,
                file_path=file_path,
                size=size,
                mime_type=upload.mimetype,
                extension=file_extension(original_name).lower(),
                evidence_id=evidence.id,
                uploaded_by=principal.id,
            )
            db.session.add(record)
            db.session.flush()
            write_audit(
                entity_type="evidence_file",
                entity_id=record.id,
                entity_code=evidence.code,
                action="evidence_file.upload",
                actor_user_id=principal.id,
                diff={"stored_name": stored_name, "size": size, "evidence_id": evidence.id},
            )
            created.append(record)
        db.session.commit()
    except Exception:
        db.session.rollback()
        for file_path in written:
            storage.delete(file_path)
        logger.warning(
            "Upload batch for evidence_id=%s failed; removed %d written file(s)",
            evidence_id, len(written),
        )
        raise

    logger.info(
        "Files uploaded evidence_id=%s count=%d user_id=%s",
        evidence_id, len(created), principal.id,
    )
    return created


def get_file_info(file_id: int, principal: Principal | None = None) -> EvidenceFile:
    record = guard.get_or_raise(EvidenceFile, file_id, resource="File")
    if principal is not None:
        access_policy.require_evidence_access(principal, record.evidence, "view")
    return record


def download_file(file_id: int, principal: Principal) -> tuple[EvidenceFile, str]:
    """
    Resolve a file for download and count the download.

    Returns:
        (EvidenceFile, absolute path on disk)

    Raises:
        NotFoundError: unknown id, or the row exists but the stored file is gone.
    """
    record = guard.get_or_raise(EvidenceFile, file_id, resource="File")
    access_policy.require_evidence_access(principal, record.evidence, "download")

    storage = _storage()
    if not storage.exists(record.file_path):
        logger.error("Stored file missing file_id=%s path=%s", record.id, record.file_path)
        raise NotFoundError(resource="Stored file", resource_id=record.id)

    record.download_count = (record.download_count or 0) + 1
    record.last_downloaded_at = datetime.now(timezone.utc)
    db.session.commit()
    return record, storage.absolute_path(record.file_path)


def delete_file(file_id: int, principal: Principal) -> None:
    record = guard.get_or_raise(EvidenceFile, file_id, resource="File")
    evidence = record.evidence
    access_policy.require_evidence_access(principal, evidence, "delete")

    file_path = record.file_path
    write_audit(
        entity_type="evidence_file",
        entity_id=record.id,
        entity_code=evidence.code,
        action="evidence_file.delete",
        actor_user_id=principal.id,
        diff=record.to_dict(),
    )
    db.session.delete(record)
    db.session.commit()

    if not _storage().delete(file_path):
        logger.warning("Stored file already gone file_id=%s path=%s", file_id, file_path)
    logger.info(
        "File deleted id=%s evidence_id=%s user_id=%s", file_id, evidence.id, principal.id,
    )


def build_bulk_archive(evidence_ids: list[int], principal: Principal) -> tuple[io.BytesIO, int]:
    """
    Zip the files of several evidences, one folder per evidence code:

        H1.01.01.01/H1.01.01.01-Quality manual.pdf

    Every evidence is looked up and access-checked before any file is read.
    Rows whose stored file is gone are skipped with a warning.

    Returns:
        (archive buffer positioned at 0, number of files in it)

    Raises:
        ValidationError: no ids, or more than BULK_DOWNLOAD_MAX_EVIDENCES.
        NotFoundError: an unknown id, or no stored file at all to send.
    """
    unique_ids = list(dict.fromkeys(evidence_ids))
    if not unique_ids:
        raise ValidationError("ids is required", details={"ids": "required"})
    limit = current_app.config["BULK_DOWNLOAD_MAX_EVIDENCES"]
    if len(unique_ids) > limit:
        raise ValidationError(
            f"Too many evidences ({len(unique_ids)}); maximum is {limit}",
            details={"ids": "too_many"},
        )

    evidences = []
    for evidence_id in unique_ids:
        evidence = guard.get_or_raise(Evidence, evidence_id)
        access_policy.require_evidence_access(principal, evidence, "download")
        evidences.append(evidence)

    storage = _storage()
    buf = io.BytesIO()
    count = 0
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as archive:
        for evidence in evidences:
            for record in evidence.files.all():
                if not storage.exists(record.file_path):
                    logger.warning(
                        "Skipping missing stored file file_id=%s path=%s", record.id, record.file_path,
                    )
                    continue
                archive.write(
                    storage.absolute_path(record.file_path),
                    arcname=f"{evidence.code}/{record.stored_name}",
                )
                count += 1

    if not count:
        raise NotFoundError(resource="Evidence files")
    buf.seek(0)
    logger.info(
        "Bulk download evidences=%d files=%d user_id=%s", len(evidences), count, principal.id,
    )
    return buf, count
