"""
Evidence Hub
Evidence domain models.

Models:
    - Evidence: accreditation evidence record with a structured code
      H<box>.<standard>.<criteria>.<seq>
    - EvidenceHistory: append-only change history, one row per event
    - EvidenceFile: stored file owned by exactly one Evidence
"""

import re
from datetime import datetime, timezone

from sqlalchemy import event

from evidence_hub.models import db

EVIDENCE_CODE_RE = re.compile(r"^H(\d+)\.(\d{2})\.(\d{2})\.(\d{2})$")

EVIDENCE_STATUSES = {"active", "inactive", "pending", "archived"}
EVIDENCE_DOCUMENT_TYPES = {
    "Quyết định", "Thông tư", "Nghị định", "Luật", "Báo cáo", "Kế hoạch", "Khác",
}
HISTORY_ACTIONS = {"created", "updated", "deleted", "moved", "copied"}
FILE_STATUSES = {"active", "deleted", "processing", "failed"}


def _utcnow():
    return datetime.now(timezone.utc)


# ── Evidence ─────────────────────────────────────────────────────────────────


class Evidence(db.Model):
    """
    Evidence document tracked under Program → Organization → Standard → Criteria.

    The four hierarchy ids must always form a valid path; only the lifecycle
    service writes them (create / move / copy).
    """

    __tablename__ = "evidences"
    __table_args__ = (
        db.Index("ix_evidence_program_org", "program_id", "organization_id"),
        db.Index(
            "ix_evidence_hierarchy",
            "program_id", "organization_id", "standard_id", "criteria_id",
        ),
        db.Index("ix_evidence_status", "status"),
        db.Index("ix_evidence_created_at", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")

    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="RESTRICT"), nullable=False,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False,
    )
    standard_id = db.Column(
        db.Integer, db.ForeignKey("standards.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    criteria_id = db.Column(
        db.Integer, db.ForeignKey("criteria.id", ondelete="RESTRICT"), nullable=False, index=True,
    )

    document_number = db.Column(db.String(100), default="")
    issue_date = db.Column(db.Date, nullable=True)
    effective_date = db.Column(db.Date, nullable=True)
    issuing_agency = db.Column(db.String(200), default="")
    document_type = db.Column(db.String(30), default="Khác")
    status = db.Column(
        db.String(20),
        default="active",
        comment="active | inactive | pending | archived",
    )
    notes = db.Column(db.Text, default="")
    tags = db.Column(db.JSON, default=list)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # ── Relationships ────────────────────────────────────────────────────
    history = db.relationship(
        "EvidenceHistory", backref="evidence", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="EvidenceHistory.id",
    )
    files = db.relationship(
        "EvidenceFile", backref="evidence", lazy="dynamic",
        cascade="all, delete-orphan", order_by="EvidenceFile.uploaded_at",
    )

    @property
    def file_name(self):
        """Display name used when deriving stored file names."""
        return f"{self.code}-{self.name}"

    def to_dict(self, include_files=False, include_history=False):
        d = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "program_id": self.program_id,
            "organization_id": self.organization_id,
            "standard_id": self.standard_id,
            "criteria_id": self.criteria_id,
            "document_number": self.document_number,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "issuing_agency": self.issuing_agency,
            "document_type": self.document_type,
            "status": self.status,
            "notes": self.notes,
            "tags": list(self.tags or []),
            "file_name": self.file_name,
            "file_count": self.files.count(),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_files:
            d["files"] = [f.to_dict() for f in self.files.all()]
        if include_history:
            d["change_history"] = [h.to_dict() for h in self.history.all()]
        return d

    def __repr__(self):
        return f"<Evidence {self.id}: {self.code}>"


# ── Change history ───────────────────────────────────────────────────────────


class EvidenceHistory(db.Model):
    """
    Immutable change-history row for one Evidence.

    Kept in its own table (not embedded in the evidence row) so history can
    grow without bloating reads of the evidence itself. Rows are inserted,
    never updated; they disappear only together with their evidence.
    """

    __tablename__ = "evidence_history"
    __table_args__ = (
        db.Index("ix_evidence_history_evidence_ts", "evidence_id", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    evidence_id = db.Column(
        db.Integer, db.ForeignKey("evidences.id", ondelete="CASCADE"), nullable=False,
    )
    action = db.Column(
        db.String(20), nullable=False,
        comment="created | updated | deleted | moved | copied",
    )
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    changes = db.Column(db.JSON, default=dict)
    description = db.Column(db.String(500), default="")

    def to_dict(self):
        return {
            "id": self.id,
            "evidence_id": self.evidence_id,
            "action": self.action,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "changes": self.changes or {},
            "description": self.description,
        }

    def __repr__(self):
        return f"<EvidenceHistory {self.id}: {self.action} on evidence {self.evidence_id}>"


@event.listens_for(EvidenceHistory, "before_update")
def _history_is_append_only(mapper, connection, target):
    raise ValueError(f"EvidenceHistory id={target.id} is append-only and cannot be modified")


# ── Files ────────────────────────────────────────────────────────────────────


class EvidenceFile(db.Model):
    """Uploaded file attached to one Evidence."""

    __tablename__ = "evidence_files"
    __table_args__ = (
        db.Index("ix_evidence_files_evidence", "evidence_id"),
        db.Index("ix_evidence_files_uploaded_at", "uploaded_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    original_name = db.Column(db.String(255), nullable=False)
    stored_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(1024), nullable=False)  # relative to UPLOAD_FOLDER
    size = db.Column(db.Integer, nullable=False, default=0)  # bytes
    mime_type = db.Column(db.String(150), nullable=False, default="")
    extension = db.Column(db.String(20), default="")
    evidence_id = db.Column(
        db.Integer, db.ForeignKey("evidences.id", ondelete="CASCADE"), nullable=False,
    )
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    download_count = db.Column(db.Integer, nullable=False, default=0)
    last_downloaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(20),
        default="active",
        comment="active | deleted | processing | failed",
    )
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def is_image(self):
        return (self.mime_type or "").startswith("image/")

    @property
    def is_pdf(self):
        return self.mime_type == "application/pdf"

    def formatted_size(self):
        """Human-readable size, e.g. '1.5 KB'."""
        size = float(self.size or 0)
        if size == 0:
            return "0 Bytes"
        for unit in ("Bytes", "KB", "MB"):
            if size < 1024:
                return f"{round(size, 2):g} {unit}"
            size /= 1024
        return f"{round(size, 2):g} GB"

    def to_dict(self):
        return {
            "id": self.id,
            "original_name": self.original_name,
            "stored_name": self.stored_name,
            "file_path": self.file_path,
            "size": self.size,
            "formatted_size": self.formatted_size(),
            "mime_type": self.mime_type,
            "extension": self.extension,
            "evidence_id": self.evidence_id,
            "uploaded_by": self.uploaded_by,
            "download_count": self.download_count,
            "last_downloaded_at": (
                self.last_downloaded_at.isoformat() if self.last_downloaded_at else None
            ),
            "status": self.status,
            "is_image": self.is_image,
            "is_pdf": self.is_pdf,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<EvidenceFile {self.id}: {self.stored_name}>"
