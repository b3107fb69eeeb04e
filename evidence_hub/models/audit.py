"""
Evidence Hub
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for hierarchy mutations
      and for evidence deletions (an evidence's own history table rows go
      away with the evidence, so the deletion itself is recorded here).
"""

import json
from datetime import datetime, timezone

from evidence_hub.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "program", "organization", "standard", "criteria", "evidence", "evidence_file",
}

AUDIT_ACTIONS = {
    "program.create", "program.update", "program.delete",
    "organization.create", "organization.update", "organization.delete",
    "standard.create", "standard.update", "standard.delete",
    "criteria.create", "criteria.update", "criteria.delete",
    "evidence.delete",
    "evidence_file.upload", "evidence_file.delete",
    "user.permissions",
}


class AuditLog(db.Model):
    """
    Immutable audit trail row.

    ``diff_json`` carries the old→new snapshot for updates, or the final
    snapshot for deletes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="program | organization | standard | criteria | evidence | evidence_file | user",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    entity_code = db.Column(db.String(30), default="")

    action = db.Column(db.String(60), nullable=False, comment="standard.delete | evidence.delete | …")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_code": self.entity_code,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────


def write_audit(
    *,
    entity_type: str,
    entity_id: int | str,
    action: str,
    actor_user_id: int | None = None,
    entity_code: str = "",
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        entity_code=entity_code or "",
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str, ensure_ascii=False),
    )
    db.session.add(log)
    db.session.flush()
    return log
