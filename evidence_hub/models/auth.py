"""
Auth Models — users and their scoped evidence grants.

Authentication (passwords, tokens) happens upstream; this table only holds
what the access policy needs: the role and the two grant sets.

    role            admin | manager | staff
    standard grants user_standard_access (user_id, standard_id)
    criteria grants user_criteria_access (user_id, criteria_id)
"""

from datetime import datetime, timezone

from evidence_hub.models import db

USER_ROLES = {"admin", "manager", "staff"}
USER_STATUSES = {"active", "inactive", "suspended"}


user_standard_access = db.Table(
    "user_standard_access",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("standard_id", db.Integer, db.ForeignKey("standards.id", ondelete="CASCADE"), primary_key=True),
)

user_criteria_access = db.Table(
    "user_criteria_access",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("criteria_id", db.Integer, db.ForeignKey("criteria.id", ondelete="CASCADE"), primary_key=True),
)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), nullable=False, unique=True)
    full_name = db.Column(db.String(100), default="")
    role = db.Column(db.String(20), nullable=False, default="staff")  # admin, manager, staff
    status = db.Column(db.String(20), default="active")  # active, inactive, suspended
    department = db.Column(db.String(200), default="")
    position = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    standard_access = db.relationship("Standard", secondary=user_standard_access, lazy="selectin")
    criteria_access = db.relationship("Criteria", secondary=user_criteria_access, lazy="selectin")

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self, include_access=False):
        d = {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "department": self.department,
            "position": self.position,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_access:
            d["standard_access"] = sorted(s.id for s in self.standard_access)
            d["criteria_access"] = sorted(c.id for c in self.criteria_access)
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"
