"""
Evidence Hub
Hierarchy domain models.

Models:
    - Program: accreditation program (top level, globally unique code)
    - Organization: assessing organization / level (globally unique code)
    - Standard: standard inside a (program, organization) pair
    - Criteria: criterion inside a standard

Uniqueness is declared here as DB constraints so that a concurrent writer
that slips past the service-level check still fails at commit.
"""

from datetime import datetime, timezone

from evidence_hub.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Program ──────────────────────────────────────────────────────────────────


class Program(db.Model):
    """Accreditation program, e.g. an undergraduate program assessment set."""

    __tablename__ = "programs"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    type = db.Column(
        db.String(30),
        default="undergraduate",
        comment="undergraduate | graduate | institution | other",
    )
    version = db.Column(db.String(10), default="1.0")
    applicable_year = db.Column(db.Integer, nullable=True)
    status = db.Column(
        db.String(20),
        default="draft",
        comment="draft | active | inactive | archived",
    )
    effective_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    objectives = db.Column(db.Text, default="")
    guidelines = db.Column(db.Text, default="")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "version": self.version,
            "applicable_year": self.applicable_year,
            "status": self.status,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "objectives": self.objectives,
            "guidelines": self.guidelines,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Program {self.id}: {self.code}>"


# ── Organization ─────────────────────────────────────────────────────────────


class Organization(db.Model):
    """Assessing organization. Independent uniqueness scope from Program."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    level = db.Column(
        db.String(20),
        default="national",
        comment="national | international | regional | institutional",
    )
    type = db.Column(
        db.String(30),
        default="education",
        comment="government | education | professional | international | other",
    )
    website = db.Column(db.String(300), default="")
    contact_email = db.Column(db.String(200), default="")
    contact_phone = db.Column(db.String(30), default="")
    address = db.Column(db.String(500), default="")
    country = db.Column(db.String(100), default="")
    status = db.Column(
        db.String(20),
        default="active",
        comment="draft | active | inactive | archived",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "type": self.type,
            "website": self.website,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "country": self.country,
            "status": self.status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.code}>"


# ── Standard ─────────────────────────────────────────────────────────────────


class Standard(db.Model):
    """Standard within a (program, organization) scope. Code is 2-digit."""

    __tablename__ = "standards"
    __table_args__ = (
        db.UniqueConstraint(
            "program_id", "organization_id", "code",
            name="uq_standard_program_org_code",
        ),
        db.Index("ix_standard_program_org_order", "program_id", "organization_id", "order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(2), nullable=False)
    name = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    order = db.Column(db.Integer, default=1, comment="Sort order within program/organization")
    weight = db.Column(db.Float, nullable=True, comment="0-100")
    objectives = db.Column(db.Text, default="")
    guidelines = db.Column(db.Text, default="")
    evaluation_criteria = db.Column(db.JSON, default=list)
    status = db.Column(
        db.String(20),
        default="draft",
        comment="draft | active | inactive | archived",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    program = db.relationship("Program", lazy="joined")
    organization = db.relationship("Organization", lazy="joined")

    @property
    def full_name(self):
        return f"Standard {self.code}: {self.name}"

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "full_name": self.full_name,
            "description": self.description,
            "program_id": self.program_id,
            "organization_id": self.organization_id,
            "order": self.order,
            "weight": self.weight,
            "objectives": self.objectives,
            "guidelines": self.guidelines,
            "evaluation_criteria": self.evaluation_criteria or [],
            "status": self.status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Standard {self.id}: {self.code}>"


# ── Criteria ─────────────────────────────────────────────────────────────────


class Criteria(db.Model):
    """Criterion within a standard. Program/organization mirror the parent's."""

    __tablename__ = "criteria"
    __table_args__ = (
        db.UniqueConstraint("standard_id", "code", name="uq_criteria_standard_code"),
        db.Index("ix_criteria_program_org", "program_id", "organization_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(2), nullable=False)
    name = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    standard_id = db.Column(
        db.Integer, db.ForeignKey("standards.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="RESTRICT"), nullable=False,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="RESTRICT"), nullable=False,
    )
    order = db.Column(db.Integer, default=1)
    weight = db.Column(db.Float, nullable=True)
    type = db.Column(
        db.String(20),
        default="mandatory",
        comment="mandatory | optional | conditional",
    )
    requirements = db.Column(db.Text, default="")
    guidelines = db.Column(db.Text, default="")
    indicators = db.Column(db.JSON, default=list)
    status = db.Column(
        db.String(20),
        default="draft",
        comment="draft | active | inactive | archived",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    standard = db.relationship("Standard", lazy="joined")

    @property
    def full_code(self):
        standard_code = self.standard.code if self.standard else "XX"
        return f"{standard_code}.{self.code}"

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "full_code": self.full_code,
            "name": self.name,
            "description": self.description,
            "standard_id": self.standard_id,
            "program_id": self.program_id,
            "organization_id": self.organization_id,
            "order": self.order,
            "weight": self.weight,
            "type": self.type,
            "requirements": self.requirements,
            "guidelines": self.guidelines,
            "indicators": self.indicators or [],
            "status": self.status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Criteria {self.id}: {self.code}>"
