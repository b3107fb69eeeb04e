"""
Shared pytest fixtures for the Evidence Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - upload_dir: Per-test UPLOAD_FOLDER under tmp_path (autouse)
    - client: Flask test client (function-scoped)
    - make_user / principal_for: users with role and grants
    - admin: admin Principal
    - hierarchy: one program/organization with two standards and three criteria
    - make_evidence: Evidence rows inserted directly (bypassing the service)
"""

from types import SimpleNamespace

import pytest

from evidence_hub import create_app
from evidence_hub.models import db as _db
from evidence_hub.models.auth import User
from evidence_hub.models.evidence import Evidence
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services.access_policy import Principal


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def upload_dir(app, tmp_path, monkeypatch):
    """Point UPLOAD_FOLDER at a fresh temporary directory for every test."""
    folder = tmp_path / "uploads"
    folder.mkdir()
    monkeypatch.setitem(app.config, "UPLOAD_FOLDER", str(folder))
    return folder


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & principals ───────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: make_user("alice", role="staff", standards=[s], criteria=[c])."""
    counter = {"n": 0}

    def _make(username=None, role="staff", standards=(), criteria=(), status="active"):
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            full_name="Test User",
            role=role,
            status=status,
        )
        user.standard_access = list(standards)
        user.criteria_access = list(criteria)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def principal_for():
    """Build a Principal from a User row."""
    return Principal.from_user


@pytest.fixture()
def admin_user(make_user):
    return make_user("admin", role="admin")


@pytest.fixture()
def admin(admin_user):
    return Principal.from_user(admin_user)


# ── Hierarchy ────────────────────────────────────────────────────────────


def _make_standard(program, organization, code, name):
    standard = Standard(
        code=code, name=name, program_id=program.id, organization_id=organization.id,
    )
    _db.session.add(standard)
    _db.session.flush()
    return standard


def _make_criteria(standard, code, name):
    criteria = Criteria(
        code=code,
        name=name,
        standard_id=standard.id,
        program_id=standard.program_id,
        organization_id=standard.organization_id,
    )
    _db.session.add(criteria)
    _db.session.flush()
    return criteria


@pytest.fixture()
def hierarchy():
    """
    AUN / MOET
      standard 01 ── criteria 01 (c11), criteria 02 (c12)
      standard 02 ── criteria 01 (c21)
    """
    program = Program(code="AUN", name="AUN-QA Program", status="active")
    organization = Organization(code="MOET", name="Ministry of Education", status="active")
    _db.session.add_all([program, organization])
    _db.session.flush()

    s1 = _make_standard(program, organization, "01", "Mission and vision")
    s2 = _make_standard(program, organization, "02", "Curriculum")
    c11 = _make_criteria(s1, "01", "Published mission")
    c12 = _make_criteria(s1, "02", "Mission review")
    c21 = _make_criteria(s2, "01", "Curriculum design")
    _db.session.commit()

    return SimpleNamespace(
        program=program, organization=organization,
        s1=s1, s2=s2, c11=c11, c12=c12, c21=c21,
    )


@pytest.fixture()
def other_scope():
    """A second program/organization pair with one standard and criterion."""
    program = Program(code="ABET", name="ABET Program", status="active")
    organization = Organization(code="ABET-ORG", name="ABET", status="active")
    _db.session.add_all([program, organization])
    _db.session.flush()
    standard = _make_standard(program, organization, "01", "Students")
    criteria = _make_criteria(standard, "01", "Admissions")
    _db.session.commit()
    return SimpleNamespace(program=program, organization=organization, standard=standard, criteria=criteria)


@pytest.fixture()
def make_evidence(hierarchy):
    """Insert an Evidence row directly at (standard, criteria) of the default hierarchy."""

    def _make(code, standard=None, criteria=None, name="Evidence", **fields):
        standard = standard or hierarchy.s1
        criteria = criteria or hierarchy.c11
        evidence = Evidence(
            code=code,
            name=name,
            program_id=standard.program_id,
            organization_id=standard.organization_id,
            standard_id=standard.id,
            criteria_id=criteria.id,
            **fields,
        )
        _db.session.add(evidence)
        _db.session.commit()
        return evidence

    return _make
