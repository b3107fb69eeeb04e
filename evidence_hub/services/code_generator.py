"""
Evidence Hub — Code Generator Service

Generates and normalizes codes for:
  - Evidence:              H{box}.{standard}.{criteria}.{seq}  (e.g. H1.01.02.04)
  - Standard / Criteria:   2-digit zero-padded                 (e.g. 01, 12)
  - Program / Organization uppercase [A-Z0-9_-], max 20 chars  (e.g. AUN-QA)

Evidence codes are unique across the whole store. Generation reads the
highest existing sequence in the exact (box, standard, criteria) scope; two
concurrent callers can compute the same code, so the unique constraint on
``evidences.code`` is the real guard and callers retry on ConflictError.
"""

import re
from typing import NamedTuple

from evidence_hub.core.exceptions import ValidationError
from evidence_hub.models import db
from evidence_hub.models.evidence import EVIDENCE_CODE_RE, Evidence

MAX_EVIDENCE_SEQUENCE = 99

_HIERARCHY_CODE_RE = re.compile(r"^\d{1,2}$")
_ENTITY_CODE_RE = re.compile(r"^[A-Z0-9\-_]+$")
_ENTITY_CODE_MAX_LEN = 20


class EvidenceCode(NamedTuple):
    box: int
    standard_code: str
    criteria_code: str
    sequence: int

    def __str__(self):
        return format_evidence_code(self.box, self.standard_code, self.criteria_code, self.sequence)


# ── Standard / Criteria codes: 2-digit ──────────────────────────────────────

def normalize_hierarchy_code(raw, field: str = "code") -> str:
    """Validate a 1–2 digit standard/criteria code and return it zero-padded.

    Accepts ints and strings ("1", "01", 7). Anything else is rejected.
    Uniqueness is checked by the hierarchy guard, not here.
    """
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"{field} is required", details={field: "required"})
    text = str(raw).strip()
    if not _HIERARCHY_CODE_RE.match(text):
        raise ValidationError(
            f"{field} must be 1-2 digits (e.g. 1, 01, 12), got {raw!r}",
            details={field: "invalid_format"},
        )
    return text.zfill(2)


# ── Program / Organization codes ────────────────────────────────────────────

def normalize_entity_code(raw, field: str = "code") -> str:
    """Uppercase and validate a program/organization code."""
    text = (str(raw) if raw is not None else "").strip().upper()
    if not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(text) > _ENTITY_CODE_MAX_LEN:
        raise ValidationError(
            f"{field} exceeds maximum length of {_ENTITY_CODE_MAX_LEN} characters",
            details={field: "too_long"},
        )
    if not _ENTITY_CODE_RE.match(text):
        raise ValidationError(
            f"{field} may only contain uppercase letters, digits, '-' and '_'",
            details={field: "invalid_format"},
        )
    return text


# ── Evidence codes: H{box}.{ss}.{cc}.{nn} ───────────────────────────────────

def format_evidence_code(box: int, standard_code: str, criteria_code: str, sequence: int) -> str:
    return f"H{box}.{standard_code}.{criteria_code}.{sequence:02d}"


def validate_evidence_code(code, field: str = "code") -> str:
    """Uppercase *code* and check it against the evidence code pattern."""
    text = (str(code) if code is not None else "").strip().upper()
    if not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    match = EVIDENCE_CODE_RE.match(text)
    if not match or int(match.group(1)) < 1 or int(match.group(4)) < 1:
        raise ValidationError(
            f"{field} {code!r} does not match H<box>.<standard>.<criteria>.<seq> (e.g. H1.01.02.04)",
            details={field: "invalid_format"},
        )
    return text


def parse_evidence_code(code: str) -> EvidenceCode:
    """Split a valid evidence code into its parts."""
    text = validate_evidence_code(code)
    match = EVIDENCE_CODE_RE.match(text)
    return EvidenceCode(
        box=int(match.group(1)),
        standard_code=match.group(2),
        criteria_code=match.group(3),
        sequence=int(match.group(4)),
    )


def validate_box_number(box_number) -> int:
    if isinstance(box_number, bool):
        raise ValidationError("box_number must be a positive integer", details={"box_number": "invalid"})
    try:
        box = int(box_number)
    except (TypeError, ValueError):
        raise ValidationError(
            "box_number must be a positive integer", details={"box_number": "invalid"},
        ) from None
    if box < 1:
        raise ValidationError("box_number must be a positive integer", details={"box_number": "invalid"})
    return box


def highest_sequence(box_number: int, standard_code: str, criteria_code: str) -> int:
    """Highest numeric sequence used in the exact scope, 0 when the scope is empty.

    Sequences are compared as integers, never as strings.
    """
    prefix = f"H{box_number}.{standard_code}.{criteria_code}."
    codes = (
        db.session.query(Evidence.code)
        .filter(Evidence.code.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (code,) in codes:
        match = EVIDENCE_CODE_RE.match(code or "")
        if not match or not code.startswith(prefix):
            continue
        highest = max(highest, int(match.group(4)))
    return highest


def generate_evidence_code(standard_code, criteria_code, box_number=1) -> str:
    """
    Generate the next evidence code for a (box, standard, criteria) scope.
    Format: H{BOX}.{SS}.{CC}.{NN}
      - SS / CC are the zero-padded standard and criteria codes
      - NN is highest existing sequence in that exact scope + 1, starting at 01

    Example: H1.01.02.01, then H1.01.02.02

    Raises:
        ValidationError: on malformed inputs, or when the scope already
                         holds sequence 99.
    """
    standard = normalize_hierarchy_code(standard_code, "standard_code")
    criteria = normalize_hierarchy_code(criteria_code, "criteria_code")
    box = validate_box_number(box_number)

    next_sequence = highest_sequence(box, standard, criteria) + 1
    if next_sequence > MAX_EVIDENCE_SEQUENCE:
        raise ValidationError(
            f"Evidence sequence exhausted for scope H{box}.{standard}.{criteria} "
            f"(maximum {MAX_EVIDENCE_SEQUENCE})",
            details={"code": "sequence_exhausted"},
        )
    return format_evidence_code(box, standard, criteria, next_sequence)
