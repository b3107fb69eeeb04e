"""
Evidence import from a spreadsheet into one (program, organization).

Pipeline: parse → validate → create.

    parse_import_file(filename, content)   rows as dicts keyed by header
    validate_import_rows(program, organization, rows)
                                           {"valid": [...], "errors": [...]}
    import_evidences(program_id, organization_id, filename, content, principal)

Accepted formats: .xlsx (first sheet, or the one named "Evidences") and
.csv (UTF-8, BOM tolerated). Headers are the keys of IMPORT_COLUMNS;
standard_code, criteria_code and name are required.

Valid rows are created one at a time through create_evidence, so each row
gets the usual access check, code generation and history entry. A row the
lifecycle manager rejects is reported under "failed"; rows already created
stay created.
"""

import csv
import io
import logging
import zipfile
from datetime import date, datetime

from flask import current_app
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from evidence_hub.core.exceptions import EvidenceHubError, ValidationError
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services import evidence_service
from evidence_hub.services import hierarchy_guard as guard
from evidence_hub.services.access_policy import Principal
from evidence_hub.services.code_generator import normalize_hierarchy_code, validate_evidence_code
from evidence_hub.services.export_service import IMPORT_COLUMNS

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("standard_code", "criteria_code", "name")
IMPORT_EXTENSIONS = (".xlsx", ".csv")


# ═══════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════

def _cell(value):
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (datetime, date, int, float)):
        return value
    return str(value).strip()


def _rows_from_table(header: list, body) -> list[dict]:
    keys = [str(h or "").strip().lower() for h in header]
    missing = [h for h in REQUIRED_HEADERS if h not in keys]
    if missing:
        raise ValidationError(
            f"Import file is missing column(s): {', '.join(missing)}",
            details={"file": "missing_columns"},
        )
    rows = []
    for row_num, values in body:
        row = {key: _cell(value) for key, value in zip(keys, values) if key in IMPORT_COLUMNS}
        if not any(v != "" for v in row.values()):
            continue
        row["row_num"] = row_num
        rows.append(row)
    return rows


def _parse_xlsx(content: bytes) -> list[dict]:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValidationError(
            f"Could not read spreadsheet: {exc}", details={"file": "unreadable"},
        ) from None
    try:
        ws = wb["Evidences"] if "Evidences" in wb.sheetnames else wb.worksheets[0]
        table = ws.iter_rows(values_only=True)
        header = next(table, None)
        if header is None:
            return []
        return _rows_from_table(list(header), enumerate(table, start=2))
    finally:
        wb.close()


def _parse_csv(content: bytes) -> list[dict]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("CSV file must be UTF-8 encoded", details={"file": "unreadable"}) from None
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if header is None:
        return []
    return _rows_from_table(header, enumerate(reader, start=2))


def parse_import_file(filename: str, content: bytes) -> list[dict]:
    """Rows of the file as dicts, each carrying its 1-based sheet ``row_num``."""
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        return _parse_xlsx(content)
    if name.endswith(".csv"):
        return _parse_csv(content)
    raise ValidationError(
        f"Unsupported import file {filename!r}; use {' or '.join(IMPORT_EXTENSIONS)}",
        details={"file": "unsupported_type"},
    )


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def validate_import_rows(program: Program, organization: Organization, rows: list[dict]) -> dict:
    """
    Resolve each row's standard and criteria inside the scope.

    Returns {"valid": [...], "errors": [...]}; valid rows carry the four
    hierarchy ids and are ready for create_evidence.
    """
    standards = {
        s.code: s
        for s in Standard.query.filter_by(program_id=program.id, organization_id=organization.id)
    }
    criteria = {
        (c.standard_id, c.code): c
        for c in Criteria.query.filter(Criteria.standard_id.in_([s.id for s in standards.values()] or [-1]))
    }

    valid = []
    errors = []
    seen_codes = set()

    for row in rows:
        row_errors = []
        standard = target = None

        try:
            standard_code = normalize_hierarchy_code(row.get("standard_code"), "standard_code")
            standard = standards.get(standard_code)
            if standard is None:
                row_errors.append(f"Unknown standard {standard_code} in {program.code}/{organization.code}")
        except ValidationError as exc:
            row_errors.append(str(exc))

        try:
            criteria_code = normalize_hierarchy_code(row.get("criteria_code"), "criteria_code")
            if standard is not None:
                target = criteria.get((standard.id, criteria_code))
                if target is None:
                    row_errors.append(f"Unknown criteria {criteria_code} under standard {standard.code}")
        except ValidationError as exc:
            row_errors.append(str(exc))

        if not row.get("name"):
            row_errors.append("name is required")

        code = row.get("code")
        if code:
            try:
                code = validate_evidence_code(code)
            except ValidationError as exc:
                row_errors.append(str(exc))
            else:
                if code in seen_codes:
                    row_errors.append(f"Duplicate code in file: {code}")
                seen_codes.add(code)

        if row_errors:
            errors.append({"row_num": row["row_num"], "name": row.get("name", ""), "errors": row_errors})
            continue

        payload = {k: v for k, v in row.items() if k in IMPORT_COLUMNS and v != ""}
        payload.pop("standard_code", None)
        payload.pop("criteria_code", None)
        if code:
            payload["code"] = code
        valid.append({
            "row_num": row["row_num"],
            "payload": {
                **payload,
                "program_id": program.id,
                "organization_id": organization.id,
                "standard_id": standard.id,
                "criteria_id": target.id,
            },
        })

    return {"valid": valid, "errors": errors}


# ═══════════════════════════════════════════════════════════════
# Import
# ═══════════════════════════════════════════════════════════════

def import_evidences(
    program_id: int,
    organization_id: int,
    filename: str,
    content: bytes,
    principal: Principal,
) -> dict:
    """Full pipeline; returns counts plus per-row validation errors and failures."""
    program = guard.get_or_raise(Program, program_id)
    organization = guard.get_or_raise(Organization, organization_id)

    if not content:
        raise ValidationError("Import file is empty", details={"file": "required"})
    max_size = current_app.config["MAX_FILE_SIZE"]
    if len(content) > max_size:
        raise ValidationError(
            f"Import file is too large (maximum {max_size // (1024 * 1024)}MB)",
            details={"file": "too_large"},
        )

    rows = parse_import_file(filename, content)
    if not rows:
        raise ValidationError("Import file has no data rows", details={"file": "empty"})
    max_rows = current_app.config["IMPORT_MAX_ROWS"]
    if len(rows) > max_rows:
        raise ValidationError(
            f"Import file has {len(rows)} rows; maximum is {max_rows}",
            details={"file": "too_many_rows"},
        )

    validation = validate_import_rows(program, organization, rows)

    created = []
    failed = []
    for row in validation["valid"]:
        try:
            evidence = evidence_service.create_evidence(row["payload"], principal)
        except EvidenceHubError as exc:
            failed.append({"row_num": row["row_num"], "code": exc.code, "error": str(exc)})
            continue
        created.append({"row_num": row["row_num"], "id": evidence.id, "code": evidence.code})

    logger.info(
        "Evidence import program_id=%s organization_id=%s rows=%d created=%d invalid=%d failed=%d user_id=%s",
        program.id, organization.id, len(rows), len(created),
        len(validation["errors"]), len(failed), principal.id,
    )
    problems = len(validation["errors"]) + len(failed)
    return {
        "status": "completed" if not problems else ("partial" if created else "failed"),
        "total_rows": len(rows),
        "created_count": len(created),
        "error_count": problems,
        "created": created,
        "validation_errors": validation["errors"],
        "failed": failed,
    }
