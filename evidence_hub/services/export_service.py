"""
Evidence list exports and the import template.

    export_evidences_xlsx(evidences)  → xlsx bytes (one sheet, styled header)
    export_evidences_csv(evidences)   → CSV text
    generate_import_template(program_id, organization_id) → xlsx bytes

Rows are produced in the order given; callers pass the output of
search_evidences so access restrictions are already applied. Content is
built in memory, no temp files.
"""

import csv
import io
import logging

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from evidence_hub.models.evidence import EVIDENCE_DOCUMENT_TYPES, EVIDENCE_STATUSES
from evidence_hub.models.hierarchy import Criteria, Organization, Program, Standard
from evidence_hub.services import hierarchy_guard as guard

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

EXPORT_COLUMNS = [
    ("code", "Code"),
    ("name", "Name"),
    ("standard_code", "Standard"),
    ("criteria_code", "Criteria"),
    ("document_number", "Document number"),
    ("document_type", "Document type"),
    ("issue_date", "Issue date"),
    ("effective_date", "Effective date"),
    ("issuing_agency", "Issuing agency"),
    ("status", "Status"),
    ("file_count", "Files"),
    ("description", "Description"),
    ("created_at", "Created at"),
]

# Column keys read back by the import service, in template order.
IMPORT_COLUMNS = [
    "standard_code",
    "criteria_code",
    "name",
    "code",
    "box_number",
    "document_number",
    "document_type",
    "status",
    "issue_date",
    "effective_date",
    "issuing_agency",
    "description",
    "notes",
]


def _apply_header_style(ws, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Size columns to content, capped at 60 chars."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def _code_lookups(evidences) -> tuple[dict[int, str], dict[int, str]]:
    standard_ids = {e.standard_id for e in evidences}
    criteria_ids = {e.criteria_id for e in evidences}
    standards = dict(
        Standard.query.with_entities(Standard.id, Standard.code)
        .filter(Standard.id.in_(standard_ids or [-1]))
        .all()
    )
    criteria = dict(
        Criteria.query.with_entities(Criteria.id, Criteria.code)
        .filter(Criteria.id.in_(criteria_ids or [-1]))
        .all()
    )
    return standards, criteria


def _export_rows(evidences) -> list[list]:
    standards, criteria = _code_lookups(evidences)
    rows = []
    for e in evidences:
        values = {
            "code": e.code,
            "name": e.name,
            "standard_code": standards.get(e.standard_id, ""),
            "criteria_code": criteria.get(e.criteria_id, ""),
            "document_number": e.document_number or "",
            "document_type": e.document_type or "",
            "issue_date": e.issue_date.isoformat() if e.issue_date else "",
            "effective_date": e.effective_date.isoformat() if e.effective_date else "",
            "issuing_agency": e.issuing_agency or "",
            "status": e.status or "",
            "file_count": e.files.count(),
            "description": (e.description or "").replace("\n", " "),
            "created_at": e.created_at.strftime("%Y-%m-%d %H:%M") if e.created_at else "",
        }
        rows.append([values[key] for key, _ in EXPORT_COLUMNS])
    return rows


def export_evidences_xlsx(evidences) -> bytes:
    """Workbook with one "Evidences" sheet: title, header row, one row per evidence."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Evidences"

    ws["A1"] = "Evidence list"
    ws["A1"].font = Font(size=14, bold=True, color="1F4E78")
    ws["A2"] = f"{len(evidences)} evidence(s)"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    header_row = 4
    for col, (_, label) in enumerate(EXPORT_COLUMNS, start=1):
        ws.cell(row=header_row, column=col).value = label
    _apply_header_style(ws, header_row, len(EXPORT_COLUMNS))

    for row_i, values in enumerate(_export_rows(evidences), start=header_row + 1):
        for col, value in enumerate(values, start=1):
            ws.cell(row=row_i, column=col).value = value
    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    logger.info("Exported %d evidence(s) as xlsx", len(evidences))
    return buf.getvalue()


def export_evidences_csv(evidences) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([key for key, _ in EXPORT_COLUMNS])
    writer.writerows(_export_rows(evidences))
    logger.info("Exported %d evidence(s) as csv", len(evidences))
    return buf.getvalue()


def generate_import_template(program_id: int, organization_id: int) -> bytes:
    """
    Import workbook for one (program, organization).

    Sheet "Evidences" holds the header row the importer expects plus one
    example row; sheet "Criteria" lists the valid standard/criteria codes of
    the scope; sheet "Values" lists allowed document types and statuses.
    """
    program = guard.get_or_raise(Program, program_id)
    organization = guard.get_or_raise(Organization, organization_id)

    wb = Workbook()
    ws = wb.active
    ws.title = "Evidences"
    for col, key in enumerate(IMPORT_COLUMNS, start=1):
        ws.cell(row=1, column=col).value = key
    _apply_header_style(ws, 1, len(IMPORT_COLUMNS))

    criteria = (
        Criteria.query
        .join(Standard, Standard.id == Criteria.standard_id)
        .filter(
            Standard.program_id == program.id,
            Standard.organization_id == organization.id,
        )
        .order_by(Standard.code, Criteria.code)
        .all()
    )
    if criteria:
        example = {
            "standard_code": criteria[0].standard.code,
            "criteria_code": criteria[0].code,
            "name": "Decision on quality assurance",
            "box_number": 1,
            "document_type": "Quyết định",
            "issue_date": "2024-01-15",
        }
        for col, key in enumerate(IMPORT_COLUMNS, start=1):
            ws.cell(row=2, column=col).value = example.get(key)
    _auto_width(ws)

    ref = wb.create_sheet("Criteria")
    ref["A1"] = f"{program.code} / {organization.code}"
    ref["A1"].font = Font(size=12, bold=True)
    for col, label in enumerate(["standard_code", "standard_name", "criteria_code", "criteria_name"], start=1):
        ref.cell(row=3, column=col).value = label
    _apply_header_style(ref, 3, 4)
    for row_i, c in enumerate(criteria, start=4):
        ref.cell(row=row_i, column=1).value = c.standard.code
        ref.cell(row=row_i, column=2).value = c.standard.name
        ref.cell(row=row_i, column=3).value = c.code
        ref.cell(row=row_i, column=4).value = c.name
    _auto_width(ref)

    values = wb.create_sheet("Values")
    values["A1"] = "document_type"
    values["B1"] = "status"
    _apply_header_style(values, 1, 2)
    for row_i, doc_type in enumerate(sorted(EVIDENCE_DOCUMENT_TYPES), start=2):
        values.cell(row=row_i, column=1).value = doc_type
    for row_i, status in enumerate(sorted(EVIDENCE_STATUSES), start=2):
        values.cell(row=row_i, column=2).value = status
    _auto_width(values)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
