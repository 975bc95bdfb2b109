"""
Excel intake for bulk enrollment: downloadable template, upload parsing and the result report.
"""

import io
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.worksheet.datavalidation import DataValidation

from app.core.enums import Gender, GuardianRelation

from .bulk import item_label
from .schemas import BulkEnrollmentResult, BulkValidationResult, RowValidationError, ValidRow
from .validator import validate_bulk_enrollment

EXCEL_MAX_ROWS = 500
ENROLLMENTS_SHEET_NAME = "Enrollments"
REPORT_SHEET_NAME = "Enrollment results"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Header -> (section, field) of the enrollment item
TEMPLATE_COLUMNS: List[Tuple[str, Tuple[str, str]]] = [
    ("Student First Name", ("student", "first_name")),
    ("Student Last Name", ("student", "last_name")),
    ("Student Date of Birth (YYYY-MM-DD)", ("student", "date_of_birth")),
    ("Student Gender (Male/Female/Other)", ("student", "gender")),
    ("Student Email", ("student", "email")),
    ("Student Phone", ("student", "phone")),
    ("Student Address", ("student", "address")),
    ("Grade Level", ("enrollment", "grade_level")),
    ("Academic Year", ("enrollment", "academic_year")),
    ("Guardian First Name", ("guardian", "first_name")),
    ("Guardian Last Name", ("guardian", "last_name")),
    ("Guardian Email", ("guardian", "email")),
    ("Guardian Phone", ("guardian", "phone")),
    ("Guardian Relation", ("guardian", "relation")),
    ("Guardian Age", ("guardian", "age")),
]
REQUIRED_HEADERS = [header for header, _ in TEMPLATE_COLUMNS if header not in (
    "Student Email", "Student Phone", "Student Address", "Guardian Phone", "Guardian Age",
)]

EXAMPLE_ROW = [
    "John", "Doe", "2010-05-15", "Male", "john.doe@mail.com", "+1234567890",
    "123 Main Street", "5", "2024-2025", "Jane", "Doe", "jane.doe@mail.com",
    "+0987654321", "Mother", 35,
]


def _norm(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def _cell_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def build_enrollment_template() -> bytes:
    """Template with one example row and dropdowns for gender and relation."""
    wb = Workbook()
    ws = wb.active
    ws.title = ENROLLMENTS_SHEET_NAME
    ws.append([header for header, _ in TEMPLATE_COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.append(EXAMPLE_ROW)

    headers = [header for header, _ in TEMPLATE_COLUMNS]
    gender_col = chr(ord("A") + headers.index("Student Gender (Male/Female/Other)"))
    relation_col = chr(ord("A") + headers.index("Guardian Relation"))

    dv_gender = DataValidation(
        type="list",
        formula1='"' + ",".join(g.value for g in Gender) + '"',
        allow_blank=False,
    )
    dv_gender.error = "Select Male, Female or Other"
    ws.add_data_validation(dv_gender)
    dv_gender.add(f"{gender_col}2:{gender_col}{EXCEL_MAX_ROWS + 1}")

    dv_relation = DataValidation(
        type="list",
        formula1='"' + ",".join(r.value for r in GuardianRelation) + '"',
        allow_blank=False,
    )
    dv_relation.error = "Select a value from the Relation dropdown"
    ws.add_data_validation(dv_relation)
    dv_relation.add(f"{relation_col}2:{relation_col}{EXCEL_MAX_ROWS + 1}")

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def parse_enrollment_workbook(content: bytes) -> List[Tuple[int, Dict[str, Any]]]:
    """
    Parse an uploaded workbook into (row_number, raw item) pairs. First row = headers;
    empty rows are skipped. Items are not validated here. Raises ValueError on a bad file.
    """
    if not content:
        raise ValueError("File is empty")
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValueError(f"Invalid Excel file: {e}") from e

    try:
        ws = wb.active
        if ws is None:
            raise ValueError("Excel file has no active sheet")

        rows_iter = ws.iter_rows(values_only=True)
        header_row = next(rows_iter, None)
        if not header_row:
            raise ValueError("Excel file has no header row")

        header_row = [_norm(c) for c in header_row]
        missing = [h for h in REQUIRED_HEADERS if h.lower() not in header_row]
        if missing:
            raise ValueError(f"Missing required column(s): {', '.join(missing)}")

        col_idx = {
            header: header_row.index(header.lower())
            for header, _ in TEMPLATE_COLUMNS
            if header.lower() in header_row
        }

        items: List[Tuple[int, Dict[str, Any]]] = []
        for row_num, row in enumerate(rows_iter, start=2):
            if not row or all(_cell_value(c) is None for c in row):
                continue
            if len(items) >= EXCEL_MAX_ROWS:
                raise ValueError(f"Maximum {EXCEL_MAX_ROWS} data rows allowed")
            item: Dict[str, Dict[str, Any]] = {"student": {}, "guardian": {}, "enrollment": {}}
            for header, (section, field_name) in TEMPLATE_COLUMNS:
                idx = col_idx.get(header)
                value = _cell_value(row[idx]) if idx is not None and idx < len(row) else None
                item[section][field_name] = value
            items.append((row_num, item))
        return items
    finally:
        wb.close()


def validate_enrollment_rows(parsed: List[Tuple[int, Dict[str, Any]]]) -> BulkValidationResult:
    """Validate parsed rows without enrolling anyone. Errors are keyed by spreadsheet row number."""
    valid_rows: List[ValidRow] = []
    errors: List[RowValidationError] = []
    for row_num, raw in parsed:
        label = item_label(raw, row_num - 1)
        outcome = validate_bulk_enrollment(raw)
        if outcome.is_valid:
            valid_rows.append(ValidRow(row=row_num, label=label, item=outcome.item))
        else:
            errors.append(RowValidationError(row=row_num, label=label, errors=outcome.errors))
    return BulkValidationResult(
        total_rows=len(parsed),
        valid_count=len(valid_rows),
        error_count=len(errors),
        valid_rows=valid_rows,
        errors=errors,
    )


def build_bulk_report_workbook(result: BulkEnrollmentResult, row_numbers: Optional[List[int]] = None) -> bytes:
    """One line per processed item with its outcome; failed rows carry the reasons."""
    wb = Workbook()
    ws = wb.active
    ws.title = REPORT_SHEET_NAME
    ws.append(["Row", "Student", "Status", "Message", "Enrollment ID"])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for item in result.results:
        row_number = row_numbers[item.index] if row_numbers and item.index < len(row_numbers) else item.index + 1
        message = "; ".join(item.errors) if item.errors else item.message
        ws.append([
            row_number,
            item.label,
            "SUCCESS" if item.success else "FAILED",
            message,
            str(item.enrollment_id) if item.enrollment_id else "",
        ])
    ws.append([])
    ws.append(["Total", result.total_processed])
    ws.append(["Successful", result.successful])
    ws.append(["Failed", result.failed])

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
