"""
Spreadsheet loading, row normalization and template generation.

Important: Keep imports light at module import time (Streamlit Cloud startup).
We import pandas/openpyxl only inside functions.
"""

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from config import (
    DEFAULT_ROLE,
    TEMPLATE_COLUMN_WIDTHS,
    TEMPLATE_HEADERS,
    TEMPLATE_SHEET,
)
from models import MemberRecord
from utils import derive_password

# Header aliases, tried in order (exact, case-sensitive match)
NAME_COLUMNS = ("Full Name", "Name")
EMAIL_COLUMNS = ("Email",)
PHONE_COLUMNS = ("Phone Number", "Phone")
PASSWORD_COLUMNS = ("Password",)
SCHOOL_COLUMNS = ("School",)
YEAR_COLUMNS = ("Year",)
DEPARTMENT_COLUMNS = ("Department",)
ROLE_COLUMNS = ("Role",)

TEMPLATE_EXAMPLES = [
    ("John Doe", "john.doe@example.com", "+1234567890", "University of Technology", 3, "IT", "member"),
    ("Jane Smith", "jane.smith@example.com", "+1234567891", "Engineering College", 2, "Marketing", "member"),
    ("Mike Johnson", "mike.johnson@example.com", "+1234567892", "Business School", 4, "RH", "member"),
    ("Sarah Wilson", "sarah.wilson@example.com", "+1234567893", "Finance Institute", 1, "RE", "member"),
]


@dataclass
class LoadResult:
    records: List[MemberRecord]
    stats: Dict[str, int] = field(default_factory=dict)


def _cell_text(v: Any) -> str:
    """Render a cell as text: None/NaN -> '', integral floats without '.0'."""
    if v is None:
        return ""
    if isinstance(v, float):
        if v != v:  # NaN
            return ""
        if v.is_integer():
            return str(int(v))
    return str(v)


def _first_present(row: Mapping[str, Any], columns: Iterable[str]) -> str:
    for col in columns:
        text = _cell_text(row.get(col))
        if text.strip():
            return text
    return ""


def _parse_year(text: str) -> Optional[int]:
    """Leading integer of the cell ('3', '3.0', '4th'); None if there is none."""
    s = text.strip()
    digits = ""
    for i, ch in enumerate(s):
        if ch.isdigit() or (i == 0 and ch in "+-"):
            digits += ch
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


def normalize_row(row: Mapping[str, Any]) -> MemberRecord:
    """Map one raw spreadsheet row (header -> cell) to a canonical MemberRecord."""
    name = _first_present(row, NAME_COLUMNS)
    email = _first_present(row, EMAIL_COLUMNS)
    phone = _first_present(row, PHONE_COLUMNS)
    password = _first_present(row, PASSWORD_COLUMNS).strip() or derive_password(email, phone)

    year_text = _first_present(row, YEAR_COLUMNS)
    year = _parse_year(year_text) if year_text.strip() else None

    role = _first_present(row, ROLE_COLUMNS).strip().lower() or DEFAULT_ROLE

    return MemberRecord(
        name=name,
        email=email,
        password=password,
        phone_number=phone or None,
        school=_first_present(row, SCHOOL_COLUMNS) or None,
        year=year,
        department=_first_present(row, DEPARTMENT_COLUMNS) or None,
        role=role,
        year_text=year_text if year_text.strip() and year is None else None,
    )


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> List[MemberRecord]:
    """Normalize rows in order, dropping blank rows (no name and no email)."""
    records = []
    for row in rows:
        record = normalize_row(row)
        if not record.name.strip() and not record.email.strip():
            continue
        records.append(record)
    return records


def read_rows(source: Any, filename: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Read the first sheet of an Excel file, or a CSV, into a list of row dicts.
    `source` is a path or a file-like object; pass `filename` for file-like
    objects so the format can be detected. Every cell is read as text.
    """
    import pandas as pd

    name = filename or str(source)
    suf = Path(name).suffix.lower()
    if suf in (".xlsx", ".xls"):
        try:
            df = pd.read_excel(source, sheet_name=0, dtype=str, keep_default_na=False)
        except ImportError as e:
            if "openpyxl" in str(e).lower():
                raise ImportError(
                    "Reading Excel requires openpyxl. Install it with:\n  pip install openpyxl"
                ) from e
            raise
    elif suf == ".csv":
        df = pd.read_csv(source, dtype=str, keep_default_na=False)
    else:
        raise ValueError(f"Unsupported file type '{suf or name}'. Upload an .xlsx, .xls or .csv file.")

    df.columns = [str(c) for c in df.columns]
    return df.to_dict(orient="records")


def load_members(source: Any, filename: Optional[str] = None) -> LoadResult:
    """Read a spreadsheet and normalize it into MemberRecords with load statistics."""
    rows = read_rows(source, filename)
    records = normalize_rows(rows)
    return LoadResult(
        records=records,
        stats={
            "source_rows": len(rows),
            "loaded_rows": len(records),
            "skipped_blank_rows": len(rows) - len(records),
        },
    )


def records_to_dataframe(records: Iterable[MemberRecord]) -> Any:
    """Preview table with the template's column names (password shown as generated)."""
    import pandas as pd

    data = [
        {
            "Full Name": r.name,
            "Email": r.email,
            "Phone Number": r.phone_number or "",
            "Password": r.password,
            "School": r.school or "",
            "Year": "" if r.year is None else r.year,
            "Department": r.department or "",
            "Role": r.role,
        }
        for r in records
    ]
    return pd.DataFrame(data, columns=TEMPLATE_HEADERS)


def password_formula(row: int) -> str:
    """
    Spreadsheet formula approximating derive_password for template row `row`.
    Email in column B, phone in column C.

    Only space, '-', '(', ')', '+' and '.' are removed from the phone, so a
    number holding other characters ("555 1234 x12", "tel:5551234") gives a
    different password than derive_password, which drops every non-digit.
    Templates therefore default to literal passwords.
    """
    email = f"B{row}"
    phone = f"C{row}"
    clean = phone
    for ch in (" ", "-", "(", ")", "+", "."):
        clean = f'SUBSTITUTE({clean}, "{ch}", "")'
    return f'=LEFT({email}, FIND("@", {email})-1) & RIGHT("0000" & {clean}, 4)'


def template_dataframe() -> Any:
    """Template rows with literal (pre-computed) passwords."""
    records = [
        MemberRecord(
            name=name,
            email=email,
            password=derive_password(email, phone),
            phone_number=phone,
            school=school,
            year=year,
            department=department,
            role=role,
        )
        for name, email, phone, school, year, department, role in TEMPLATE_EXAMPLES
    ]
    return records_to_dataframe(records)


def build_template_workbook(use_formulas: bool = False) -> bytes:
    """
    Build the bulk-import .xlsx template (no filesystem writes).
    By default the Password column holds the derived password as a literal;
    with use_formulas it holds a live formula per row (see password_formula).
    """
    from openpyxl import Workbook
    from openpyxl.utils import get_column_letter

    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET
    ws.append(TEMPLATE_HEADERS)
    for offset, (name, email, phone, school, year, department, role) in enumerate(TEMPLATE_EXAMPLES):
        row = offset + 2
        password = password_formula(row) if use_formulas else derive_password(email, phone)
        ws.append([name, email, phone, password, school, year, department, role])

    for idx, width in enumerate(TEMPLATE_COLUMN_WIDTHS, 1):
        ws.column_dimensions[get_column_letter(idx)].width = width

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
