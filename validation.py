from typing import Iterable

from config import DEPARTMENTS, ROLES, YEAR_MAX, YEAR_MIN
from models import MemberRecord, ValidationReport
from utils import is_valid_email

# Data rows start on spreadsheet row 2 (row 1 is the header).
FIRST_DATA_ROW = 2


def validate_members(records: Iterable[MemberRecord]) -> ValidationReport:
    """
    Check canonical records against the member field rules.
    Every failing rule adds its own error; nothing is raised or persisted.
    """
    report = ValidationReport()
    for i, record in enumerate(records):
        row = i + FIRST_DATA_ROW

        if not (record.name or "").strip():
            report.add(row, "Full Name is required")

        if not (record.email or "").strip():
            report.add(row, "Email is required")
        elif not is_valid_email(record.email):
            report.add(row, "Invalid email format")

        year_out_of_range = record.year is not None and not (YEAR_MIN <= record.year <= YEAR_MAX)
        if year_out_of_range or record.year_text:
            report.add(row, f"Year must be between {YEAR_MIN} and {YEAR_MAX}")

        if record.department and record.department not in DEPARTMENTS:
            report.add(row, f"Department must be one of: {', '.join(DEPARTMENTS)}")

        if record.role and record.role not in ROLES:
            report.add(row, "Role must be 'admin' or 'member'")

    return report
