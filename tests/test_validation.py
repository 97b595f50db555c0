from models import MemberRecord
from validation import validate_members


def _record(**kw):
    base = {"name": "Jane Doe", "email": "jane@example.com", "password": "jane0000", "role": "member"}
    base.update(kw)
    return MemberRecord(**base)


def test_valid_records():
    report = validate_members([_record(), _record(year=5, department="IT", role="admin")])
    assert report.valid
    assert report.errors == []


def test_missing_name_reported_on_row_2():
    report = validate_members([_record(name="", email="x@y.com")])
    assert not report.valid
    assert report.errors == [(2, "Full Name is required")]
    assert report.messages() == ["Row 2: Full Name is required"]


def test_email_rules():
    report = validate_members([_record(email="  "), _record(email="nope")])
    assert report.errors == [(2, "Email is required"), (3, "Invalid email format")]


def test_year_out_of_range():
    report = validate_members([_record(), _record(year=7), _record(year=0)])
    assert report.errors == [
        (3, "Year must be between 1 and 5"),
        (4, "Year must be between 1 and 5"),
    ]


def test_unparsable_year_is_reported():
    report = validate_members([_record(year=None, year_text="third")])
    assert report.errors == [(2, "Year must be between 1 and 5")]


def test_department_and_role():
    report = validate_members([_record(department="it", role="owner")])
    assert report.errors == [
        (2, "Department must be one of: RE, RH, Marketing, IT"),
        (2, "Role must be 'admin' or 'member'"),
    ]


def test_multiple_errors_accumulate_in_rule_order():
    report = validate_members([_record(name=" ", email="bad", year=9, department="HR", role="guest")])
    assert [m for _, m in report.errors] == [
        "Full Name is required",
        "Invalid email format",
        "Year must be between 1 and 5",
        "Department must be one of: RE, RH, Marketing, IT",
        "Role must be 'admin' or 'member'",
    ]


def test_validate_is_repeatable():
    records = [_record(name=""), _record(year=6)]
    assert validate_members(records).errors == validate_members(records).errors
