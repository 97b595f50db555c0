import tempfile
from pathlib import Path

import app
import repository
import services
from data_loaders import load_members
from models import MemberRecord
from repository import InMemoryRepository


def _write_csv(text):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".csv", delete=False) as tmp:
        tmp.write(text)
        return tmp.name


def test_decode_command(capsys):
    assert app.main(["decode", "Name: Jane Doe, Email: jane@example.com"]) == 0
    out = capsys.readouterr().out
    assert "Name: Jane Doe" in out
    assert "Email: jane@example.com" in out
    assert app.main(["decode", "Name: Bob, Email: nope"]) == 1


def test_validate_command_reports_rows(capsys):
    path = _write_csv("Full Name,Email,Year\nJane,jane@example.com,2\n,bad,9\n")
    assert app.main(["validate", path]) == 1
    out = capsys.readouterr().out
    assert "Row 3: Full Name is required" in out
    assert "Row 3: Invalid email format" in out
    assert "Row 3: Year must be between 1 and 5" in out


def test_template_command_writes_csv():
    with tempfile.TemporaryDirectory() as d:
        out = Path(d) / "template.csv"
        assert app.main(["template", "-o", str(out)]) == 0
        assert out.read_text().splitlines()[0] == "Full Name,Email,Phone Number,Password,School,Year,Department,Role"


def test_template_command_xlsx_defaults_to_computed_passwords():
    from openpyxl import load_workbook

    with tempfile.TemporaryDirectory() as d:
        out = Path(d) / "template.xlsx"
        assert app.main(["template", "-o", str(out)]) == 0
        assert load_workbook(out)["Users"]["D2"].value == "john.doe7890"
        assert app.main(["template", "-o", str(out), "--formulas"]) == 0
        assert str(load_workbook(out)["Users"]["D2"].value).startswith("=LEFT(B2")


def test_import_requires_firestore_settings(monkeypatch, capsys):
    monkeypatch.delenv("FIRESTORE_PROJECT_ID", raising=False)
    path = _write_csv("Full Name,Email\nJane,jane@example.com\n")
    assert app.main(["import", path]) == 1
    assert "FIRESTORE_PROJECT_ID" in capsys.readouterr().err


def test_badge_generation_writes_png_and_pdf():
    path = _write_csv("Full Name,Email\nJane Doe,jane@example.com\n")
    with tempfile.TemporaryDirectory() as d:
        generator = app.MemberQRGenerator(path, output_dir=d)
        assert generator.generate_all() == 1
        assert (Path(d) / "Jane_Doe.png").exists()
        assert (Path(d) / "Jane_Doe.pdf").read_bytes().startswith(b"%PDF")


def test_badges_for_repeated_names_do_not_overwrite():
    path = _write_csv("Full Name,Email\nJane Doe,jane@example.com\nJane Doe,jane.doe@other.org\n")
    with tempfile.TemporaryDirectory() as d:
        assert app.MemberQRGenerator(path, output_dir=d).generate_all() == 2
        files = sorted(p.name for p in Path(d).iterdir())
        assert files == ["Jane_Doe.pdf", "Jane_Doe.png", "Jane_Doe_2.pdf", "Jane_Doe_2.png"]


def test_spreadsheet_badges_carry_no_member_id(capsys):
    path = _write_csv("Full Name,Email\nJane Doe,jane@example.com\n")
    with tempfile.TemporaryDirectory() as d:
        app.MemberQRGenerator(path, output_dir=d).generate_all()
    out = capsys.readouterr().out
    assert "Generating badge 1/1: Jane Doe\n" in out
    assert "(HR" not in out


def test_store_badges_print_the_stored_member_id(capsys):
    path = _write_csv("Full Name,Email\nJane Doe,jane@example.com\n")
    repo = InMemoryRepository()
    services.bulk_create_members(repo, load_members(path).records)
    stored = services.list_members(repo)[0].unique_id
    with tempfile.TemporaryDirectory() as d:
        assert app.MemberQRGenerator(output_dir=d).generate_from_members(services.list_members(repo)) == 1
        assert (Path(d) / "Jane_Doe.png").exists()
    assert f"Jane Doe ({stored})" in capsys.readouterr().out


def test_cards_command_from_store(monkeypatch, capsys):
    repo = InMemoryRepository()
    member = services.create_member(repo, MemberRecord(name="Jane Doe", email="jane@example.com"))
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "demo")
    monkeypatch.setattr(repository, "firestore_repositories", lambda settings: (repo, InMemoryRepository()))
    with tempfile.TemporaryDirectory() as d:
        assert app.main(["cards", "--from-store", "-o", d]) == 0
        assert (Path(d) / "Jane_Doe.pdf").exists()
    assert member.unique_id in capsys.readouterr().out


def test_cards_command_needs_a_source(capsys):
    assert app.main(["cards"]) == 1
    assert "--from-store" in capsys.readouterr().err


def test_badge_pdf_bytes():
    generator = app.MemberQRGenerator("unused.csv")
    card = generator.create_badge_image(MemberRecord(name="Jane", email="jane@example.com"), "HRABC")
    assert card.size == (750, 1200)
    assert generator.create_pdf_bytes(card).startswith(b"%PDF")
