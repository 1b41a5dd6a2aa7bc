from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from provisioning_app.provisioning.rows import (
    TEMPLATE_HEADERS,
    RosterParseError,
    RowRecord,
    RowValidationError,
    normalize_header,
    parse_roster,
    roster_template,
    validate_row,
)


def test_parse_roster_maps_headers_and_keeps_physical_line_numbers() -> None:
    text = (
        "\ufeffName,Email,Student ID,Batch,Degree-Program,Semester\n"
        "Ada Lovelace,ADA@Example.com,S-1,2022,BSE,6\n"
        "\n"
        "Grace Hopper,grace@example.com,,,,\n"
    )

    records = parse_roster(text)

    assert [record.line_number for record in records] == [2, 4]
    assert records[0].name == "Ada Lovelace"
    assert records[0].email == "ADA@Example.com"
    assert records[0].student_id == "S-1"
    assert records[0].degree_program == "BSE"
    assert records[1].batch == ""
    assert all(record.problem is None for record in records)


def test_parse_roster_accepts_quoted_commas() -> None:
    records = parse_roster('name,email\n"Doe, Jane",jane@example.com\n')

    assert records[0].name == "Doe, Jane"


def test_parse_roster_counts_lines_inside_quoted_cells() -> None:
    text = (
        "name,email,degree_program\n"
        "Ada Lovelace,ada@example.com,\"Mathematics\nand Computing\"\n"
        "\n"
        "Grace Hopper,not-an-email,Physics\n"
    )

    records = parse_roster(text)

    assert [record.line_number for record in records] == [2, 5]
    assert records[0].degree_program == "Mathematics\nand Computing"


def test_parse_roster_requires_header_and_data_rows() -> None:
    with pytest.raises(RosterParseError, match="header row and at least one data row"):
        parse_roster("name,email\n")
    with pytest.raises(RosterParseError):
        parse_roster("")


def test_parse_roster_reports_missing_required_headers() -> None:
    with pytest.raises(RosterParseError, match="Missing required headers: email"):
        parse_roster("name,student_id\nAda,S-1\n")


def test_parse_roster_flags_column_count_mismatch_as_row_problem() -> None:
    records = parse_roster("name,email,batch\nAda,ada@example.com\nGrace,grace@example.com,2021\n")

    assert records[0].problem == "Row 2 has 2 columns, expected 3"
    assert records[1].problem is None


def test_normalize_header_collapses_separators() -> None:
    assert normalize_header("  Degree -  Program ") == "degree_program"
    assert normalize_header("Student ID") == "student_id"


def test_validate_row_normalizes_fields() -> None:
    row = validate_row(
        RowRecord(line_number=2, name=" Ada ", email=" ADA@Example.com ", batch="2022", semester="6")
    )

    assert row.name == "Ada"
    assert row.email == "ada@example.com"
    assert row.batch == 2022
    assert row.semester == 6
    assert row.student_id == ""


def test_validate_row_collects_every_problem() -> None:
    with pytest.raises(RowValidationError) as excinfo:
        validate_row(RowRecord(line_number=3, name="", email="not-an-email", batch="twenty"))

    message = str(excinfo.value)
    assert "Name is required" in message
    assert "Invalid email format" in message
    assert "Batch must be a number" in message


def test_validate_row_rejects_column_mismatch_even_when_fields_look_valid() -> None:
    record = RowRecord(line_number=5, name="Ada", email="ada@example.com", problem="Row 5 has 2 columns, expected 3")

    with pytest.raises(RowValidationError, match="Row 5 has 2 columns, expected 3"):
        validate_row(record)


def test_roster_template_round_trips_through_parser() -> None:
    template = roster_template()

    assert template.splitlines()[0] == ",".join(TEMPLATE_HEADERS)
    records = parse_roster(template)
    assert len(records) == 1
    assert validate_row(records[0]).email == "john.doe@example.com"
