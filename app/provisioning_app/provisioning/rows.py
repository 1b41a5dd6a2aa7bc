"""Roster CSV parsing and per-row validation.

``parse_roster`` only checks structure (header row, required headers, column
counts). Field-level checks live in ``validate_row`` so the saga can report
them per row.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterator

REQUIRED_HEADERS = ("name", "email")
OPTIONAL_HEADERS = ("student_id", "batch", "degree_program", "semester")
TEMPLATE_HEADERS = REQUIRED_HEADERS + OPTIONAL_HEADERS
TEMPLATE_EXAMPLE_ROW = ("John Doe", "john.doe@example.com", "STU001", "2022", "BSE", "6")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")


class RosterParseError(ValueError):
    """Raised when roster text cannot be read as a roster at all."""


class RowValidationError(ValueError):
    """Raised when a single roster row fails validation."""


@dataclass(frozen=True)
class RowRecord:
    line_number: int
    name: str = ""
    email: str = ""
    student_id: str = ""
    batch: str = ""
    degree_program: str = ""
    semester: str = ""
    problem: str | None = None

    def as_input(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("problem", None)
        return payload


@dataclass(frozen=True)
class StudentRow:
    line_number: int
    name: str
    email: str
    student_id: str
    batch: int | None
    degree_program: str
    semester: int | None


def normalize_header(raw_name: str) -> str:
    cleaned = str(raw_name or "").strip().lstrip("\ufeff").lower()
    cleaned = cleaned.replace(" ", "_").replace("-", "_")
    while "__" in cleaned:
        cleaned = cleaned.replace("__", "_")
    return cleaned


def _rows_with_start_line(reader) -> Iterator[tuple[int, list[str]]]:
    # A quoted cell can span lines, so a record starts one past where the previous one ended.
    start = 1
    for row in reader:
        yield start, row
        start = reader.line_num + 1


def parse_roster(text: str) -> list[RowRecord]:
    reader = csv.reader(io.StringIO(str(text or "")))
    lines = [
        (line_number, row)
        for line_number, row in _rows_with_start_line(reader)
        if any(str(cell or "").strip() for cell in row)
    ]
    if len(lines) < 2:
        raise RosterParseError("CSV must contain a header row and at least one data row")

    headers = [normalize_header(value) for value in lines[0][1]]
    missing = [name for name in REQUIRED_HEADERS if name not in headers]
    if missing:
        raise RosterParseError(f"Missing required headers: {', '.join(missing)}")

    index = {name: headers.index(name) for name in TEMPLATE_HEADERS if name in headers}
    records: list[RowRecord] = []
    for offset, raw_row in lines[1:]:
        values = {
            name: str(raw_row[position] if position < len(raw_row) else "").strip()
            for name, position in index.items()
        }
        problem = None
        if len(raw_row) != len(headers):
            problem = f"Row {offset} has {len(raw_row)} columns, expected {len(headers)}"
        records.append(RowRecord(line_number=offset, problem=problem, **values))
    return records


def _parse_optional_int(value: str) -> int | None:
    cleaned = str(value or "").strip()
    if not cleaned:
        return None
    return int(cleaned)


def validate_row(record: RowRecord) -> StudentRow:
    problems: list[str] = []
    if record.problem:
        problems.append(record.problem)
    name = record.name.strip()
    email = record.email.strip().lower()
    if not name:
        problems.append("Name is required")
    if not email:
        problems.append("Email is required")
    elif not EMAIL_PATTERN.match(email):
        problems.append("Invalid email format")
    if record.batch.strip() and not INTEGER_PATTERN.match(record.batch.strip()):
        problems.append("Batch must be a number")
    if record.semester.strip() and not INTEGER_PATTERN.match(record.semester.strip()):
        problems.append("Semester must be a number")
    if problems:
        raise RowValidationError("; ".join(problems))
    return StudentRow(
        line_number=record.line_number,
        name=name,
        email=email,
        student_id=record.student_id.strip(),
        batch=_parse_optional_int(record.batch),
        degree_program=record.degree_program.strip(),
        semester=_parse_optional_int(record.semester),
    )


def roster_template() -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_EXAMPLE_ROW)
    return buffer.getvalue()
