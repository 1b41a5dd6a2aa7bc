from __future__ import annotations

import argparse
import sqlite3
from pathlib import Path
from typing import Iterable


REQUIRED_SCHEMA: dict[str, tuple[str, ...]] = {
    "sec_authorization_link": (
        "identity_id",
        "role",
        "email",
        "full_name",
        "organization_name",
        "organization_id",
        "is_active",
        "approval_status",
    ),
    "app_student_record": (
        "record_id",
        "identity_id",
        "organization_id",
        "full_name",
        "email",
        "student_id",
        "batch",
        "degree_program",
        "semester",
        "credentials_json",
    ),
    "app_bulk_job": (
        "job_id",
        "organization_id",
        "status",
        "total_records",
        "successful_records",
        "failed_records",
        "error_log_json",
        "completed_at",
    ),
    "app_admin_log": ("log_id", "admin_id", "action", "target_type", "target_id", "metadata_json"),
}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize a local SQLite DB with the provisioning schema.")
    parser.add_argument(
        "--db-path",
        default=str(Path(__file__).resolve().parent / "provisioning_local.db"),
        help="Output SQLite database path.",
    )
    parser.add_argument(
        "--sql-root",
        default=str(Path(__file__).resolve().parent / "sql"),
        help="Root SQL folder path (contains schema/ and queries/).",
    )
    parser.add_argument(
        "--schema-path",
        default="",
        help="Optional single schema SQL file path. Overrides --sql-root/schema/*.sql.",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete existing database file before creating.",
    )
    parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Skip post-bootstrap schema verification.",
    )
    return parser.parse_args()


def _sql_files_from_dir(directory: Path) -> list[Path]:
    if not directory.exists():
        raise FileNotFoundError(f"SQL directory not found: {directory}")
    files = sorted([item for item in directory.iterdir() if item.is_file() and item.suffix.lower() == ".sql"])
    if not files:
        raise FileNotFoundError(f"No SQL files found in: {directory}")
    return files


def _apply_sql_files(conn: sqlite3.Connection, files: Iterable[Path]) -> int:
    count = 0
    for sql_file in files:
        conn.executescript(sql_file.read_text(encoding="utf-8"))
        count += 1
    return count


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    cursor = conn.execute(f"PRAGMA table_info({table_name})")
    rows = cursor.fetchall()
    return {str(row[1]).strip().lower() for row in rows if len(row) > 1 and str(row[1]).strip()}


def verify_required_schema(conn: sqlite3.Connection) -> list[str]:
    errors: list[str] = []
    for table_name, required_columns in REQUIRED_SCHEMA.items():
        present = _table_columns(conn, table_name)
        if not present:
            errors.append(f"missing table: {table_name}")
            continue
        missing = [column for column in required_columns if column.lower() not in present]
        if missing:
            errors.append(f"{table_name} missing columns: {', '.join(missing)}")
    return errors


def count_objects(conn: sqlite3.Connection, object_type: str, count_query_path: Path) -> int:
    statement = count_query_path.read_text(encoding="utf-8")
    cursor = conn.execute(statement, (object_type,))
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def main() -> None:
    args = parse_args()
    db_path = Path(args.db_path).resolve()
    sql_root = Path(args.sql_root).resolve()
    count_query_path = sql_root / "queries" / "count_objects.sql"

    schema_files: list[Path]
    if args.schema_path.strip():
        schema_path = Path(args.schema_path).resolve()
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema SQL not found: {schema_path}")
        schema_files = [schema_path]
    else:
        schema_files = _sql_files_from_dir(sql_root / "schema")

    if args.reset and db_path.exists():
        db_path.unlink()

    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        schema_script_count = _apply_sql_files(conn, schema_files)
        conn.commit()
        if not args.skip_verify:
            schema_errors = verify_required_schema(conn)
            if schema_errors:
                details = "; ".join(schema_errors)
                raise RuntimeError(
                    "Local schema validation failed. "
                    "Run with --reset to rebuild the database. "
                    f"Details: {details}"
                )
        table_count = count_objects(conn, "table", count_query_path)

    print(f"Local database ready: {db_path}")
    print(f"Schema scripts applied: {schema_script_count}")
    print(f"Tables: {table_count}")


if __name__ == "__main__":
    main()
