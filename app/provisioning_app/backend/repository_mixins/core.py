from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

import pandas as pd

from provisioning_app.core.repository_errors import SchemaBootstrapRequiredError
from provisioning_app.infrastructure.db import DataConnectionError, DataQueryError

LOGGER = logging.getLogger(__name__)
SQL_ROOT = Path(__file__).resolve().parents[2] / "sql"
RUNTIME_REQUIRED_TABLES = (
    "sec_authorization_link",
    "app_student_record",
    "app_bulk_job",
    "app_admin_log",
)


class RepositoryCoreMixin:
    def _table(self, name: str) -> str:
        if self.config.use_local_db:
            return name
        return f"{self.config.fq_schema}.{name}"

    def _tables(self, *names: str) -> dict[str, str]:
        return {name: self._table(name) for name in names}

    @staticmethod
    @lru_cache(maxsize=128)
    def _read_sql_file(path_str: str) -> str:
        path = Path(path_str)
        if not path.exists():
            raise FileNotFoundError(f"SQL file not found: {path}")
        return path.read_text(encoding="utf-8")

    def _sql(self, relative_path: str, **format_args: Any) -> str:
        sql_path = (SQL_ROOT / relative_path).resolve()
        template = self._read_sql_file(str(sql_path))
        return template.format(**format_args) if format_args else template

    def _query_file(
        self,
        relative_path: str,
        *,
        params: tuple | None = None,
        columns: list[str] | None = None,
        **format_args: Any,
    ) -> pd.DataFrame:
        statement = self._sql(relative_path, **format_args)
        return self._query_or_empty(statement, params=params, columns=columns)

    def _execute_file(
        self,
        relative_path: str,
        *,
        params: tuple | None = None,
        **format_args: Any,
    ) -> None:
        statement = self._sql(relative_path, **format_args)
        self.client.execute(statement, params)

    def _probe_file(
        self,
        relative_path: str,
        *,
        params: tuple | None = None,
        **format_args: Any,
    ) -> pd.DataFrame:
        statement = self._sql(relative_path, **format_args)
        return self.client.query(statement, params)

    def _query_or_empty(
        self, statement: str, params: tuple | None = None, columns: list[str] | None = None
    ) -> pd.DataFrame:
        try:
            return self.client.query(statement, params)
        except (DataQueryError, DataConnectionError):
            LOGGER.warning("Query failed; returning empty frame.", exc_info=True)
            return pd.DataFrame(columns=columns or [])

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _records(frame: pd.DataFrame) -> list[dict[str, Any]]:
        if frame is None or frame.empty:
            return []
        cleaned = frame.astype(object).where(pd.notna(frame), None)
        return [
            {key: (value.isoformat() if isinstance(value, (datetime, date)) else value) for key, value in row.items()}
            for row in cleaned.to_dict("records")
        ]

    @staticmethod
    def _first_record(frame: pd.DataFrame) -> dict[str, Any] | None:
        records = RepositoryCoreMixin._records(frame)
        return records[0] if records else None

    @staticmethod
    def _safe_json_loads(payload: Any, *, expected: type = dict) -> Any:
        if isinstance(payload, expected):
            return payload
        if not isinstance(payload, str) or not payload.strip():
            return None
        try:
            loaded = json.loads(payload)
        except ValueError:
            return None
        return loaded if isinstance(loaded, expected) else None

    @staticmethod
    def _as_bool(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "y", "on"}
        return bool(value)

    @staticmethod
    def _limit(limit: int, *, maximum: int = 500) -> int:
        return max(1, min(int(limit or 100), maximum))

    def ensure_runtime_tables(self) -> None:
        try:
            self._probe_file("health/select_connectivity_check.sql")
        except DataConnectionError:
            raise
        except Exception as exc:
            raise SchemaBootstrapRequiredError(f"Connectivity probe failed: {exc}") from exc

        missing: list[str] = []
        for table_name in RUNTIME_REQUIRED_TABLES:
            try:
                self._probe_file("health/select_runtime_table_probe.sql", table_name=self._table(table_name))
            except DataConnectionError:
                raise
            except Exception:
                missing.append(self._table(table_name))
        if missing:
            raise SchemaBootstrapRequiredError(
                "Required tables are missing or inaccessible: "
                + ", ".join(missing)
                + ". Run the schema bootstrap SQL for this environment."
            )
