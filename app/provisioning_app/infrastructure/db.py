from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
import logging
from pathlib import Path
import re
import sqlite3
import time
from typing import Any, Iterable

import pandas as pd
from databricks import sql as dbsql
from databricks.sdk.core import Config as DatabricksSDKConfig
from databricks.sdk.core import oauth_service_principal

from provisioning_app.core.config import AppConfig
from provisioning_app.core.env import PROVISIONING_SLOW_QUERY_MS, get_env_float

PERF_LOGGER = logging.getLogger("provisioning_app.perf")
_UNIQUE_VIOLATION_SIGNALS = (
    "unique constraint failed",
    "duplicate key",
    "already exists",
    "violates unique constraint",
)


class DataConnectionError(RuntimeError):
    """Raised when a database connection cannot be established."""


class DataQueryError(RuntimeError):
    """Raised when a query operation fails."""


class DataExecutionError(RuntimeError):
    """Raised when a non-query execution fails."""


def is_unique_violation(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current).lower()
        if isinstance(current, sqlite3.IntegrityError) and "unique" in message:
            return True
        if any(signal in message for signal in _UNIQUE_VIOLATION_SIGNALS):
            return True
        current = current.__cause__ or current.__context__
    return False


class DatabricksSQLClient:
    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._slow_query_ms = get_env_float(PROVISIONING_SLOW_QUERY_MS, default=750.0, min_value=1.0)

    def _validate(self) -> None:
        if self.config.use_local_db:
            return
        missing = []
        if not self.config.databricks_server_hostname:
            missing.append("DATABRICKS_SERVER_HOSTNAME")
        if not self.config.databricks_http_path:
            missing.append("DATABRICKS_HTTP_PATH")
        if missing:
            raise RuntimeError(f"Missing Databricks settings: {', '.join(missing)}")

    def _connect_databricks(self):
        common = {
            "server_hostname": self.config.databricks_server_hostname,
            "http_path": self.config.databricks_http_path,
        }
        token = str(self.config.databricks_token or "").strip()
        if token:
            return dbsql.connect(access_token=token, **common)

        host_url = f"https://{self.config.databricks_server_hostname}"
        client_id = str(self.config.databricks_client_id or "").strip()
        client_secret = str(self.config.databricks_client_secret or "").strip()
        if client_id and client_secret:
            cfg = DatabricksSDKConfig(
                host=host_url,
                client_id=client_id,
                client_secret=client_secret,
            )
            sdk_credentials_provider = oauth_service_principal(cfg)

            # databricks-sql-connector expects credentials_provider() -> header_factory_callable.
            def _credentials_provider():
                return sdk_credentials_provider

            return dbsql.connect(credentials_provider=_credentials_provider, **common)

        try:
            runtime_cfg = DatabricksSDKConfig(host=host_url)
        except Exception as exc:
            raise RuntimeError(
                "No Databricks auth configured. Provide DATABRICKS_TOKEN, "
                "or DATABRICKS_CLIENT_ID + DATABRICKS_CLIENT_SECRET."
            ) from exc

        def _runtime_credentials_provider():
            return runtime_cfg.authenticate

        return dbsql.connect(credentials_provider=_runtime_credentials_provider, **common)

    @staticmethod
    def _close_connection(conn: Any) -> None:
        try:
            conn.close()
        except Exception:
            PERF_LOGGER.debug("Ignoring error while closing connection.", exc_info=True)

    @contextmanager
    def _connection(self):
        conn = None
        if self.config.use_local_db:
            db_path = Path(self.config.local_db_path).resolve()
            if not db_path.exists():
                raise DataConnectionError(
                    f"Local DB not found: {db_path}. Run `python setup/local_db/init_local_db.py --reset` first."
                )
            try:
                conn = sqlite3.connect(str(db_path))
            except Exception as exc:
                raise DataConnectionError(f"Failed to connect to local SQLite DB at {db_path}.") from exc
        else:
            self._validate()
            try:
                conn = self._connect_databricks()
            except Exception as exc:
                details = str(exc).strip()
                message = "Failed to connect to Databricks SQL warehouse."
                if details:
                    message = f"{message} Details: {details}"
                raise DataConnectionError(message) from exc
        try:
            yield conn
        finally:
            if conn is not None:
                self._close_connection(conn)

    def _prepare(self, statement: str) -> str:
        normalized = str(statement or "")
        if normalized.startswith("\ufeff"):
            normalized = normalized.lstrip("\ufeff")
        # `%s` placeholders are not supported by databricks-sql native params;
        # normalize to qmark syntax which both sqlite and databricks connector accept.
        normalized = normalized.replace("%s", "?")
        if self.config.use_local_db:
            normalized = normalized.replace(f"{self.config.fq_schema}.", "")
        return normalized

    def _prepare_params(self, params: Iterable[Any] | None) -> tuple[Any, ...]:
        if not params:
            return ()
        if not self.config.use_local_db:
            return tuple(params)
        cleaned: list[Any] = []
        for value in params:
            if isinstance(value, (datetime, date)):
                cleaned.append(value.isoformat())
            elif isinstance(value, bool):
                cleaned.append(int(value))
            else:
                cleaned.append(value)
        return tuple(cleaned)

    @staticmethod
    def _sql_preview(statement: str, max_len: int = 180) -> str:
        compact = re.sub(r"\s+", " ", str(statement or "")).strip()
        if len(compact) <= max_len:
            return compact
        return compact[: max_len - 3] + "..."

    def _record_perf(self, *, operation: str, statement: str, started: float, row_count: int | None) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if elapsed_ms < self._slow_query_ms:
            return
        PERF_LOGGER.warning(
            "slow_sql op=%s ms=%.2f rows=%s sql=%s",
            operation,
            elapsed_ms,
            row_count,
            self._sql_preview(statement),
            extra={
                "event": "slow_sql",
                "operation": operation,
                "elapsed_ms": round(elapsed_ms, 2),
                "row_count": row_count,
            },
        )

    def query(self, statement: str, params: Iterable[Any] | None = None) -> pd.DataFrame:
        try:
            prepared_statement = self._prepare(statement)
            prepared_params = self._prepare_params(params)
            started = time.perf_counter()
            with self._connection() as conn:
                if self.config.use_local_db:
                    cursor = conn.cursor()
                    cursor.execute(prepared_statement, prepared_params)
                    rows = cursor.fetchall()
                    cols = [desc[0] for desc in cursor.description] if cursor.description else []
                    cursor.close()
                else:
                    with conn.cursor() as cursor:
                        cursor.execute(prepared_statement, prepared_params)
                        rows = cursor.fetchall()
                        cols = [desc[0] for desc in cursor.description] if cursor.description else []
            frame = pd.DataFrame([tuple(row) for row in rows], columns=cols)
            self._record_perf(
                operation="query",
                statement=prepared_statement,
                started=started,
                row_count=len(frame.index),
            )
            return frame
        except DataConnectionError:
            raise
        except Exception as exc:
            raise DataQueryError("Query execution failed.") from exc

    def execute(self, statement: str, params: Iterable[Any] | None = None) -> None:
        try:
            prepared_statement = self._prepare(statement)
            prepared_params = self._prepare_params(params)
            started = time.perf_counter()
            with self._connection() as conn:
                if self.config.use_local_db:
                    cursor = conn.cursor()
                    cursor.execute(prepared_statement, prepared_params)
                    cursor.close()
                    conn.commit()
                else:
                    with conn.cursor() as cursor:
                        cursor.execute(prepared_statement, prepared_params)
            self._record_perf(
                operation="execute",
                statement=prepared_statement,
                started=started,
                row_count=None,
            )
        except DataConnectionError:
            raise
        except Exception as exc:
            raise DataExecutionError("Statement execution failed.") from exc
