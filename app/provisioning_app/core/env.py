from __future__ import annotations

import os
from typing import Iterable

TRUE_VALUES = {"1", "true", "yes", "y", "on"}

# Runtime environment
PROVISIONING_ENV = "PROVISIONING_ENV"
PROVISIONING_USE_LOCAL_DB = "PROVISIONING_USE_LOCAL_DB"
PROVISIONING_LOCAL_DB_PATH = "PROVISIONING_LOCAL_DB_PATH"
PROVISIONING_LOCAL_DB_AUTO_INIT = "PROVISIONING_LOCAL_DB_AUTO_INIT"
PROVISIONING_LOCAL_DB_RESET_ON_START = "PROVISIONING_LOCAL_DB_RESET_ON_START"
PROVISIONING_CATALOG = "PROVISIONING_CATALOG"
PROVISIONING_SCHEMA = "PROVISIONING_SCHEMA"
PROVISIONING_FQ_SCHEMA = "PROVISIONING_FQ_SCHEMA"

# Databricks connection
DATABRICKS_SERVER_HOSTNAME_KEYS = ("DATABRICKS_SERVER_HOSTNAME", "DATABRICKS_HOST")
DATABRICKS_HTTP_PATH_KEYS = ("DATABRICKS_HTTP_PATH",)
DATABRICKS_WAREHOUSE_ID_KEYS = ("DATABRICKS_WAREHOUSE_ID", "DATABRICKS_SQL_WAREHOUSE_ID")
DATABRICKS_TOKEN = "DATABRICKS_TOKEN"
DATABRICKS_CLIENT_ID = "DATABRICKS_CLIENT_ID"
DATABRICKS_CLIENT_SECRET = "DATABRICKS_CLIENT_SECRET"

# Credential store
PROVISIONING_CREDENTIAL_STORE = "PROVISIONING_CREDENTIAL_STORE"
PROVISIONING_AUTH_URL = "PROVISIONING_AUTH_URL"
PROVISIONING_AUTH_SERVICE_KEY = "PROVISIONING_AUTH_SERVICE_KEY"
PROVISIONING_AUTH_ANON_KEY = "PROVISIONING_AUTH_ANON_KEY"
PROVISIONING_AUTH_TIMEOUT_SEC = "PROVISIONING_AUTH_TIMEOUT_SEC"
PROVISIONING_LOCAL_IDENTITY_DB_PATH = "PROVISIONING_LOCAL_IDENTITY_DB_PATH"
PROVISIONING_LOCAL_STORE_ELEVATED = "PROVISIONING_LOCAL_STORE_ELEVATED"

# Provisioning
PROVISIONING_TEMP_SECRET_LENGTH = "PROVISIONING_TEMP_SECRET_LENGTH"

# Logging, errors, perf
PROVISIONING_LOG_LEVEL = "PROVISIONING_LOG_LEVEL"
PROVISIONING_LOG_JSON = "PROVISIONING_LOG_JSON"
PROVISIONING_ERROR_INCLUDE_DETAILS = "PROVISIONING_ERROR_INCLUDE_DETAILS"
PROVISIONING_SLOW_QUERY_MS = "PROVISIONING_SLOW_QUERY_MS"
PROVISIONING_SECURITY_HEADERS_ENABLED = "PROVISIONING_SECURITY_HEADERS_ENABLED"


def get_env(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or "").strip()


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in TRUE_VALUES


def get_env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = get_env(name)
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    if min_value is not None:
        value = max(min_value, value)
    return value


def get_env_float(name: str, default: float, *, min_value: float | None = None) -> float:
    raw = get_env(name)
    try:
        value = float(raw) if raw else float(default)
    except ValueError:
        value = float(default)
    if min_value is not None:
        value = max(min_value, value)
    return value


def get_first_env(names: Iterable[str], default: str = "") -> str:
    for name in names:
        value = get_env(name)
        if value:
            return value
    return default
