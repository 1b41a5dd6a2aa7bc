from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from provisioning_app.core.defaults import (
    CREDENTIAL_STORE_HTTP,
    CREDENTIAL_STORE_LOCAL,
    CREDENTIAL_STORE_MODES,
    DEFAULT_AUTH_TIMEOUT_SEC,
    DEFAULT_DEV_CATALOG,
    DEFAULT_DEV_ENV_NAMES,
    DEFAULT_DEV_SCHEMA,
    DEFAULT_ENV_NAME,
    DEFAULT_LOCAL_DB_PATH,
    DEFAULT_LOCAL_IDENTITY_DB_PATH,
    DEFAULT_TEMP_SECRET_LENGTH,
    MIN_TEMP_SECRET_LENGTH,
)
from provisioning_app.core.env import (
    DATABRICKS_CLIENT_ID,
    DATABRICKS_CLIENT_SECRET,
    DATABRICKS_HTTP_PATH_KEYS,
    DATABRICKS_SERVER_HOSTNAME_KEYS,
    DATABRICKS_TOKEN,
    DATABRICKS_WAREHOUSE_ID_KEYS,
    PROVISIONING_AUTH_ANON_KEY,
    PROVISIONING_AUTH_SERVICE_KEY,
    PROVISIONING_AUTH_TIMEOUT_SEC,
    PROVISIONING_AUTH_URL,
    PROVISIONING_CATALOG,
    PROVISIONING_CREDENTIAL_STORE,
    PROVISIONING_ENV,
    PROVISIONING_FQ_SCHEMA,
    PROVISIONING_LOCAL_DB_PATH,
    PROVISIONING_LOCAL_IDENTITY_DB_PATH,
    PROVISIONING_LOCAL_STORE_ELEVATED,
    PROVISIONING_SCHEMA,
    PROVISIONING_TEMP_SECRET_LENGTH,
    PROVISIONING_USE_LOCAL_DB,
    get_env,
    get_env_bool,
    get_env_int,
    get_first_env,
)


DEV_ENV_NAMES = set(DEFAULT_DEV_ENV_NAMES)


def _clean_host(raw_host: str) -> str:
    value = str(raw_host or "").strip()
    if not value:
        return ""
    value = value.replace("https://", "").replace("http://", "").rstrip("/")
    return value


def _clean_base_url(raw_url: str) -> str:
    return str(raw_url or "").strip().rstrip("/")


def _resolve_http_path() -> str:
    direct_path = get_first_env(DATABRICKS_HTTP_PATH_KEYS)
    if direct_path:
        return direct_path
    warehouse_id = get_first_env(DATABRICKS_WAREHOUSE_ID_KEYS)
    if warehouse_id:
        return f"/sql/1.0/warehouses/{warehouse_id}"
    return ""


def _repo_root() -> Path:
    # parents[0]=core, [1]=provisioning_app, [2]=app, [3]=repo root
    return Path(__file__).resolve().parents[3]


def _resolve_repo_relative_path(raw_path: str) -> str:
    value = str(raw_path or "").strip()
    if not value:
        return value
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str((_repo_root() / path).resolve())


def _resolve_catalog_schema(env_name: str) -> tuple[str, str]:
    fq_schema = get_env(PROVISIONING_FQ_SCHEMA)
    if fq_schema:
        parts = [item.strip() for item in fq_schema.split(".", 1)]
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise RuntimeError("PROVISIONING_FQ_SCHEMA must be in '<catalog>.<schema>' format.")
        return parts[0], parts[1]

    default_catalog = DEFAULT_DEV_CATALOG if env_name in DEV_ENV_NAMES else ""
    default_schema = DEFAULT_DEV_SCHEMA if env_name in DEV_ENV_NAMES else ""
    catalog = get_env(PROVISIONING_CATALOG, default_catalog)
    schema = get_env(PROVISIONING_SCHEMA, default_schema)
    if not catalog or not schema:
        raise RuntimeError(
            "PROVISIONING_CATALOG and PROVISIONING_SCHEMA are required outside local/dev mode "
            "(or set PROVISIONING_FQ_SCHEMA)."
        )
    return catalog, schema


def _resolve_credential_store_mode(env_name: str) -> str:
    default_mode = CREDENTIAL_STORE_LOCAL if env_name in DEV_ENV_NAMES else CREDENTIAL_STORE_HTTP
    mode = get_env(PROVISIONING_CREDENTIAL_STORE, default_mode).lower() or default_mode
    if mode not in CREDENTIAL_STORE_MODES:
        allowed = ", ".join(CREDENTIAL_STORE_MODES)
        raise RuntimeError(f"PROVISIONING_CREDENTIAL_STORE must be one of: {allowed}.")
    if mode == CREDENTIAL_STORE_LOCAL and env_name not in DEV_ENV_NAMES:
        raise RuntimeError(
            "PROVISIONING_CREDENTIAL_STORE=local is allowed only for dev/local environments."
        )
    return mode


@dataclass(frozen=True)
class AppConfig:
    databricks_server_hostname: str
    databricks_http_path: str
    databricks_token: str
    databricks_client_id: str = ""
    databricks_client_secret: str = ""
    env: str = DEFAULT_ENV_NAME
    catalog: str = DEFAULT_DEV_CATALOG
    schema: str = DEFAULT_DEV_SCHEMA
    use_local_db: bool = False
    local_db_path: str = DEFAULT_LOCAL_DB_PATH
    credential_store_mode: str = CREDENTIAL_STORE_LOCAL
    auth_url: str = ""
    auth_service_key: str = ""
    auth_anon_key: str = ""
    auth_timeout_sec: int = DEFAULT_AUTH_TIMEOUT_SEC
    local_identity_db_path: str = DEFAULT_LOCAL_IDENTITY_DB_PATH
    local_store_elevated: bool = True
    temp_secret_length: int = DEFAULT_TEMP_SECRET_LENGTH

    @property
    def fq_schema(self) -> str:
        return f"{self.catalog}.{self.schema}"

    @property
    def is_dev_env(self) -> bool:
        return self.env in DEV_ENV_NAMES

    @staticmethod
    def from_env() -> "AppConfig":
        env_name = get_env(PROVISIONING_ENV, DEFAULT_ENV_NAME).lower() or DEFAULT_ENV_NAME
        catalog, schema = _resolve_catalog_schema(env_name)
        default_local_db = env_name in DEV_ENV_NAMES
        requested_local_db = get_env_bool(PROVISIONING_USE_LOCAL_DB, default=default_local_db)
        if requested_local_db and env_name not in DEV_ENV_NAMES:
            raise RuntimeError(
                "PROVISIONING_USE_LOCAL_DB=true is allowed only for dev/local environments. "
                "Set PROVISIONING_ENV=dev (or local), or disable PROVISIONING_USE_LOCAL_DB."
            )
        credential_store_mode = _resolve_credential_store_mode(env_name)
        auth_url = _clean_base_url(get_env(PROVISIONING_AUTH_URL))
        if credential_store_mode == CREDENTIAL_STORE_HTTP and not auth_url:
            raise RuntimeError("PROVISIONING_AUTH_URL is required when PROVISIONING_CREDENTIAL_STORE=http.")
        return AppConfig(
            databricks_server_hostname=_clean_host(get_first_env(DATABRICKS_SERVER_HOSTNAME_KEYS)),
            databricks_http_path=_resolve_http_path(),
            databricks_token=get_env(DATABRICKS_TOKEN),
            databricks_client_id=get_env(DATABRICKS_CLIENT_ID),
            databricks_client_secret=get_env(DATABRICKS_CLIENT_SECRET),
            env=env_name,
            catalog=catalog,
            schema=schema,
            use_local_db=requested_local_db,
            local_db_path=_resolve_repo_relative_path(get_env(PROVISIONING_LOCAL_DB_PATH, DEFAULT_LOCAL_DB_PATH)),
            credential_store_mode=credential_store_mode,
            auth_url=auth_url,
            auth_service_key=get_env(PROVISIONING_AUTH_SERVICE_KEY),
            auth_anon_key=get_env(PROVISIONING_AUTH_ANON_KEY),
            auth_timeout_sec=get_env_int(PROVISIONING_AUTH_TIMEOUT_SEC, default=DEFAULT_AUTH_TIMEOUT_SEC, min_value=1),
            local_identity_db_path=_resolve_repo_relative_path(
                get_env(PROVISIONING_LOCAL_IDENTITY_DB_PATH, DEFAULT_LOCAL_IDENTITY_DB_PATH)
            ),
            local_store_elevated=get_env_bool(PROVISIONING_LOCAL_STORE_ELEVATED, default=True),
            temp_secret_length=get_env_int(
                PROVISIONING_TEMP_SECRET_LENGTH,
                default=DEFAULT_TEMP_SECRET_LENGTH,
                min_value=MIN_TEMP_SECRET_LENGTH,
            ),
        )
