from __future__ import annotations

# Environment and config defaults
DEFAULT_ENV_NAME = "dev"
DEFAULT_DEV_ENV_NAMES = ("dev", "development", "local")
DEFAULT_DEV_CATALOG = "provisioning_dev"
DEFAULT_DEV_SCHEMA = "campus"
DEFAULT_LOCAL_DB_PATH = "setup/local_db/provisioning_local.db"
DEFAULT_LOCAL_IDENTITY_DB_PATH = "setup/local_db/identity_local.db"

# Credential store defaults
CREDENTIAL_STORE_LOCAL = "local"
CREDENTIAL_STORE_HTTP = "http"
CREDENTIAL_STORE_MODES = (CREDENTIAL_STORE_LOCAL, CREDENTIAL_STORE_HTTP)
DEFAULT_AUTH_TIMEOUT_SEC = 20
MIN_BEARER_TOKEN_LENGTH = 10

# Provisioning defaults
DEFAULT_TEMP_SECRET_LENGTH = 12
MIN_TEMP_SECRET_LENGTH = 8
DEFAULT_ROSTER_FILE_NAME = "roster.csv"

# Security/header defaults
DEFAULT_CSP_POLICY = (
    "default-src 'none'; "
    "frame-ancestors 'none'; "
    "base-uri 'none'"
)
