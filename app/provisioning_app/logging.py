from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from provisioning_app.core.env import PROVISIONING_LOG_JSON, PROVISIONING_LOG_LEVEL, get_env, get_env_bool

SERVICE_NAME = "provisioning-api"
APP_LOGGER_NAME = "provisioning_app"
# httpx logs every credential-store request at INFO.
_QUIET_LIBRARY_LOGGERS = ("httpx", "httpcore", "databricks.sql")

_LOGGING_CONFIGURED = False
_RESERVED_RECORD_FIELDS = set(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields (event, job_id, email...) become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS and not key.startswith("_")
            }
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def build_log_handler(level: int, *, use_json: bool) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    return handler


def setup_app_logging() -> None:
    global _LOGGING_CONFIGURED  # pylint: disable=global-statement
    if _LOGGING_CONFIGURED:
        return

    level_name = get_env(PROVISIONING_LOG_LEVEL, "INFO").upper() or "INFO"
    level = getattr(logging, level_name, logging.INFO)
    use_json = get_env_bool(PROVISIONING_LOG_JSON, default=False)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.handlers.clear()
    app_logger.addHandler(build_log_handler(level, use_json=use_json))
    app_logger.setLevel(level)
    app_logger.propagate = False
    for name in _QUIET_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    app_logger.info(
        "Application logging configured. level=%s json=%s",
        level_name,
        str(use_json).lower(),
        extra={"event": "logging_configured"},
    )
    _LOGGING_CONFIGURED = True
