from __future__ import annotations

import json
import logging
import uuid
from typing import Any

LOGGER = logging.getLogger(__name__)
ADMIN_LOG_COLUMNS = ["log_id", "admin_id", "action", "target_type", "target_id", "metadata_json", "created_at"]


class RepositoryAdminLogMixin:
    def append_admin_log(
        self,
        *,
        admin_id: str,
        action: str,
        target_id: str,
        target_type: str = "profile",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        log_id = f"alog-{uuid.uuid4()}"
        try:
            self._execute_file(
                "admin/insert_admin_log.sql",
                params=(
                    log_id,
                    admin_id,
                    action,
                    target_type,
                    target_id,
                    json.dumps(metadata or {}, default=str),
                    self._now(),
                ),
                app_admin_log=self._table("app_admin_log"),
            )
        except Exception:
            LOGGER.warning(
                "Failed to write admin audit log. action=%s target=%s",
                action,
                target_id,
                exc_info=True,
                extra={"event": "admin_log_write_failed", "action": action, "target_id": target_id},
            )
            return False
        LOGGER.info(
            "Admin action logged. action=%s target=%s",
            action,
            target_id,
            extra={"event": "admin_action_logged", "action": action, "admin_id": admin_id, "target_id": target_id},
        )
        return True

    def list_admin_logs(self, *, limit: int = 100) -> list[dict[str, Any]]:
        frame = self._query_file(
            "admin/select_admin_logs.sql",
            columns=ADMIN_LOG_COLUMNS,
            app_admin_log=self._table("app_admin_log"),
            limit=self._limit(limit),
        )
        out: list[dict[str, Any]] = []
        for row in self._records(frame):
            row["metadata"] = self._safe_json_loads(row.pop("metadata_json", None)) or {}
            out.append(row)
        return out
