from __future__ import annotations

import json
import uuid
from typing import Any

BULK_JOB_COLUMNS = [
    "job_id",
    "organization_id",
    "file_name",
    "status",
    "total_records",
    "successful_records",
    "failed_records",
    "error_log_json",
    "created_by",
    "created_at",
    "started_at",
    "completed_at",
]


class RepositoryBulkJobsMixin:
    def _normalize_job(self, row: dict[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        out = dict(row)
        out["error_log"] = self._safe_json_loads(out.pop("error_log_json", None))
        for key in ("total_records", "successful_records", "failed_records"):
            out[key] = int(out.get(key) or 0)
        out["status"] = str(out.get("status") or "").strip().lower()
        return out

    def create_bulk_job(self, *, organization_id: str, file_name: str, created_by: str, status: str) -> dict[str, Any]:
        job_id = f"bulk-{uuid.uuid4()}"
        self._execute_file(
            "jobs/insert_bulk_job.sql",
            params=(job_id, organization_id, file_name, status, created_by, self._now()),
            app_bulk_job=self._table("app_bulk_job"),
        )
        return self.get_bulk_job(job_id) or {"job_id": job_id, "organization_id": organization_id, "status": status}

    def get_bulk_job(self, job_id: str) -> dict[str, Any] | None:
        frame = self._probe_file(
            "jobs/select_bulk_job.sql",
            params=(job_id,),
            app_bulk_job=self._table("app_bulk_job"),
        )
        return self._normalize_job(self._first_record(frame))

    def list_bulk_jobs(self, organization_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        frame = self._query_file(
            "jobs/select_bulk_jobs_by_organization.sql",
            params=(organization_id,),
            columns=BULK_JOB_COLUMNS,
            app_bulk_job=self._table("app_bulk_job"),
            limit=self._limit(limit, maximum=200),
        )
        return [self._normalize_job(row) for row in self._records(frame)]

    def mark_bulk_job_started(self, job_id: str, *, status: str, total_records: int, expected_status: str) -> None:
        self._execute_file(
            "jobs/update_bulk_job_started.sql",
            params=(status, int(total_records), self._now(), job_id, expected_status),
            app_bulk_job=self._table("app_bulk_job"),
        )

    def finalize_bulk_job(
        self,
        job_id: str,
        *,
        status: str,
        successful_records: int,
        failed_records: int,
        error_log: dict[str, Any] | None,
    ) -> None:
        self._execute_file(
            "jobs/update_bulk_job_finished.sql",
            params=(
                status,
                int(successful_records),
                int(failed_records),
                json.dumps(error_log, default=str) if error_log else None,
                self._now(),
                job_id,
            ),
            app_bulk_job=self._table("app_bulk_job"),
        )
