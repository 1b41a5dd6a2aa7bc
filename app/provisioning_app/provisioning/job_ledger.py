from __future__ import annotations

import logging
from typing import Any

from provisioning_app.core.defaults import DEFAULT_ROSTER_FILE_NAME

LOGGER = logging.getLogger(__name__)

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUSES = (JOB_STATUS_PENDING, JOB_STATUS_PROCESSING, JOB_STATUS_COMPLETED, JOB_STATUS_FAILED)
TERMINAL_JOB_STATUSES = (JOB_STATUS_COMPLETED, JOB_STATUS_FAILED)


class JobNotFoundError(LookupError):
    """Raised when a bulk job id does not exist."""


class JobStateError(RuntimeError):
    """Raised when a job transition is not allowed from its current status."""


class JobLedger:
    """Lifecycle of bulk provisioning jobs: pending -> processing -> completed | failed."""

    def __init__(self, repo) -> None:
        self.repo = repo

    def create(self, *, organization_id: str, created_by: str, file_name: str = "") -> dict[str, Any]:
        job = self.repo.create_bulk_job(
            organization_id=organization_id,
            file_name=str(file_name or "").strip() or DEFAULT_ROSTER_FILE_NAME,
            created_by=created_by,
            status=JOB_STATUS_PENDING,
        )
        LOGGER.info(
            "Bulk job created. job=%s organization=%s",
            job.get("job_id"),
            organization_id,
            extra={"event": "bulk_job_created", "job_id": job.get("job_id"), "organization_id": organization_id},
        )
        return job

    def load(self, job_id: str) -> dict[str, Any]:
        job = self.repo.get_bulk_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Bulk job not found: {job_id}")
        return job

    def list_for_organization(self, organization_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        return self.repo.list_bulk_jobs(organization_id, limit=limit)

    def begin(self, job_id: str, *, total_records: int) -> dict[str, Any]:
        job = self.load(job_id)
        if job["status"] != JOB_STATUS_PENDING:
            raise JobStateError(f"Bulk job {job_id} is {job['status']}; only pending jobs can start.")
        self.repo.mark_bulk_job_started(
            job_id,
            status=JOB_STATUS_PROCESSING,
            total_records=total_records,
            expected_status=JOB_STATUS_PENDING,
        )
        started = self.load(job_id)
        if started["status"] != JOB_STATUS_PROCESSING:
            # Another request moved the job first.
            raise JobStateError(f"Bulk job {job_id} was claimed concurrently.")
        LOGGER.info(
            "Bulk job started. job=%s total=%s",
            job_id,
            total_records,
            extra={"event": "bulk_job_started", "job_id": job_id, "total_records": total_records},
        )
        return started

    def complete(
        self,
        job_id: str,
        *,
        successful_records: int,
        failed_records: int,
        errors: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        job = self.load(job_id)
        if job["status"] != JOB_STATUS_PROCESSING:
            raise JobStateError(f"Bulk job {job_id} is {job['status']}; only processing jobs can complete.")
        self.repo.finalize_bulk_job(
            job_id,
            status=JOB_STATUS_COMPLETED,
            successful_records=successful_records,
            failed_records=failed_records,
            error_log={"errors": list(errors)} if errors else None,
        )
        LOGGER.info(
            "Bulk job completed. job=%s successful=%s failed=%s",
            job_id,
            successful_records,
            failed_records,
            extra={
                "event": "bulk_job_finalized",
                "status": JOB_STATUS_COMPLETED,
                "job_id": job_id,
                "successful": successful_records,
                "failed": failed_records,
            },
        )
        return self.load(job_id)

    def fail(self, job_id: str, *, reason: str, errors: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        job = self.load(job_id)
        if job["status"] in TERMINAL_JOB_STATUSES:
            raise JobStateError(f"Bulk job {job_id} is already {job['status']}.")
        error_log: dict[str, Any] = {"error": reason}
        if errors:
            error_log["errors"] = list(errors)
        self.repo.finalize_bulk_job(
            job_id,
            status=JOB_STATUS_FAILED,
            successful_records=0,
            failed_records=len(errors or []),
            error_log=error_log,
        )
        LOGGER.warning(
            "Bulk job failed. job=%s reason=%s",
            job_id,
            reason,
            extra={"event": "bulk_job_finalized", "status": JOB_STATUS_FAILED, "job_id": job_id, "reason": reason},
        )
        return self.load(job_id)
