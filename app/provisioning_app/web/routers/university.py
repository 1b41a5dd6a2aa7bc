from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from provisioning_app.core.security import BULK_UPLOAD_ROLES
from provisioning_app.provisioning.job_ledger import JOB_STATUS_PENDING, JobLedger, JobStateError
from provisioning_app.provisioning.rows import RosterParseError, parse_roster, roster_template
from provisioning_app.provisioning.saga import BatchRejectedError
from provisioning_app.web.http.errors import ERROR_CODE_BAD_REQUEST, ERROR_CODE_FORBIDDEN, ApiError
from provisioning_app.web.routers.common import body_text, parse_limit, read_json_body
from provisioning_app.web.security.rbac import check_org_scope, require_role
from provisioning_app.web.services import CALLER_STATE_KEY, get_job_ledger, get_repo, get_saga

router = APIRouter(prefix="/api/university")
LOGGER = logging.getLogger(__name__)
ROSTER_TEMPLATE_FILE_NAME = "student_roster_template.csv"


def _job_for_caller(ledger: JobLedger, job_id: str, organization_id: str) -> dict[str, Any]:
    job = ledger.load(job_id)
    if str(job.get("organization_id") or "") != organization_id:
        raise ApiError(
            status_code=403,
            code=ERROR_CODE_FORBIDDEN,
            message="Bulk job belongs to a different organization.",
        )
    return job


def _fail_job(ledger: JobLedger, job_id: str, reason: str, errors: list[dict[str, Any]] | None = None) -> None:
    try:
        ledger.fail(job_id, reason=reason, errors=errors)
    except Exception:
        LOGGER.exception(
            "Could not record bulk job failure. job=%s",
            job_id,
            extra={"event": "bulk_job_ledger_write_failed", "job_id": job_id},
        )


@router.get("/roster-template")
@require_role(*BULK_UPLOAD_ROLES)
async def download_roster_template(request: Request):
    return Response(
        content=roster_template(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{ROSTER_TEMPLATE_FILE_NAME}"'},
    )


@router.post("/bulk-jobs")
@require_role(*BULK_UPLOAD_ROLES)
async def create_bulk_job(request: Request):
    caller = getattr(request.state, CALLER_STATE_KEY)
    body = await read_json_body(request)
    organization_id = body_text(body, "organization_id") or caller.organization_id
    check_org_scope(caller, organization_id)
    job = get_job_ledger().create(
        organization_id=organization_id,
        created_by=caller.identity_id,
        file_name=body_text(body, "file_name"),
    )
    return JSONResponse({"job": job}, status_code=201)


@router.get("/bulk-jobs")
@require_role(*BULK_UPLOAD_ROLES)
async def list_bulk_jobs(request: Request, limit: int = 50):
    caller = getattr(request.state, CALLER_STATE_KEY)
    jobs = get_job_ledger().list_for_organization(caller.organization_id, limit=parse_limit(limit, default=50, maximum=200))
    return JSONResponse({"items": jobs})


@router.get("/bulk-jobs/{job_id}")
@require_role(*BULK_UPLOAD_ROLES)
async def get_bulk_job(request: Request, job_id: str):
    caller = getattr(request.state, CALLER_STATE_KEY)
    job = _job_for_caller(get_job_ledger(), job_id, caller.organization_id)
    return JSONResponse({"job": job})


@router.get("/students")
@require_role(*BULK_UPLOAD_ROLES)
async def list_students(request: Request, limit: int = 200):
    caller = getattr(request.state, CALLER_STATE_KEY)
    students = get_repo().list_students_for_organization(
        caller.organization_id,
        limit=parse_limit(limit, default=200, maximum=500),
    )
    return JSONResponse({"items": students})


@router.post("/bulk-upload-students")
@require_role(*BULK_UPLOAD_ROLES)
async def bulk_upload_students(request: Request):
    caller = getattr(request.state, CALLER_STATE_KEY)
    body = await read_json_body(request)
    organization_id = body_text(body, "organization_id")
    job_id = body_text(body, "job_id")
    csv_text = str(body.get("csv_text") or "")
    if not organization_id or not job_id:
        raise ValueError("organization_id and job_id are required.")
    check_org_scope(caller, organization_id)

    ledger = get_job_ledger()
    job = _job_for_caller(ledger, job_id, organization_id)
    if job["status"] != JOB_STATUS_PENDING:
        raise JobStateError(f"Bulk job {job_id} is {job['status']}; upload a new roster with a new job.")

    try:
        records = parse_roster(csv_text)
    except RosterParseError as exc:
        _fail_job(ledger, job_id, str(exc))
        raise ApiError(status_code=400, code=ERROR_CODE_BAD_REQUEST, message=str(exc)) from exc

    ledger.begin(job_id, total_records=len(records))
    try:
        result = get_saga().provision(records, organization_id=organization_id, job_id=job_id)
    except BatchRejectedError as exc:
        errors = [failure.as_payload() for failure in exc.failures]
        _fail_job(ledger, job_id, str(exc), errors)
        raise ApiError(
            status_code=400,
            code=ERROR_CODE_BAD_REQUEST,
            message=str(exc),
            summary={
                "success_count": 0,
                "failure_count": len(errors),
                "total": len(records),
                "errors": errors,
                "job_id": job_id,
            },
        ) from exc

    ledger_recorded = True
    try:
        ledger.complete(
            job_id,
            successful_records=result.success_count,
            failed_records=result.failure_count,
            errors=result.error_entries(),
        )
    except Exception:
        ledger_recorded = False
        LOGGER.exception(
            "Bulk job results were provisioned but not recorded. job=%s",
            job_id,
            extra={"event": "bulk_job_ledger_write_failed", "job_id": job_id},
        )

    payload = result.to_payload(include_credentials=True)
    payload["job_id"] = job_id
    payload["ledger_recorded"] = ledger_recorded
    return JSONResponse(payload)
