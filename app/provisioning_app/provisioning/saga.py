"""Bulk student provisioning across the identity store and the relational store.

Each row runs identity-create, then student-record-create, then
authorization-link merge. The two stores share no transaction. Each forward
step that succeeds pushes its undo action onto a ``CompensationStack``. When
a later step fails, the stack unwinds in reverse so the row leaves nothing
behind, or leaves a loudly logged orphan when an undo action itself fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

from provisioning_app.core.defaults import DEFAULT_TEMP_SECRET_LENGTH
from provisioning_app.core.repository_errors import AuthorizationConflictError, DuplicateRecordError
from provisioning_app.core.security import BATCH_PROVISIONING_ROLE
from provisioning_app.infrastructure.credential_store import IdentityConflictError
from provisioning_app.provisioning.credentials import generate_temporary_secret
from provisioning_app.provisioning.duplicate_index import DuplicateIndex
from provisioning_app.provisioning.rows import RowRecord, RowValidationError, StudentRow, validate_row

LOGGER = logging.getLogger(__name__)

REASON_DUPLICATE_EMAIL = "Email already exists"
REASON_IDENTITY_CONFLICT = "Email already exists in identity store"
REASON_NO_VALID_ROWS = "No valid student data found in CSV"


class BatchRejectedError(ValueError):
    """Raised when a batch cannot be provisioned at all (empty or no valid rows)."""

    def __init__(self, message: str, failures: Iterable["RowFailure"] | None = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])


class _RowStepFailed(RuntimeError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip() or exc.__class__.__name__
    cause = exc.__cause__
    if cause is not None:
        cause_message = str(cause).strip()
        if cause_message and cause_message not in message:
            message = f"{message} ({cause_message})"
    return message


@dataclass(frozen=True)
class RowFailure:
    input: dict[str, Any]
    reason: str
    line_number: int | None = None

    def as_payload(self) -> dict[str, Any]:
        return {"line_number": self.line_number, "input": dict(self.input), "reason": self.reason}


@dataclass(frozen=True)
class ProvisionedRow:
    row: StudentRow
    identity_id: str
    record_id: str
    credentials: dict[str, str]


@dataclass
class BulkResult:
    total: int = 0
    successful: list[ProvisionedRow] = field(default_factory=list)
    failed: list[RowFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def error_entries(self) -> list[dict[str, Any]]:
        return [failure.as_payload() for failure in self.failed]

    def to_payload(self, *, include_credentials: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total": self.total,
            "errors": self.error_entries(),
        }
        if include_credentials:
            payload["credentials"] = [
                {
                    "line_number": item.row.line_number,
                    "name": item.row.name,
                    "student_id": item.row.student_id,
                    "email": item.credentials["email"],
                    "temporary_secret": item.credentials["temporary_secret"],
                }
                for item in self.successful
            ]
        return payload


class CompensationStack:
    def __init__(self) -> None:
        self._steps: list[tuple[str, Callable[[], Any]]] = []

    def push(self, description: str, action: Callable[[], Any]) -> None:
        self._steps.append((description, action))

    def __len__(self) -> int:
        return len(self._steps)

    def unwind(self, *, context: dict[str, Any] | None = None) -> list[str]:
        """Run undo actions newest-first. Returns the descriptions of steps that failed."""
        failed_steps: list[str] = []
        log_context = dict(context or {})
        while self._steps:
            description, action = self._steps.pop()
            try:
                action()
            except Exception:
                failed_steps.append(description)
                LOGGER.error(
                    "Compensation step failed; manual cleanup required. step=%s context=%s",
                    description,
                    log_context,
                    exc_info=True,
                    extra={"event": "provisioning_compensation_failed", "step": description, **log_context},
                )
                continue
            LOGGER.info(
                "Compensation step applied. step=%s",
                description,
                extra={"event": "provisioning_compensated", "step": description, **log_context},
            )
        return failed_steps


class ProvisioningSaga:
    def __init__(
        self,
        *,
        repo,
        credential_store,
        role: str = BATCH_PROVISIONING_ROLE,
        secret_length: int = DEFAULT_TEMP_SECRET_LENGTH,
        secret_generator: Callable[[int], str] = generate_temporary_secret,
        validator: Callable[[RowRecord], StudentRow] = validate_row,
    ) -> None:
        self.repo = repo
        self.credential_store = credential_store
        self.role = role
        self.secret_length = secret_length
        self._secret_generator = secret_generator
        self._validator = validator

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _validate(self, record: RowRecord) -> StudentRow | RowFailure:
        try:
            return self._validator(record)
        except RowValidationError as exc:
            return RowFailure(input=record.as_input(), reason=str(exc), line_number=record.line_number)

    def provision(self, rows: Sequence[RowRecord], *, organization_id: str, job_id: str) -> BulkResult:
        records = list(rows)
        if not records:
            raise BatchRejectedError(REASON_NO_VALID_ROWS)

        checked = [(record, self._validate(record)) for record in records]
        if not any(isinstance(outcome, StudentRow) for _, outcome in checked):
            raise BatchRejectedError(
                REASON_NO_VALID_ROWS,
                failures=[outcome for _, outcome in checked if isinstance(outcome, RowFailure)],
            )

        index = DuplicateIndex(self.repo)
        index.seed()
        result = BulkResult(total=len(records))
        for record, outcome in checked:
            if isinstance(outcome, RowFailure):
                self._record_failure(result, outcome, job_id=job_id)
                continue
            self._provision_row(
                record,
                outcome,
                organization_id=organization_id,
                job_id=job_id,
                index=index,
                result=result,
            )

        LOGGER.info(
            "Bulk provisioning finished. job=%s total=%s successful=%s failed=%s",
            job_id,
            result.total,
            result.success_count,
            result.failure_count,
            extra={
                "event": "bulk_provisioning_finished",
                "job_id": job_id,
                "organization_id": organization_id,
                "total": result.total,
                "successful": result.success_count,
                "failed": result.failure_count,
            },
        )
        return result

    def _record_failure(self, result: BulkResult, failure: RowFailure, *, job_id: str) -> None:
        result.failed.append(failure)
        LOGGER.warning(
            "Bulk row failed. job=%s line=%s reason=%s",
            job_id,
            failure.line_number,
            failure.reason,
            extra={
                "event": "bulk_row_failed",
                "job_id": job_id,
                "line_number": failure.line_number,
                "email": str(failure.input.get("email") or ""),
                "reason": failure.reason,
            },
        )

    def _provision_row(
        self,
        record: RowRecord,
        student: StudentRow,
        *,
        organization_id: str,
        job_id: str,
        index: DuplicateIndex,
        result: BulkResult,
    ) -> None:
        if index.contains(student.email):
            self._record_failure(
                result,
                RowFailure(input=record.as_input(), reason=REASON_DUPLICATE_EMAIL, line_number=record.line_number),
                job_id=job_id,
            )
            return

        secret = self._secret_generator(self.secret_length)
        stack = CompensationStack()
        identity_id = ""
        try:
            identity_id = self._create_identity(student, secret)
            stack.push("delete identity", lambda: self.credential_store.delete_identity(identity_id))
            record_id = self._insert_record(student, identity_id=identity_id, organization_id=organization_id, secret=secret)
            stack.push("delete student record", lambda: self.repo.delete_student_record(record_id))
            self._merge_link(student, identity_id=identity_id, organization_id=organization_id, stack=stack)
        except _RowStepFailed as exc:
            cleanup_failures = stack.unwind(
                context={"job_id": job_id, "email": student.email, "identity_id": identity_id},
            )
            reason = exc.reason
            if cleanup_failures:
                reason = f"{reason} (cleanup incomplete: {', '.join(cleanup_failures)})"
            self._record_failure(
                result,
                RowFailure(input=record.as_input(), reason=reason, line_number=record.line_number),
                job_id=job_id,
            )
            return

        index.add(student.email)
        result.successful.append(
            ProvisionedRow(
                row=student,
                identity_id=identity_id,
                record_id=record_id,
                credentials={"email": student.email, "temporary_secret": secret},
            )
        )
        LOGGER.info(
            "Bulk row provisioned. job=%s line=%s email=%s",
            job_id,
            student.line_number,
            student.email,
            extra={
                "event": "bulk_row_provisioned",
                "job_id": job_id,
                "line_number": student.line_number,
                "email": student.email,
                "identity_id": identity_id,
            },
        )

    def _create_identity(self, student: StudentRow, secret: str) -> str:
        try:
            identity_id = self.credential_store.create_identity(
                email=student.email,
                secret=secret,
                pre_confirmed=True,
                metadata={"role": self.role, "full_name": student.name},
            )
        except IdentityConflictError as exc:
            raise _RowStepFailed(REASON_IDENTITY_CONFLICT) from exc
        except Exception as exc:
            raise _RowStepFailed(describe_error(exc)) from exc
        identity_id = str(identity_id or "").strip()
        if not identity_id:
            raise _RowStepFailed("Failed to create identity: no identity id returned")
        return identity_id

    def _insert_record(self, student: StudentRow, *, identity_id: str, organization_id: str, secret: str) -> str:
        try:
            return self.repo.insert_student_record(
                identity_id=identity_id,
                organization_id=organization_id,
                full_name=student.name,
                email=student.email,
                student_id=student.student_id,
                batch=student.batch,
                degree_program=student.degree_program,
                semester=student.semester,
                credentials={"temporary_secret": secret, "generated_at": self._now().isoformat()},
            )
        except DuplicateRecordError as exc:
            raise _RowStepFailed(REASON_DUPLICATE_EMAIL) from exc
        except Exception as exc:
            raise _RowStepFailed(f"Student record creation failed: {describe_error(exc)}") from exc

    def _merge_link(
        self,
        student: StudentRow,
        *,
        identity_id: str,
        organization_id: str,
        stack: CompensationStack,
    ) -> None:
        try:
            # Only a link this row creates is undone; a pre-existing link belongs to someone else.
            if self.repo.get_authorization_link(identity_id) is None:
                stack.push(
                    "delete authorization link",
                    lambda: self.repo.delete_authorization_link(identity_id),
                )
            self.repo.merge_provisioning_link(
                identity_id=identity_id,
                role=self.role,
                email=student.email,
                full_name=student.name,
                organization_id=organization_id,
            )
        except AuthorizationConflictError as exc:
            raise _RowStepFailed(f"Authorization link conflict: {exc}") from exc
        except Exception as exc:
            raise _RowStepFailed(f"Profile creation failed: {describe_error(exc)}") from exc
