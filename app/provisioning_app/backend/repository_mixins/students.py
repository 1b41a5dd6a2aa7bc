from __future__ import annotations

import json
import uuid
from typing import Any

from provisioning_app.core.repository_errors import DuplicateRecordError
from provisioning_app.infrastructure.db import DataExecutionError, is_unique_violation

STUDENT_RECORD_COLUMNS = [
    "record_id",
    "identity_id",
    "organization_id",
    "full_name",
    "email",
    "student_id",
    "batch",
    "degree_program",
    "semester",
    "created_at",
]


class RepositoryStudentsMixin:
    def list_student_emails(self) -> set[str]:
        # Raises on failure so callers can decide how to degrade.
        frame = self._probe_file(
            "students/select_student_emails.sql",
            app_student_record=self._table("app_student_record"),
        )
        return {
            str(value).strip().lower()
            for value in frame.get("email", [])
            if value is not None and str(value).strip()
        }

    def insert_student_record(
        self,
        *,
        identity_id: str,
        organization_id: str,
        full_name: str,
        email: str,
        student_id: str | None,
        batch: int | None,
        degree_program: str | None,
        semester: int | None,
        credentials: dict[str, Any],
    ) -> str:
        record_id = f"stu-{uuid.uuid4()}"
        normalized_email = str(email or "").strip().lower()
        now = self._now()
        try:
            self._execute_file(
                "students/insert_student_record.sql",
                params=(
                    record_id,
                    identity_id,
                    organization_id,
                    full_name,
                    normalized_email,
                    student_id or None,
                    batch,
                    degree_program or None,
                    semester,
                    json.dumps(credentials, default=str),
                    now,
                    now,
                    normalized_email,
                    identity_id,
                ),
                app_student_record=self._table("app_student_record"),
            )
        except DataExecutionError as exc:
            if is_unique_violation(exc):
                raise DuplicateRecordError(f"Student record already exists for {normalized_email}.") from exc
            raise

        # The guarded insert is a no-op when a matching row exists.
        inserted = self._probe_file(
            "students/select_student_record_by_id.sql",
            params=(record_id,),
            app_student_record=self._table("app_student_record"),
        )
        if inserted.empty:
            raise DuplicateRecordError(f"Student record already exists for {normalized_email}.")
        return record_id

    def get_student_record(self, record_id: str) -> dict[str, Any] | None:
        frame = self._query_file(
            "students/select_student_record_by_id.sql",
            params=(record_id,),
            columns=STUDENT_RECORD_COLUMNS,
            app_student_record=self._table("app_student_record"),
        )
        return self._first_record(frame)

    def list_students_for_organization(self, organization_id: str, *, limit: int = 200) -> list[dict[str, Any]]:
        frame = self._query_file(
            "students/select_students_by_organization.sql",
            params=(organization_id,),
            columns=STUDENT_RECORD_COLUMNS,
            app_student_record=self._table("app_student_record"),
            limit=self._limit(limit),
        )
        return self._records(frame)

    def delete_student_record(self, record_id: str) -> None:
        self._execute_file(
            "students/delete_student_record.sql",
            params=(record_id,),
            app_student_record=self._table("app_student_record"),
        )

    def delete_student_records_for_identity(self, identity_id: str) -> None:
        self._execute_file(
            "students/delete_student_records_by_identity.sql",
            params=(identity_id,),
            app_student_record=self._table("app_student_record"),
        )
