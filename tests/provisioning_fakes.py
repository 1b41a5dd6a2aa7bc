from __future__ import annotations

import copy
import itertools
import sys
from pathlib import Path
from typing import Any

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from provisioning_app.core.repository_errors import (
    AuthorizationConflictError,
    DuplicateRecordError,
    RecordNotFoundError,
)
from provisioning_app.core.security import APPROVAL_APPROVED, normalize_role
from provisioning_app.infrastructure.credential_store import (
    CredentialStore,
    CredentialStoreError,
    Identity,
    IdentityConflictError,
    IdentityNotFoundError,
    InvalidCredentialError,
)
from provisioning_app.infrastructure.db import DataExecutionError


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, *, elevated: bool = True, journal: list[str] | None = None) -> None:
        self.elevated = elevated
        self.journal = journal if journal is not None else []
        self.identities: dict[str, Identity] = {}
        self.secrets: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.fail_create_for: set[str] = set()
        self.fail_delete = False
        self.fail_invite = False
        self.fail_confirm = False
        self.fail_lookup = False
        self.invited: list[str] = []
        self.confirmed: list[str] = []
        self._ids = itertools.count(1)

    def add_identity(self, email: str, *, metadata: dict[str, Any] | None = None, identity_id: str = "") -> Identity:
        identity = Identity(
            identity_id=identity_id or f"id-{next(self._ids)}",
            email=email.lower(),
            metadata=dict(metadata or {}),
            email_confirmed=True,
        )
        self.identities[identity.identity_id] = identity
        return identity

    def issue_token(self, identity_id: str) -> str:
        token = f"token-{identity_id}-0123456789"
        self.tokens[token] = identity_id
        return token

    def create_identity(self, *, email, secret, pre_confirmed, metadata=None) -> str:
        self.journal.append(f"create_identity:{email}")
        if email in self.fail_create_for:
            raise CredentialStoreError("identity service timed out")
        if any(item.email == email.lower() for item in self.identities.values()):
            raise IdentityConflictError("A user with this email address has already been registered")
        identity = self.add_identity(email, metadata=metadata)
        self.secrets[identity.identity_id] = secret
        return identity.identity_id

    def delete_identity(self, identity_id: str) -> None:
        self.journal.append(f"delete_identity:{identity_id}")
        if self.fail_delete:
            raise CredentialStoreError("delete refused")
        if self.identities.pop(identity_id, None) is None:
            raise IdentityNotFoundError(f"Identity not found: {identity_id}")
        self.secrets.pop(identity_id, None)

    def find_identity_by_email(self, email: str) -> Identity | None:
        if self.fail_lookup:
            raise CredentialStoreError("identity service timed out")
        return next((item for item in self.identities.values() if item.email == email.lower()), None)

    def exchange_credential(self, token: str) -> Identity:
        identity_id = self.tokens.get(token)
        if identity_id is None or identity_id not in self.identities:
            raise InvalidCredentialError("Invalid or expired token.")
        return self.identities[identity_id]

    def sign_in(self, *, email: str, secret: str) -> str:
        identity = self.find_identity_by_email(email)
        if identity is None or self.secrets.get(identity.identity_id) != secret:
            raise InvalidCredentialError("Invalid login credentials.")
        return self.issue_token(identity.identity_id)

    def invite_identity(self, *, email: str, metadata=None) -> None:
        if self.fail_invite:
            raise CredentialStoreError("invite unavailable")
        self.invited.append(email)

    def confirm_identity(self, identity_id: str) -> None:
        if self.fail_confirm:
            raise CredentialStoreError("confirm unavailable")
        self.confirmed.append(identity_id)


class InMemoryRepository:
    def __init__(self, *, journal: list[str] | None = None) -> None:
        self.journal = journal if journal is not None else []
        self.students: dict[str, dict[str, Any]] = {}
        self.links: dict[str, dict[str, Any]] = {}
        self.jobs: dict[str, dict[str, Any]] = {}
        self.admin_logs: list[dict[str, Any]] = []
        self.fail_seed = False
        self.fail_link_lookup = False
        self.fail_link_write = False
        self.fail_insert_for: set[str] = set()
        self.fail_link_for: set[str] = set()
        self.fail_link_fill_for: set[str] = set()
        self.fail_student_delete = False
        self.fail_finalize = False
        self._ids = itertools.count(1)

    # students
    def list_student_emails(self) -> set[str]:
        if self.fail_seed:
            raise DataExecutionError("warehouse unavailable")
        return {row["email"] for row in self.students.values()}

    def insert_student_record(self, *, identity_id, organization_id, full_name, email, **fields) -> str:
        self.journal.append(f"insert_student:{email}")
        if email in self.fail_insert_for:
            try:
                raise RuntimeError("disk full")
            except RuntimeError as exc:
                raise DataExecutionError("Statement execution failed.") from exc
        if any(row["email"] == email for row in self.students.values()):
            raise DuplicateRecordError(f"Student record already exists for {email}.")
        record_id = f"stu-{next(self._ids)}"
        self.students[record_id] = {
            "record_id": record_id,
            "identity_id": identity_id,
            "organization_id": organization_id,
            "full_name": full_name,
            "email": email,
            **fields,
        }
        return record_id

    def delete_student_record(self, record_id: str) -> None:
        self.journal.append(f"delete_student:{record_id}")
        if self.fail_student_delete:
            raise DataExecutionError("Statement execution failed.")
        self.students.pop(record_id, None)

    def delete_student_records_for_identity(self, identity_id: str) -> None:
        self.journal.append(f"delete_students_for:{identity_id}")
        for record_id in [key for key, row in self.students.items() if row["identity_id"] == identity_id]:
            self.students.pop(record_id)

    def list_students_for_organization(self, organization_id: str, *, limit: int = 200) -> list[dict[str, Any]]:
        rows = [row for row in self.students.values() if row["organization_id"] == organization_id]
        return [{k: v for k, v in row.items() if k != "credentials"} for row in rows][:limit]

    # authorization links
    def get_authorization_link(self, identity_id: str) -> dict[str, Any] | None:
        if self.fail_link_lookup:
            raise RuntimeError("link table unavailable")
        link = self.links.get(identity_id)
        return copy.deepcopy(link) if link is not None else None

    def list_authorization_links(self, *, role: str = "", limit: int = 200) -> list[dict[str, Any]]:
        return [copy.deepcopy(link) for link in self.links.values() if not role or link["role"] == role][:limit]

    def insert_authorization_link_if_missing(
        self,
        *,
        identity_id,
        role,
        email=None,
        full_name=None,
        organization_name=None,
        organization_id=None,
        is_active=True,
        approval_status=APPROVAL_APPROVED,
    ) -> dict[str, Any]:
        self.journal.append(f"insert_link:{identity_id}")
        if self.fail_link_write:
            raise DataExecutionError("Statement execution failed.")
        self.links.setdefault(
            identity_id,
            {
                "identity_id": identity_id,
                "role": normalize_role(role) or None,
                "email": email,
                "full_name": full_name,
                "organization_name": organization_name,
                "organization_id": organization_id,
                "is_active": bool(is_active),
                "approval_status": approval_status,
            },
        )
        return copy.deepcopy(self.links[identity_id])

    def fill_missing_link_fields(self, identity_id, *, role=None, email=None, full_name=None, organization_name=None, organization_id=None):
        if self.fail_link_write:
            raise DataExecutionError("Statement execution failed.")
        link = self.links.get(identity_id)
        if link is None:
            return None
        for key, value in (
            ("role", normalize_role(role) or None),
            ("email", email),
            ("full_name", full_name),
            ("organization_name", organization_name),
            ("organization_id", organization_id),
        ):
            if not link.get(key) and value:
                link[key] = value
        return copy.deepcopy(link)

    def merge_provisioning_link(self, *, identity_id, role, email, full_name, organization_id) -> dict[str, Any]:
        self.journal.append(f"merge_link:{email}")
        if email in self.fail_link_for:
            raise DataExecutionError("Statement execution failed.")
        link = self.links.get(identity_id)
        if link is not None and link.get("role") and link["role"] != role:
            raise AuthorizationConflictError(f"Authorization link for {identity_id} already has role `{link['role']}`.")
        self.insert_authorization_link_if_missing(
            identity_id=identity_id,
            role=role,
            email=email,
            full_name=full_name,
            organization_id=organization_id,
        )
        if email in self.fail_link_fill_for:
            raise DataExecutionError("Statement execution failed.")
        return self.fill_missing_link_fields(
            identity_id, role=role, email=email, full_name=full_name, organization_id=organization_id
        )

    def update_authorization_link(self, identity_id, *, full_name, role) -> dict[str, Any]:
        if identity_id not in self.links:
            raise RecordNotFoundError(f"Authorization link not found: {identity_id}")
        self.links[identity_id].update({"full_name": full_name, "role": role})
        return copy.deepcopy(self.links[identity_id])

    def set_link_active(self, identity_id, *, active) -> dict[str, Any]:
        if identity_id not in self.links:
            raise RecordNotFoundError(f"Authorization link not found: {identity_id}")
        self.links[identity_id]["is_active"] = bool(active)
        if active:
            self.links[identity_id]["approval_status"] = APPROVAL_APPROVED
        return copy.deepcopy(self.links[identity_id])

    def delete_authorization_link(self, identity_id: str) -> None:
        self.journal.append(f"delete_link:{identity_id}")
        self.links.pop(identity_id, None)

    # bulk jobs
    def create_bulk_job(self, *, organization_id, file_name, created_by, status) -> dict[str, Any]:
        job_id = f"bulk-{next(self._ids)}"
        self.jobs[job_id] = {
            "job_id": job_id,
            "organization_id": organization_id,
            "file_name": file_name,
            "status": status,
            "total_records": 0,
            "successful_records": 0,
            "failed_records": 0,
            "error_log": None,
            "created_by": created_by,
        }
        return dict(self.jobs[job_id])

    def get_bulk_job(self, job_id: str) -> dict[str, Any] | None:
        job = self.jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    def list_bulk_jobs(self, organization_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        return [copy.deepcopy(job) for job in self.jobs.values() if job["organization_id"] == organization_id][:limit]

    def mark_bulk_job_started(self, job_id, *, status, total_records, expected_status) -> None:
        job = self.jobs.get(job_id)
        if job is not None and job["status"] == expected_status:
            job.update({"status": status, "total_records": total_records})

    def finalize_bulk_job(self, job_id, *, status, successful_records, failed_records, error_log) -> None:
        if self.fail_finalize:
            raise DataExecutionError("Statement execution failed.")
        self.jobs[job_id].update(
            {
                "status": status,
                "successful_records": successful_records,
                "failed_records": failed_records,
                "error_log": copy.deepcopy(error_log),
            }
        )

    # audit log
    def append_admin_log(self, *, admin_id, action, target_id, target_type="profile", metadata=None) -> bool:
        self.journal.append(f"admin_log:{action}:{target_id}")
        self.admin_logs.append(
            {
                "admin_id": admin_id,
                "action": action,
                "target_id": target_id,
                "target_type": target_type,
                "metadata": dict(metadata or {}),
            }
        )
        return True

    def list_admin_logs(self, *, limit: int = 100) -> list[dict[str, Any]]:
        return list(reversed(self.admin_logs))[:limit]
