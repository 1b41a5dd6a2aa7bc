from __future__ import annotations

import logging
from typing import Any

from provisioning_app.core.repository_errors import AuthorizationConflictError, RecordNotFoundError
from provisioning_app.core.security import APPROVAL_APPROVED, normalize_role

LOGGER = logging.getLogger(__name__)
AUTHORIZATION_LINK_COLUMNS = [
    "identity_id",
    "role",
    "email",
    "full_name",
    "organization_name",
    "organization_id",
    "is_active",
    "approval_status",
    "created_at",
    "updated_at",
]


class RepositoryAuthorizationMixin:
    def _normalize_link(self, row: dict[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        out = dict(row)
        out["role"] = normalize_role(out.get("role")) or None
        out["is_active"] = self._as_bool(out.get("is_active"))
        return out

    def get_authorization_link(self, identity_id: str) -> dict[str, Any] | None:
        frame = self._probe_file(
            "authorization/select_link.sql",
            params=(identity_id,),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
        return self._normalize_link(self._first_record(frame))

    def list_authorization_links(self, *, role: str = "", limit: int = 200) -> list[dict[str, Any]]:
        where_clause = ""
        params: tuple = ()
        cleaned_role = normalize_role(role)
        if cleaned_role:
            where_clause = "WHERE role = %s"
            params = (cleaned_role,)
        frame = self._query_file(
            "authorization/select_links.sql",
            params=params,
            columns=AUTHORIZATION_LINK_COLUMNS,
            sec_authorization_link=self._table("sec_authorization_link"),
            where_clause=where_clause,
            limit=self._limit(limit),
        )
        return [self._normalize_link(row) for row in self._records(frame)]

    def insert_authorization_link_if_missing(
        self,
        *,
        identity_id: str,
        role: str,
        email: str | None = None,
        full_name: str | None = None,
        organization_name: str | None = None,
        organization_id: str | None = None,
        is_active: bool = True,
        approval_status: str = APPROVAL_APPROVED,
    ) -> dict[str, Any]:
        now = self._now()
        self._execute_file(
            "authorization/insert_link_if_missing.sql",
            params=(
                identity_id,
                normalize_role(role) or None,
                email or None,
                full_name or None,
                organization_name or None,
                organization_id or None,
                bool(is_active),
                approval_status,
                now,
                now,
                identity_id,
            ),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
        link = self.get_authorization_link(identity_id)
        if link is None:
            raise RecordNotFoundError(f"Authorization link was not written for {identity_id}.")
        return link

    def fill_missing_link_fields(
        self,
        identity_id: str,
        *,
        role: str | None = None,
        email: str | None = None,
        full_name: str | None = None,
        organization_name: str | None = None,
        organization_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Populate blank columns on an existing link. Populated columns are never changed."""
        self._execute_file(
            "authorization/update_link_fill_missing.sql",
            params=(
                normalize_role(role) or None,
                email or None,
                full_name or None,
                organization_name or None,
                organization_id or None,
                self._now(),
                identity_id,
            ),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
        return self.get_authorization_link(identity_id)

    def merge_provisioning_link(
        self,
        *,
        identity_id: str,
        role: str,
        email: str,
        full_name: str,
        organization_id: str,
    ) -> dict[str, Any]:
        expected_role = normalize_role(role)
        link = self.get_authorization_link(identity_id)
        if link is None:
            link = self.insert_authorization_link_if_missing(
                identity_id=identity_id,
                role=expected_role,
                email=email,
                full_name=full_name,
                organization_id=organization_id,
            )
        existing_role = normalize_role(link.get("role"))
        if existing_role and existing_role != expected_role:
            raise AuthorizationConflictError(
                f"Authorization link for {identity_id} already has role `{existing_role}`."
            )
        merged = self.fill_missing_link_fields(
            identity_id,
            role=expected_role,
            email=email,
            full_name=full_name,
            organization_id=organization_id,
        )
        if merged is None:
            raise RecordNotFoundError(f"Authorization link disappeared for {identity_id}.")
        return merged

    def update_authorization_link(self, identity_id: str, *, full_name: str, role: str) -> dict[str, Any]:
        if self.get_authorization_link(identity_id) is None:
            raise RecordNotFoundError(f"Authorization link not found: {identity_id}")
        self._execute_file(
            "authorization/update_link_profile.sql",
            params=(full_name or None, normalize_role(role), self._now(), identity_id),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
        return self.get_authorization_link(identity_id) or {}

    def set_link_active(self, identity_id: str, *, active: bool) -> dict[str, Any]:
        if self.get_authorization_link(identity_id) is None:
            raise RecordNotFoundError(f"Authorization link not found: {identity_id}")
        self._execute_file(
            "authorization/update_link_active.sql",
            params=(bool(active), bool(active), APPROVAL_APPROVED, self._now(), identity_id),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
        return self.get_authorization_link(identity_id) or {}

    def delete_authorization_link(self, identity_id: str) -> None:
        self._execute_file(
            "authorization/delete_link.sql",
            params=(identity_id,),
            sec_authorization_link=self._table("sec_authorization_link"),
        )
