from __future__ import annotations

import logging
from typing import Any

from provisioning_app.core.security import (
    APPROVAL_APPROVED,
    ROLE_CHOICES,
    ROLE_STUDENT,
    ROLE_UNIVERSITY,
    initial_active_flag,
    is_known_role,
    normalize_role,
)
from provisioning_app.infrastructure.credential_store import CredentialStoreError, IdentityNotFoundError
from provisioning_app.provisioning.saga import CompensationStack

LOGGER = logging.getLogger(__name__)

DELIVERY_INVITE = "invite"
DELIVERY_CONFIRMED = "confirmed"
DELIVERY_NONE = "none"


class AccountAdministration:
    """Admin-only account lifecycle spanning the identity store and the link table."""

    def __init__(self, repo, credential_store) -> None:
        self.repo = repo
        self.credential_store = credential_store

    @staticmethod
    def _resolve_role(role: str | None) -> str:
        cleaned = normalize_role(role) or ROLE_STUDENT
        if not is_known_role(cleaned):
            raise ValueError(f"Role must be one of: {', '.join(ROLE_CHOICES)}")
        return cleaned

    def list_accounts(self, *, role: str = "", limit: int = 200) -> list[dict[str, Any]]:
        return self.repo.list_authorization_links(role=role, limit=limit)

    def list_audit_log(self, *, limit: int = 100) -> list[dict[str, Any]]:
        return self.repo.list_admin_logs(limit=limit)

    def create_account(
        self,
        actor,
        *,
        email: str,
        password: str,
        full_name: str,
        role: str | None = None,
        organization_name: str = "",
    ) -> dict[str, Any]:
        cleaned_email = str(email or "").strip().lower()
        cleaned_name = str(full_name or "").strip()
        if not cleaned_email or not password or not cleaned_name:
            raise ValueError("Email, password, and full name are required.")
        cleaned_role = self._resolve_role(role)
        org_name = str(organization_name or "").strip()
        if cleaned_role == ROLE_UNIVERSITY and not org_name:
            org_name = cleaned_name

        identity_id = self.credential_store.create_identity(
            email=cleaned_email,
            secret=password,
            pre_confirmed=False,
            metadata={"role": cleaned_role, "full_name": cleaned_name},
        )
        stack = CompensationStack()
        stack.push("delete identity", lambda: self.credential_store.delete_identity(identity_id))
        try:
            link = self.repo.insert_authorization_link_if_missing(
                identity_id=identity_id,
                role=cleaned_role,
                email=cleaned_email,
                full_name=cleaned_name,
                organization_name=org_name or None,
                is_active=initial_active_flag(cleaned_role),
                approval_status=APPROVAL_APPROVED,
            )
        except Exception:
            stack.unwind(context={"email": cleaned_email, "identity_id": identity_id})
            raise

        self.repo.append_admin_log(
            admin_id=actor.identity_id,
            action="create_user",
            target_id=identity_id,
            metadata={"email": cleaned_email, "role": cleaned_role, "full_name": cleaned_name},
        )
        delivery = self._deliver(identity_id, email=cleaned_email, role=cleaned_role, full_name=cleaned_name)
        return {"user": link, "delivery": delivery}

    def _deliver(self, identity_id: str, *, email: str, role: str, full_name: str) -> str:
        try:
            self.credential_store.invite_identity(email=email, metadata={"role": role, "full_name": full_name})
            return DELIVERY_INVITE
        except CredentialStoreError:
            LOGGER.warning(
                "Invite failed; confirming identity directly. email=%s",
                email,
                exc_info=True,
                extra={"event": "account_invite_failed", "email": email},
            )
        try:
            self.credential_store.confirm_identity(identity_id)
            return DELIVERY_CONFIRMED
        except CredentialStoreError:
            LOGGER.error(
                "Could not invite or confirm new account. email=%s",
                email,
                exc_info=True,
                extra={"event": "account_delivery_failed", "email": email, "identity_id": identity_id},
            )
        return DELIVERY_NONE

    def update_account(self, actor, identity_id: str, *, full_name: str, role: str) -> dict[str, Any]:
        cleaned_name = str(full_name or "").strip()
        if not cleaned_name:
            raise ValueError("Full name is required.")
        cleaned_role = self._resolve_role(role)
        link = self.repo.update_authorization_link(identity_id, full_name=cleaned_name, role=cleaned_role)
        self.repo.append_admin_log(
            admin_id=actor.identity_id,
            action="update_user",
            target_id=identity_id,
            metadata={"full_name": cleaned_name, "role": cleaned_role},
        )
        return link

    def delete_account(self, actor, identity_id: str) -> None:
        if identity_id == actor.identity_id:
            raise ValueError("Admins cannot delete their own account.")
        self.repo.append_admin_log(admin_id=actor.identity_id, action="delete_user", target_id=identity_id)
        self.repo.delete_authorization_link(identity_id)
        self.repo.delete_student_records_for_identity(identity_id)
        try:
            self.credential_store.delete_identity(identity_id)
        except IdentityNotFoundError:
            LOGGER.info(
                "Identity already absent during delete. identity=%s",
                identity_id,
                extra={"event": "account_identity_absent", "identity_id": identity_id},
            )

    def deactivate_account(self, actor, identity_id: str) -> dict[str, Any]:
        return self._set_active(actor, identity_id, active=False)

    def activate_account(self, actor, identity_id: str) -> dict[str, Any]:
        return self._set_active(actor, identity_id, active=True)

    def _set_active(self, actor, identity_id: str, *, active: bool) -> dict[str, Any]:
        link = self.repo.set_link_active(identity_id, active=active)
        self.repo.append_admin_log(
            admin_id=actor.identity_id,
            action="activate_user" if active else "deactivate_user",
            target_id=identity_id,
        )
        return link
