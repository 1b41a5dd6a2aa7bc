"""Bearer credential resolution into an effective role.

``resolve`` never fails hard on a missing authorization link. The role is
inferred from identity metadata (never ``admin``) and the link is repaired
when the credential store grants elevated privilege. Callers inspect
``Authorized.persisted`` to know whether the repair was written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from provisioning_app.core.defaults import MIN_BEARER_TOKEN_LENGTH
from provisioning_app.core.security import ROLE_ADMIN, ROLE_UNIVERSITY, infer_role, initial_active_flag, normalize_role
from provisioning_app.infrastructure.credential_store import Identity, InvalidCredentialError

LOGGER = logging.getLogger(__name__)
BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Authorized:
    identity_id: str
    email: str
    role: str
    organization_id: str
    persisted: bool
    full_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_university(self) -> bool:
        return self.role == ROLE_UNIVERSITY

    @property
    def is_fully_resolved(self) -> bool:
        return self.persisted

    def as_payload(self) -> dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "organization_id": self.organization_id,
            "persisted": self.persisted,
        }


@dataclass(frozen=True)
class Unauthorized:
    reason: str


def extract_bearer_token(authorization_header: str | None) -> str:
    header = str(authorization_header or "")
    if not header.startswith(BEARER_PREFIX):
        return ""
    token = header[len(BEARER_PREFIX) :].strip()
    if len(token) < MIN_BEARER_TOKEN_LENGTH:
        return ""
    return token


class AuthorizationResolver:
    def __init__(self, repo, credential_store) -> None:
        self.repo = repo
        self.credential_store = credential_store

    def _authenticate(self, authorization_header: str | None) -> Identity | Unauthorized:
        token = extract_bearer_token(authorization_header)
        if not token:
            return Unauthorized("Missing or malformed bearer token.")
        try:
            return self.credential_store.exchange_credential(token)
        except InvalidCredentialError:
            return Unauthorized("Invalid or expired token.")

    def _lookup_link(self, identity_id: str) -> dict[str, Any] | None:
        try:
            return self.repo.get_authorization_link(identity_id)
        except Exception:
            LOGGER.warning(
                "Authorization link lookup failed; treating as absent. identity=%s",
                identity_id,
                exc_info=True,
                extra={"event": "authorization_link_lookup_failed", "identity_id": identity_id},
            )
            return None

    @staticmethod
    def _organization_id(role: str, identity: Identity, link: dict[str, Any] | None) -> str:
        organization_id = str((link or {}).get("organization_id") or "").strip()
        if not organization_id and role == ROLE_UNIVERSITY:
            organization_id = identity.identity_id
        return organization_id

    def _authorized(self, identity: Identity, role: str, link: dict[str, Any] | None, *, persisted: bool) -> Authorized:
        return Authorized(
            identity_id=identity.identity_id,
            email=identity.email or str((link or {}).get("email") or ""),
            role=role,
            organization_id=self._organization_id(role, identity, link),
            persisted=persisted,
            full_name=str((link or {}).get("full_name") or "").strip() or identity.full_name,
        )

    def resolve(self, authorization_header: str | None) -> Authorized | Unauthorized:
        identity = self._authenticate(authorization_header)
        if isinstance(identity, Unauthorized):
            return identity
        link = self._lookup_link(identity.identity_id)
        role = normalize_role((link or {}).get("role"))
        if role:
            return self._authorized(identity, role, link, persisted=True)
        return self._repair(identity, link, full_name=identity.full_name)

    def reconcile(self, authorization_header: str | None, *, full_name: str = "") -> Authorized | Unauthorized:
        identity = self._authenticate(authorization_header)
        if isinstance(identity, Unauthorized):
            return identity
        link = self._lookup_link(identity.identity_id)
        name = str(full_name or "").strip() or identity.full_name
        role = normalize_role((link or {}).get("role"))
        if link is not None and role:
            if self.credential_store.elevated and (not link.get("email") or not link.get("full_name")):
                link = self._fill_missing(identity, link, role=role, full_name=name) or link
            return self._authorized(identity, role, link, persisted=True)
        return self._repair(identity, link, full_name=name)

    def _fill_missing(
        self, identity: Identity, link: dict[str, Any], *, role: str, full_name: str
    ) -> dict[str, Any] | None:
        try:
            return self.repo.fill_missing_link_fields(
                identity.identity_id,
                role=role,
                email=identity.email,
                full_name=full_name,
            )
        except Exception:
            LOGGER.warning(
                "Could not fill missing authorization link fields. identity=%s",
                identity.identity_id,
                exc_info=True,
                extra={"event": "authorization_link_fill_failed", "identity_id": identity.identity_id},
            )
            return None

    def _repair(self, identity: Identity, link: dict[str, Any] | None, *, full_name: str) -> Authorized:
        role = infer_role(identity.metadata)
        if not self.credential_store.elevated:
            LOGGER.warning(
                "Authorization link missing and credential store is not elevated; using inferred role. identity=%s role=%s",
                identity.identity_id,
                role,
                extra={
                    "event": "authorization_link_not_persisted",
                    "identity_id": identity.identity_id,
                    "role": role,
                },
            )
            return self._authorized(identity, role, link, persisted=False)

        try:
            if link is None:
                repaired = self.repo.insert_authorization_link_if_missing(
                    identity_id=identity.identity_id,
                    role=role,
                    email=identity.email,
                    full_name=full_name,
                    organization_id=identity.identity_id if role == ROLE_UNIVERSITY else None,
                    is_active=initial_active_flag(role),
                )
            else:
                repaired = self.repo.fill_missing_link_fields(
                    identity.identity_id,
                    role=role,
                    email=identity.email,
                    full_name=full_name,
                )
        except Exception:
            LOGGER.warning(
                "Could not persist authorization link; using inferred role. identity=%s role=%s",
                identity.identity_id,
                role,
                exc_info=True,
                extra={
                    "event": "authorization_link_not_persisted",
                    "identity_id": identity.identity_id,
                    "role": role,
                },
            )
            return self._authorized(identity, role, link, persisted=False)

        # A concurrent writer may have set a role first; it wins.
        effective_role = normalize_role((repaired or {}).get("role")) or role
        LOGGER.info(
            "Authorization link created. identity=%s role=%s",
            identity.identity_id,
            effective_role,
            extra={"event": "authorization_link_created", "identity_id": identity.identity_id, "role": effective_role},
        )
        return self._authorized(identity, effective_role, repaired or link, persisted=True)
