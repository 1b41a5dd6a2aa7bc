"""Identity/credential store clients.

Two implementations share the ``CredentialStore`` surface used by the provisioning
saga and the authorization resolver:

* ``HttpCredentialStore`` talks to a GoTrue-compatible auth service over HTTP.
  Administrative calls (create, delete, invite, confirm) need the service key;
  the store reports ``elevated`` only when one is configured.
* ``LocalCredentialStore`` keeps identities in a SQLite file for dev/local runs.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import hmac
import json
import logging
from pathlib import Path
import secrets
import sqlite3
from typing import Any
import uuid

import httpx

LOGGER = logging.getLogger(__name__)
_CONFLICT_SIGNALS = (
    "already exists",
    "already registered",
    "already been registered",
    "email_exists",
)
_PBKDF2_ITERATIONS = 120_000
_ADMIN_USERS_PAGE_SIZE = 200
_ADMIN_USERS_MAX_PAGES = 50


class CredentialStoreError(RuntimeError):
    """Raised when the credential store cannot complete a request."""


class IdentityConflictError(CredentialStoreError):
    """Raised when an identity with the same email is already registered."""


class InvalidCredentialError(CredentialStoreError):
    """Raised when a bearer credential or sign-in secret is rejected."""


class IdentityNotFoundError(CredentialStoreError):
    """Raised when the referenced identity does not exist."""


@dataclass(frozen=True)
class Identity:
    identity_id: str
    email: str
    metadata: dict[str, Any] = field(default_factory=dict)
    email_confirmed: bool = False

    @property
    def full_name(self) -> str:
        return str(self.metadata.get("full_name") or "").strip()


def _looks_like_conflict(message: str) -> bool:
    lowered = str(message or "").lower()
    return any(signal in lowered for signal in _CONFLICT_SIGNALS)


class CredentialStore:
    elevated: bool = False

    def create_identity(
        self,
        *,
        email: str,
        secret: str,
        pre_confirmed: bool,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        raise NotImplementedError

    def delete_identity(self, identity_id: str) -> None:
        raise NotImplementedError

    def find_identity_by_email(self, email: str) -> Identity | None:
        raise NotImplementedError

    def exchange_credential(self, token: str) -> Identity:
        raise NotImplementedError

    def sign_in(self, *, email: str, secret: str) -> str:
        raise NotImplementedError

    def invite_identity(self, *, email: str, metadata: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    def confirm_identity(self, identity_id: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


def _identity_from_payload(payload: Any) -> Identity:
    user = payload.get("user") if isinstance(payload, dict) and isinstance(payload.get("user"), dict) else payload
    if not isinstance(user, dict):
        raise CredentialStoreError("Credential store returned an unexpected identity payload.")
    identity_id = str(user.get("id") or "").strip()
    if not identity_id:
        raise CredentialStoreError("Credential store returned an identity without an id.")
    metadata = user.get("user_metadata")
    return Identity(
        identity_id=identity_id,
        email=str(user.get("email") or "").strip().lower(),
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
        email_confirmed=bool(user.get("email_confirmed_at") or user.get("confirmed_at")),
    )


class HttpCredentialStore(CredentialStore):
    def __init__(
        self,
        *,
        base_url: str,
        service_key: str = "",
        anon_key: str = "",
        timeout: float = 20.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self.service_key = str(service_key or "").strip()
        self.anon_key = str(anon_key or "").strip() or self.service_key
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def elevated(self) -> bool:  # type: ignore[override]
        return bool(self.service_key)

    def close(self) -> None:
        self._client.close()

    def _require_elevated(self, operation: str) -> None:
        if not self.elevated:
            raise CredentialStoreError(f"Credential store operation `{operation}` requires a service key.")

    def _headers(self, *, bearer: str, api_key: str) -> dict[str, str]:
        return {
            "apikey": api_key,
            "Authorization": f"Bearer {bearer}",
            "Accept": "application/json",
        }

    def _admin_headers(self) -> dict[str, str]:
        return self._headers(bearer=self.service_key, api_key=self.service_key)

    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = self.base_url + path
        try:
            return self._client.request(method, url, headers=headers, params=params, json=json_body)
        except httpx.RequestError as exc:
            raise CredentialStoreError(f"Request error talking to credential store: {exc}") from exc

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text
        if isinstance(body, dict):
            for key in ("msg", "message", "error_description", "error"):
                value = str(body.get(key) or "").strip()
                if value:
                    return value
        return str(body)

    def _raise_for_status(self, resp: httpx.Response, *, method: str, path: str) -> None:
        if resp.status_code < 400:
            return
        message = self._error_message(resp)
        if resp.status_code in {409, 422} and _looks_like_conflict(message):
            raise IdentityConflictError(message)
        if resp.status_code == 404:
            raise IdentityNotFoundError(message or f"{method} {path} returned 404")
        raise CredentialStoreError(f"Credential store returned {resp.status_code} for {method} {path}: {message}")

    def create_identity(
        self,
        *,
        email: str,
        secret: str,
        pre_confirmed: bool,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        self._require_elevated("create_identity")
        path = "/auth/v1/admin/users"
        resp = self._request(
            "POST",
            path,
            headers=self._admin_headers(),
            json_body={
                "email": email,
                "password": secret,
                "email_confirm": bool(pre_confirmed),
                "user_metadata": dict(metadata or {}),
            },
        )
        self._raise_for_status(resp, method="POST", path=path)
        try:
            identity = _identity_from_payload(resp.json())
        except (ValueError, CredentialStoreError) as exc:
            raise CredentialStoreError("Failed to create identity: no identity id returned") from exc
        return identity.identity_id

    def delete_identity(self, identity_id: str) -> None:
        self._require_elevated("delete_identity")
        path = f"/auth/v1/admin/users/{identity_id}"
        resp = self._request("DELETE", path, headers=self._admin_headers())
        self._raise_for_status(resp, method="DELETE", path=path)

    def find_identity_by_email(self, email: str) -> Identity | None:
        self._require_elevated("find_identity_by_email")
        target = str(email or "").strip().lower()
        path = "/auth/v1/admin/users"
        for page in range(1, _ADMIN_USERS_MAX_PAGES + 1):
            resp = self._request(
                "GET",
                path,
                headers=self._admin_headers(),
                params={"page": page, "per_page": _ADMIN_USERS_PAGE_SIZE},
            )
            self._raise_for_status(resp, method="GET", path=path)
            body = resp.json()
            users = body.get("users", []) if isinstance(body, dict) else list(body or [])
            for user in users:
                if str(user.get("email") or "").strip().lower() == target:
                    return _identity_from_payload(user)
            if len(users) < _ADMIN_USERS_PAGE_SIZE:
                break
        return None

    def exchange_credential(self, token: str) -> Identity:
        path = "/auth/v1/user"
        resp = self._request("GET", path, headers=self._headers(bearer=token, api_key=self.anon_key))
        if resp.status_code in {401, 403}:
            raise InvalidCredentialError(self._error_message(resp) or "Invalid or expired token.")
        self._raise_for_status(resp, method="GET", path=path)
        return _identity_from_payload(resp.json())

    def sign_in(self, *, email: str, secret: str) -> str:
        path = "/auth/v1/token"
        resp = self._request(
            "POST",
            path,
            headers={"apikey": self.anon_key, "Accept": "application/json"},
            params={"grant_type": "password"},
            json_body={"email": email, "password": secret},
        )
        if resp.status_code in {400, 401}:
            raise InvalidCredentialError(self._error_message(resp) or "Invalid login credentials.")
        self._raise_for_status(resp, method="POST", path=path)
        token = str(resp.json().get("access_token") or "").strip()
        if not token:
            raise CredentialStoreError("Credential store did not return an access token.")
        return token

    def invite_identity(self, *, email: str, metadata: dict[str, Any] | None = None) -> None:
        self._require_elevated("invite_identity")
        path = "/auth/v1/invite"
        resp = self._request(
            "POST",
            path,
            headers=self._admin_headers(),
            json_body={"email": email, "data": dict(metadata or {})},
        )
        self._raise_for_status(resp, method="POST", path=path)

    def confirm_identity(self, identity_id: str) -> None:
        self._require_elevated("confirm_identity")
        path = f"/auth/v1/admin/users/{identity_id}"
        resp = self._request("PUT", path, headers=self._admin_headers(), json_body={"email_confirm": True})
        self._raise_for_status(resp, method="PUT", path=path)


def _hash_secret(secret: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt_value.encode("utf-8"), _PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt_value}${digest.hex()}"


def _verify_secret(secret: str, encoded: str) -> bool:
    try:
        _, _, salt, _ = str(encoded or "").split("$", 3)
    except ValueError:
        return False
    return hmac.compare_digest(_hash_secret(secret, salt=salt), encoded)


class LocalCredentialStore(CredentialStore):
    """SQLite-backed identity store for dev/local runs and tests."""

    def __init__(self, db_path: str, *, elevated: bool = True) -> None:
        self.db_path = str(Path(db_path).resolve())
        self._elevated = bool(elevated)
        self._schema_ready = False

    @property
    def elevated(self) -> bool:  # type: ignore[override]
        return self._elevated

    @contextmanager
    def _connection(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise CredentialStoreError(f"Failed to open local identity store at {self.db_path}.") from exc
        try:
            if not self._schema_ready:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS identity_account (
                        identity_id TEXT PRIMARY KEY,
                        email TEXT NOT NULL UNIQUE,
                        secret_hash TEXT NOT NULL,
                        email_confirmed INTEGER NOT NULL DEFAULT 0,
                        invited_at TEXT,
                        metadata_json TEXT,
                        created_at TEXT NOT NULL
                    );
                    CREATE TABLE IF NOT EXISTS identity_session (
                        token TEXT PRIMARY KEY,
                        identity_id TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                    """
                )
                self._schema_ready = True
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _require_elevated(self, operation: str) -> None:
        if not self._elevated:
            raise CredentialStoreError(f"Credential store operation `{operation}` requires a service key.")

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_identity(row: tuple) -> Identity:
        identity_id, email, confirmed, metadata_json = row
        try:
            metadata = json.loads(metadata_json) if metadata_json else {}
        except ValueError:
            metadata = {}
        return Identity(
            identity_id=str(identity_id),
            email=str(email),
            metadata=metadata if isinstance(metadata, dict) else {},
            email_confirmed=bool(confirmed),
        )

    def create_identity(
        self,
        *,
        email: str,
        secret: str,
        pre_confirmed: bool,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        self._require_elevated("create_identity")
        identity_id = str(uuid.uuid4())
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT INTO identity_account "
                    "(identity_id, email, secret_hash, email_confirmed, metadata_json, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        identity_id,
                        str(email or "").strip().lower(),
                        _hash_secret(secret),
                        1 if pre_confirmed else 0,
                        json.dumps(dict(metadata or {})),
                        self._now(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise IdentityConflictError("A user with this email address has already been registered") from exc
        return identity_id

    def delete_identity(self, identity_id: str) -> None:
        self._require_elevated("delete_identity")
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM identity_account WHERE identity_id = ?", (identity_id,))
            conn.execute("DELETE FROM identity_session WHERE identity_id = ?", (identity_id,))
            if cursor.rowcount == 0:
                raise IdentityNotFoundError(f"Identity not found: {identity_id}")

    def find_identity_by_email(self, email: str) -> Identity | None:
        self._require_elevated("find_identity_by_email")
        with self._connection() as conn:
            row = conn.execute(
                "SELECT identity_id, email, email_confirmed, metadata_json FROM identity_account WHERE email = ?",
                (str(email or "").strip().lower(),),
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def issue_token(self, identity_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO identity_session (token, identity_id, created_at) VALUES (?, ?, ?)",
                (token, identity_id, self._now()),
            )
        return token

    def exchange_credential(self, token: str) -> Identity:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT a.identity_id, a.email, a.email_confirmed, a.metadata_json "
                "FROM identity_session s JOIN identity_account a ON a.identity_id = s.identity_id "
                "WHERE s.token = ?",
                (str(token or ""),),
            ).fetchone()
        if not row:
            raise InvalidCredentialError("Invalid or expired token.")
        return self._row_to_identity(row)

    def sign_in(self, *, email: str, secret: str) -> str:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT identity_id, secret_hash FROM identity_account WHERE email = ?",
                (str(email or "").strip().lower(),),
            ).fetchone()
        if not row or not _verify_secret(secret, row[1]):
            raise InvalidCredentialError("Invalid login credentials.")
        return self.issue_token(str(row[0]))

    def invite_identity(self, *, email: str, metadata: dict[str, Any] | None = None) -> None:
        self._require_elevated("invite_identity")
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE identity_account SET invited_at = ? WHERE email = ?",
                (self._now(), str(email or "").strip().lower()),
            )
            if cursor.rowcount == 0:
                raise IdentityNotFoundError(f"No identity registered for {email}")
        LOGGER.info(
            "Local invite recorded. email=%s",
            email,
            extra={"event": "local_invite_recorded", "email": email},
        )

    def confirm_identity(self, identity_id: str) -> None:
        self._require_elevated("confirm_identity")
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE identity_account SET email_confirmed = 1 WHERE identity_id = ?",
                (identity_id,),
            )
            if cursor.rowcount == 0:
                raise IdentityNotFoundError(f"Identity not found: {identity_id}")
