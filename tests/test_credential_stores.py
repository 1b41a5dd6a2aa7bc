from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from provisioning_app.infrastructure import credential_store
from provisioning_app.infrastructure.credential_store import (
    CredentialStoreError,
    HttpCredentialStore,
    IdentityConflictError,
    IdentityNotFoundError,
    InvalidCredentialError,
    LocalCredentialStore,
)


def _http_store(handler, *, service_key: str = "service-key") -> HttpCredentialStore:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpCredentialStore(base_url="https://auth.example.test/", service_key=service_key, client=client)


def test_http_create_identity_returns_new_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "idn-1", "email": "ada@example.com"})

    store = _http_store(handler)

    identity_id = store.create_identity(
        email="ada@example.com",
        secret="Tmp#Secret12",
        pre_confirmed=True,
        metadata={"role": "student"},
    )

    assert identity_id == "idn-1"
    request = seen[0]
    assert request.url.path == "/auth/v1/admin/users"
    assert request.headers["apikey"] == "service-key"
    body = json.loads(request.content)
    assert body["email_confirm"] is True
    assert body["user_metadata"] == {"role": "student"}


def test_http_duplicate_email_maps_to_conflict() -> None:
    store = _http_store(lambda request: httpx.Response(422, json={"msg": "A user with this email address has already been registered"}))

    with pytest.raises(IdentityConflictError):
        store.create_identity(email="ada@example.com", secret="x", pre_confirmed=True)


def test_http_create_without_id_is_reported() -> None:
    store = _http_store(lambda request: httpx.Response(200, json={"email": "ada@example.com"}))

    with pytest.raises(CredentialStoreError, match="no identity id returned"):
        store.create_identity(email="ada@example.com", secret="x", pre_confirmed=True)


def test_http_rejected_token_is_invalid_credential() -> None:
    store = _http_store(lambda request: httpx.Response(401, json={"msg": "invalid JWT"}))

    with pytest.raises(InvalidCredentialError):
        store.exchange_credential("bad-token-value")


def test_http_exchange_reads_metadata() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer user-token-value"
        return httpx.Response(
            200,
            json={"id": "idn-2", "email": "Grace@Example.com", "user_metadata": {"role": "university"}},
        )

    identity = _http_store(handler).exchange_credential("user-token-value")

    assert identity.identity_id == "idn-2"
    assert identity.email == "grace@example.com"
    assert identity.metadata == {"role": "university"}


def test_http_transport_error_is_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CredentialStoreError, match="Request error"):
        _http_store(handler).delete_identity("idn-1")


def test_http_missing_identity_on_delete() -> None:
    store = _http_store(lambda request: httpx.Response(404, json={"msg": "User not found"}))

    with pytest.raises(IdentityNotFoundError):
        store.delete_identity("idn-404")


def test_http_without_service_key_refuses_admin_calls() -> None:
    calls: list[httpx.Request] = []
    store = _http_store(lambda request: calls.append(request) or httpx.Response(200, json={}), service_key="")

    assert store.elevated is False
    with pytest.raises(CredentialStoreError, match="requires a service key"):
        store.create_identity(email="ada@example.com", secret="x", pre_confirmed=True)
    assert calls == []


def test_http_find_identity_pages_through_admin_listing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(credential_store, "_ADMIN_USERS_PAGE_SIZE", 2)
    pages = {
        "1": [{"id": "idn-1", "email": "ada@example.com"}, {"id": "idn-2", "email": "alan@example.com"}],
        "2": [{"id": "idn-3", "email": "Grace@Example.com", "user_metadata": {"role": "student"}}],
    }
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        requested.append(page)
        return httpx.Response(200, json={"users": pages.get(page, [])})

    store = _http_store(handler)

    found = store.find_identity_by_email("grace@example.com")
    missing = store.find_identity_by_email("nobody@example.com")

    assert found is not None
    assert found.identity_id == "idn-3"
    assert found.metadata == {"role": "student"}
    assert missing is None
    assert requested == ["1", "2", "1", "2"]


def test_local_store_round_trip(tmp_path: Path) -> None:
    store = LocalCredentialStore(str(tmp_path / "identity.db"))

    identity_id = store.create_identity(
        email="Ada@Example.com",
        secret="Tmp#Secret12",
        pre_confirmed=True,
        metadata={"role": "student", "full_name": "Ada Lovelace"},
    )
    token = store.sign_in(email="ada@example.com", secret="Tmp#Secret12")
    identity = store.exchange_credential(token)

    assert identity.identity_id == identity_id
    assert identity.full_name == "Ada Lovelace"
    assert identity.email_confirmed is True
    with pytest.raises(InvalidCredentialError):
        store.sign_in(email="ada@example.com", secret="wrong")


def test_local_store_conflict_and_delete(tmp_path: Path) -> None:
    store = LocalCredentialStore(str(tmp_path / "identity.db"))
    identity_id = store.create_identity(email="ada@example.com", secret="x", pre_confirmed=False)

    with pytest.raises(IdentityConflictError):
        store.create_identity(email="ADA@example.com", secret="y", pre_confirmed=False)

    store.delete_identity(identity_id)
    assert store.find_identity_by_email("ada@example.com") is None
    with pytest.raises(IdentityNotFoundError):
        store.delete_identity(identity_id)


def test_local_store_not_elevated_refuses_writes(tmp_path: Path) -> None:
    store = LocalCredentialStore(str(tmp_path / "identity.db"), elevated=False)

    with pytest.raises(CredentialStoreError):
        store.create_identity(email="ada@example.com", secret="x", pre_confirmed=True)
    with pytest.raises(CredentialStoreError):
        store.find_identity_by_email("ada@example.com")
