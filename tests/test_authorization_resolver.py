from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from provisioning_app.infrastructure.credential_store import CredentialStoreError
from provisioning_app.web.core.authorization import Authorized, AuthorizationResolver, Unauthorized
from provisioning_fakes import InMemoryCredentialStore, InMemoryRepository


def _resolver(*, elevated: bool = True, metadata: dict | None = None):
    repo = InMemoryRepository()
    store = InMemoryCredentialStore(elevated=elevated)
    identity = store.add_identity("caller@example.com", metadata=metadata or {}, identity_id="idn-1")
    header = f"Bearer {store.issue_token(identity.identity_id)}"
    return AuthorizationResolver(repo, store), repo, store, header


@pytest.mark.parametrize(
    "header",
    [None, "", "Basic abcdefghijklmnop", "Bearer short", "bearer token-idn-1-0123456789"],
)
def test_malformed_headers_are_unauthorized(header: str | None) -> None:
    resolver, _repo, _store, _header = _resolver()

    result = resolver.resolve(header)

    assert isinstance(result, Unauthorized)


def test_rejected_token_is_unauthorized() -> None:
    resolver, _repo, _store, _header = _resolver()

    result = resolver.resolve("Bearer not-a-known-token-value")

    assert isinstance(result, Unauthorized)
    assert "Invalid" in result.reason


def test_credential_store_outage_propagates() -> None:
    resolver, _repo, store, header = _resolver()

    def _down(_token: str):
        raise CredentialStoreError("connection refused")

    store.exchange_credential = _down

    with pytest.raises(CredentialStoreError):
        resolver.resolve(header)


def test_existing_link_role_wins_over_metadata() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "guest"})
    repo.links["idn-1"] = {"identity_id": "idn-1", "role": "software_house", "organization_id": "org-7"}

    result = resolver.resolve(header)

    assert result == Authorized(
        identity_id="idn-1",
        email="caller@example.com",
        role="software_house",
        organization_id="org-7",
        persisted=True,
        full_name="",
    )


def test_university_without_organization_uses_own_identity() -> None:
    resolver, repo, _store, header = _resolver()
    repo.links["idn-1"] = {"identity_id": "idn-1", "role": "university", "organization_id": None}

    result = resolver.resolve(header)

    assert isinstance(result, Authorized)
    assert result.is_university
    assert result.organization_id == "idn-1"


def test_elevated_missing_link_is_repaired_with_inferred_role() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "university", "full_name": "State U"})

    result = resolver.resolve(header)

    assert isinstance(result, Authorized)
    assert result.role == "university"
    assert result.persisted is True
    assert result.is_fully_resolved
    link = repo.links["idn-1"]
    assert link["role"] == "university"
    assert link["email"] == "caller@example.com"
    assert link["full_name"] == "State U"
    assert link["organization_id"] == "idn-1"
    assert link["is_active"] is False


def test_metadata_admin_claim_is_never_inferred() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "admin"})

    result = resolver.resolve(header)

    assert result.role == "student"
    assert not result.is_admin
    assert repo.links["idn-1"]["role"] == "student"


def test_unknown_metadata_role_falls_back_to_student() -> None:
    resolver, _repo, _store, header = _resolver(metadata={"role": "superuser"})

    assert resolver.resolve(header).role == "student"


def test_non_elevated_missing_link_is_not_persisted(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(logging.getLogger("provisioning_app"), "propagate", True)
    resolver, repo, _store, header = _resolver(elevated=False, metadata={"role": "guest"})

    with caplog.at_level(logging.WARNING, logger="provisioning_app"):
        result = resolver.resolve(header)

    assert isinstance(result, Authorized)
    assert result.role == "guest"
    assert result.persisted is False
    assert repo.links == {}
    assert any(getattr(record, "event", "") == "authorization_link_not_persisted" for record in caplog.records)


def test_link_with_empty_role_gets_role_filled() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "guest"})
    repo.links["idn-1"] = {"identity_id": "idn-1", "role": None, "email": None, "organization_id": "org-2"}

    result = resolver.resolve(header)

    assert result.role == "guest"
    assert result.persisted is True
    assert result.organization_id == "org-2"
    assert repo.links["idn-1"]["role"] == "guest"
    assert repo.links["idn-1"]["email"] == "caller@example.com"


def test_link_write_failure_degrades_to_unpersisted() -> None:
    resolver, repo, _store, header = _resolver()
    repo.fail_link_write = True

    result = resolver.resolve(header)

    assert isinstance(result, Authorized)
    assert result.role == "student"
    assert result.persisted is False


def test_link_lookup_failure_is_treated_as_absent() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "guest"})
    repo.fail_link_lookup = True

    result = resolver.resolve(header)

    assert result.role == "guest"
    assert result.persisted is True
    assert "idn-1" in repo.links


def test_reconcile_fills_missing_fields_without_changing_role() -> None:
    resolver, repo, _store, header = _resolver(metadata={"role": "guest"})
    repo.links["idn-1"] = {"identity_id": "idn-1", "role": "software_house", "email": None, "full_name": None}

    result = resolver.reconcile(header, full_name="Acme Labs")

    assert result.role == "software_house"
    assert result.full_name == "Acme Labs"
    assert repo.links["idn-1"]["email"] == "caller@example.com"
    assert repo.links["idn-1"]["role"] == "software_house"


def test_reconcile_creates_missing_link() -> None:
    resolver, repo, _store, header = _resolver()

    result = resolver.reconcile(header, full_name="New Student")

    assert result.persisted is True
    assert repo.links["idn-1"]["full_name"] == "New Student"
