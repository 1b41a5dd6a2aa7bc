from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from provisioning_app.web import services  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_service_caches():
    services.get_config.cache_clear()
    services.get_repo.cache_clear()
    services.get_credential_store.cache_clear()
    yield
    services.get_config.cache_clear()
    services.get_repo.cache_clear()
    services.get_credential_store.cache_clear()


@pytest.fixture()
def isolated_local_db(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    db_path = tmp_path / "provisioning_local.db"
    init_script = repo_root / "setup" / "local_db" / "init_local_db.py"
    result = subprocess.run(
        [
            sys.executable,
            str(init_script),
            "--db-path",
            str(db_path),
            "--reset",
        ],
        capture_output=True,
        text=True,
        cwd=str(repo_root),
        check=False,
    )
    if result.returncode != 0:
        raise RuntimeError(
            "Failed to initialize isolated local DB for tests.\n"
            f"stdout:\n{result.stdout}\n"
            f"stderr:\n{result.stderr}"
        )

    monkeypatch.setenv("PROVISIONING_ENV", "dev")
    monkeypatch.setenv("PROVISIONING_USE_LOCAL_DB", "true")
    monkeypatch.setenv("PROVISIONING_LOCAL_DB_PATH", str(db_path))
    monkeypatch.setenv("PROVISIONING_LOCAL_DB_AUTO_INIT", "false")
    monkeypatch.setenv("PROVISIONING_CREDENTIAL_STORE", "local")
    monkeypatch.setenv("PROVISIONING_LOCAL_IDENTITY_DB_PATH", str(tmp_path / "identity_local.db"))
    return db_path


@dataclass
class FakeBackend:
    client: TestClient
    repo: Any
    store: Any

    def caller(self, identity_id: str, *, role: str, organization_id: str | None = None) -> dict[str, str]:
        identity = self.store.add_identity(f"{identity_id}@example.com", identity_id=identity_id)
        self.repo.links[identity_id] = {
            "identity_id": identity_id,
            "role": role,
            "email": identity.email,
            "organization_id": organization_id,
            "is_active": True,
        }
        return {"Authorization": f"Bearer {self.store.issue_token(identity_id)}"}


@pytest.fixture()
def fake_backend(monkeypatch: pytest.MonkeyPatch) -> FakeBackend:
    from provisioning_app.provisioning.accounts import AccountAdministration
    from provisioning_app.provisioning.job_ledger import JobLedger
    from provisioning_app.provisioning.saga import ProvisioningSaga
    from provisioning_app.web.app import create_app
    from provisioning_app.web.core.authorization import AuthorizationResolver
    from provisioning_app.web.routers import admin, auth, university
    from provisioning_fakes import InMemoryCredentialStore, InMemoryRepository

    monkeypatch.setenv("PROVISIONING_ENV", "dev")
    monkeypatch.setenv("PROVISIONING_CREDENTIAL_STORE", "local")
    repo = InMemoryRepository()
    store = InMemoryCredentialStore()

    monkeypatch.setattr(services, "get_resolver", lambda: AuthorizationResolver(repo, store))
    monkeypatch.setattr(auth, "get_resolver", lambda: AuthorizationResolver(repo, store))
    monkeypatch.setattr(auth, "get_credential_store", lambda: store)
    monkeypatch.setattr(university, "get_repo", lambda: repo)
    monkeypatch.setattr(university, "get_job_ledger", lambda: JobLedger(repo))
    monkeypatch.setattr(
        university,
        "get_saga",
        lambda: ProvisioningSaga(repo=repo, credential_store=store, secret_generator=lambda length: "Tmp#Secret12"),
    )
    monkeypatch.setattr(admin, "get_account_admin", lambda: AccountAdministration(repo, store))
    return FakeBackend(client=TestClient(create_app()), repo=repo, store=store)
