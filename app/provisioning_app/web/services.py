from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from provisioning_app.backend.repository import ProvisioningRepository
from provisioning_app.core.config import AppConfig
from provisioning_app.core.defaults import CREDENTIAL_STORE_LOCAL
from provisioning_app.infrastructure.credential_store import CredentialStore, HttpCredentialStore, LocalCredentialStore
from provisioning_app.provisioning.accounts import AccountAdministration
from provisioning_app.provisioning.job_ledger import JobLedger
from provisioning_app.provisioning.saga import ProvisioningSaga
from provisioning_app.web.core.authorization import Authorized, AuthorizationResolver, Unauthorized

CALLER_STATE_KEY = "caller"


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig.from_env()


@lru_cache(maxsize=1)
def get_repo() -> ProvisioningRepository:
    return ProvisioningRepository(get_config())


@lru_cache(maxsize=1)
def get_credential_store() -> CredentialStore:
    config = get_config()
    if config.credential_store_mode == CREDENTIAL_STORE_LOCAL:
        return LocalCredentialStore(config.local_identity_db_path, elevated=config.local_store_elevated)
    return HttpCredentialStore(
        base_url=config.auth_url,
        service_key=config.auth_service_key,
        anon_key=config.auth_anon_key,
        timeout=float(config.auth_timeout_sec),
    )


def get_resolver() -> AuthorizationResolver:
    return AuthorizationResolver(get_repo(), get_credential_store())


def get_job_ledger() -> JobLedger:
    return JobLedger(get_repo())


def get_saga() -> ProvisioningSaga:
    return ProvisioningSaga(
        repo=get_repo(),
        credential_store=get_credential_store(),
        secret_length=get_config().temp_secret_length,
    )


def get_account_admin() -> AccountAdministration:
    return AccountAdministration(get_repo(), get_credential_store())


def get_caller(request: Request) -> Authorized | Unauthorized:
    cached = getattr(request.state, CALLER_STATE_KEY, None)
    if cached is not None:
        return cached
    caller = get_resolver().resolve(request.headers.get("authorization"))
    setattr(request.state, CALLER_STATE_KEY, caller)
    return caller
