from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from provisioning_app.web.core.authorization import Unauthorized
from provisioning_app.infrastructure.credential_store import CredentialStoreError
from provisioning_app.web.http.errors import ERROR_CODE_CREDENTIAL_STORE_UNAVAILABLE, ERROR_CODE_UNAUTHORIZED, ApiError
from provisioning_app.web.routers.common import body_text, read_json_body
from provisioning_app.web.security.rbac import require_role
from provisioning_app.web.services import CALLER_STATE_KEY, get_credential_store, get_resolver

router = APIRouter(prefix="/api/auth")
LOGGER = logging.getLogger(__name__)


@router.post("/token")
async def issue_token(request: Request):
    body = await read_json_body(request)
    email = body_text(body, "email").lower()
    password = str(body.get("password") or "")
    if not email or not password:
        raise ValueError("Email and password are required.")
    token = get_credential_store().sign_in(email=email, secret=password)
    LOGGER.info("Sign-in succeeded. email=%s", email, extra={"event": "auth_sign_in", "email": email})
    return JSONResponse({"access_token": token, "token_type": "bearer"})


@router.get("/me")
@require_role()
async def current_caller(request: Request):
    caller = getattr(request.state, CALLER_STATE_KEY)
    return JSONResponse({"user": caller.as_payload()})


@router.post("/ensure-profile")
async def ensure_profile(request: Request):
    body = await read_json_body(request)
    result = get_resolver().reconcile(
        request.headers.get("authorization"),
        full_name=body_text(body, "full_name"),
    )
    if isinstance(result, Unauthorized):
        raise ApiError(status_code=401, code=ERROR_CODE_UNAUTHORIZED, message=result.reason)
    return JSONResponse({"user": result.as_payload(), "persisted": result.persisted})


@router.post("/check-email")
async def check_email(request: Request):
    body = await read_json_body(request)
    email = body_text(body, "email").lower()
    if not email:
        raise ValueError("Email is required.")
    store = get_credential_store()
    if not store.elevated:
        raise ApiError(
            status_code=503,
            code=ERROR_CODE_CREDENTIAL_STORE_UNAVAILABLE,
            message="Credential store service key is not configured.",
        )
    try:
        identity = store.find_identity_by_email(email)
    except CredentialStoreError:
        LOGGER.warning(
            "Email lookup failed. email=%s",
            email,
            exc_info=True,
            extra={"event": "auth_email_lookup_failed", "email": email},
        )
        return JSONResponse({"exists": False, "message": "Unable to verify email existence"})
    exists = identity is not None
    return JSONResponse({"exists": exists, "message": "Email already exists" if exists else "Email is available"})
