from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from provisioning_app.core.security import ADMIN_PORTAL_ROLES
from provisioning_app.web.routers.common import body_text, parse_limit, read_json_body
from provisioning_app.web.security.rbac import require_role
from provisioning_app.web.services import CALLER_STATE_KEY, get_account_admin

router = APIRouter(prefix="/api/admin")


@router.get("/users")
@require_role(*ADMIN_PORTAL_ROLES)
async def list_users(request: Request, role: str = "", limit: int = 200):
    items = get_account_admin().list_accounts(role=role, limit=parse_limit(limit, default=200, maximum=500))
    return JSONResponse({"items": items})


@router.post("/users")
@require_role(*ADMIN_PORTAL_ROLES)
async def create_user(request: Request):
    caller = getattr(request.state, CALLER_STATE_KEY)
    body = await read_json_body(request)
    created = get_account_admin().create_account(
        caller,
        email=body_text(body, "email"),
        password=str(body.get("password") or ""),
        full_name=body_text(body, "full_name"),
        role=body_text(body, "role"),
        organization_name=body_text(body, "organization_name"),
    )
    return JSONResponse(created, status_code=201)


@router.put("/users/{identity_id}")
@require_role(*ADMIN_PORTAL_ROLES)
async def update_user(request: Request, identity_id: str):
    caller = getattr(request.state, CALLER_STATE_KEY)
    body = await read_json_body(request)
    user = get_account_admin().update_account(
        caller,
        identity_id,
        full_name=body_text(body, "full_name"),
        role=body_text(body, "role"),
    )
    return JSONResponse({"user": user})


@router.delete("/users/{identity_id}")
@require_role(*ADMIN_PORTAL_ROLES)
async def delete_user(request: Request, identity_id: str):
    caller = getattr(request.state, CALLER_STATE_KEY)
    get_account_admin().delete_account(caller, identity_id)
    return JSONResponse({"ok": True, "identity_id": identity_id})


@router.post("/users/{identity_id}/deactivate")
@require_role(*ADMIN_PORTAL_ROLES)
async def deactivate_user(request: Request, identity_id: str):
    caller = getattr(request.state, CALLER_STATE_KEY)
    return JSONResponse({"user": get_account_admin().deactivate_account(caller, identity_id)})


@router.post("/users/{identity_id}/activate")
@require_role(*ADMIN_PORTAL_ROLES)
async def activate_user(request: Request, identity_id: str):
    caller = getattr(request.state, CALLER_STATE_KEY)
    return JSONResponse({"user": get_account_admin().activate_account(caller, identity_id)})


@router.get("/logs")
@require_role(*ADMIN_PORTAL_ROLES)
async def list_admin_logs(request: Request, limit: int = 100):
    items = get_account_admin().list_audit_log(limit=parse_limit(limit, default=100, maximum=500))
    return JSONResponse({"items": items})
