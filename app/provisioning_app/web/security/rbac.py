"""
Role-based access checks for API endpoints.

Handlers declare the roles they accept; the caller is resolved once per
request and cached on ``request.state`` for the handler to reuse.
"""

from collections.abc import Callable
from functools import wraps

from fastapi import Request

from provisioning_app.web.core.authorization import Authorized, Unauthorized
from provisioning_app.web.http.errors import ERROR_CODE_FORBIDDEN, ERROR_CODE_UNAUTHORIZED, ApiError
from provisioning_app.web.services import get_caller


def require_role(*roles: str) -> Callable:
    """
    Decorator to enforce role checks on API endpoints.

    Usage:
        @router.post("/university/bulk-jobs")
        @require_role("university")
        async def create_bulk_job(request: Request):
            caller = request.state.caller
            ...

    With no roles, any authenticated caller is accepted.

    Raises:
        ApiError: 401 if the caller cannot be authenticated, 403 if the role does not match
    """
    allowed = tuple(role.strip().lower() for role in roles)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = kwargs.get("request")
            if request is None:
                request = next((arg for arg in args if isinstance(arg, Request)), None)
            if request is None:
                raise RuntimeError("Request object not found - cannot verify role")

            caller = get_caller(request)
            if isinstance(caller, Unauthorized):
                raise ApiError(status_code=401, code=ERROR_CODE_UNAUTHORIZED, message=caller.reason)
            if allowed and caller.role not in allowed:
                raise ApiError(
                    status_code=403,
                    code=ERROR_CODE_FORBIDDEN,
                    message=f"Insufficient permissions: one of {', '.join(allowed)} required",
                )
            return await func(*args, **kwargs)

        return wrapper

    return decorator


def check_org_scope(caller: Authorized, organization_id: str) -> None:
    """
    Verify the caller may act for the given organization.

    Raises:
        ApiError: 403 if the caller's organization differs (admins excepted)
    """
    if caller.is_admin:
        return
    if not caller.organization_id or caller.organization_id != str(organization_id or "").strip():
        raise ApiError(
            status_code=403,
            code=ERROR_CODE_FORBIDDEN,
            message="Organization does not match the signed-in account.",
        )
