from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from provisioning_app.web.http.errors import api_error_response, normalize_exception

LOGGER = logging.getLogger(__name__)


def error_response_for(request: Request, exc: Exception):
    spec = normalize_exception(exc)
    log_fn = LOGGER.warning if spec.status_code < 500 else LOGGER.exception
    log_fn(
        "API request failed. code=%s status=%s path=%s method=%s",
        spec.code,
        spec.status_code,
        request.url.path,
        request.method,
        extra={
            "event": "api_error",
            "request_id": str(getattr(request.state, "request_id", "-")),
            "error_code": spec.code,
            "status_code": int(spec.status_code),
            "method": request.method,
            "path": str(request.url.path),
        },
    )
    return api_error_response(
        request,
        status_code=spec.status_code,
        code=spec.code,
        message=spec.message,
        details=spec.details,
        summary=spec.summary,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _request_validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response_for(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_response_for(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return error_response_for(request, exc)
