from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request

from provisioning_app.core.defaults import DEFAULT_CSP_POLICY
from provisioning_app.core.env import PROVISIONING_SECURITY_HEADERS_ENABLED, get_env_bool
from provisioning_app.infrastructure.local_db_bootstrap import ensure_local_db_ready
from provisioning_app.logging import setup_app_logging
from provisioning_app.web.http.exception_handlers import error_response_for, register_exception_handlers
from provisioning_app.web.routers import router as api_router
from provisioning_app.web.services import get_config, get_credential_store, get_repo

LOGGER = logging.getLogger(__name__)
PERF_LOGGER = logging.getLogger("provisioning_app.perf")


def _route_path_label(request: Request) -> str:
    route = request.scope.get("route")
    route_path = str(getattr(route, "path", "") or "").strip()
    if route_path:
        return route_path
    return str(request.url.path or "/")


def create_app() -> FastAPI:
    setup_app_logging()
    config = get_config()
    security_headers_enabled = get_env_bool(PROVISIONING_SECURITY_HEADERS_ENABLED, default=True)

    @asynccontextmanager
    async def _app_lifespan(_app: FastAPI):
        ensure_local_db_ready(get_config())
        LOGGER.info(
            "Provisioning service started. env=%s mode=%s credential_store=%s",
            config.env,
            "local" if config.use_local_db else "databricks",
            config.credential_store_mode,
            extra={"event": "app_started", "env": config.env},
        )
        try:
            yield
        finally:
            get_repo.cache_clear()
            if get_credential_store.cache_info().currsize:
                try:
                    get_credential_store().close()
                except Exception:
                    LOGGER.warning("Failed to close credential store cleanly.", exc_info=True)
                finally:
                    get_credential_store.cache_clear()

    app = FastAPI(title="Identity Provisioning", lifespan=_app_lifespan)

    if security_headers_enabled:

        @app.middleware("http")
        async def _security_headers_middleware(request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
            response.headers.setdefault("Content-Security-Policy", DEFAULT_CSP_POLICY)
            if not config.is_dev_env:
                response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
            return response

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        request_id = str(request.headers.get("x-request-id", "")).strip()[:64] or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        started = time.perf_counter()
        status_code = 500
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                response = error_response_for(request, exc)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            PERF_LOGGER.debug(
                "request id=%s method=%s path=%s status=%s total_ms=%.2f",
                request_id,
                request.method,
                _route_path_label(request),
                status_code,
                (time.perf_counter() - started) * 1000.0,
                extra={
                    "event": "request_finished",
                    "request_id": request_id,
                    "status_code": status_code,
                    "path": _route_path_label(request),
                },
            )

    register_exception_handlers(app)
    app.include_router(api_router)
    return app
