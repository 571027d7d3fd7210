import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from officeflow.db import SessionLocal, engine
from officeflow.errors import ApiError, error_response
from officeflow.logging_utils import setup_json_logging
from officeflow.routers import admin, attendance
from officeflow.services.realtime import build_publisher
from officeflow.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from officeflow.settings import Settings, get_cors_origins, get_settings

logger = logging.getLogger("officeflow.request")
startup_logger = logging.getLogger("officeflow.startup")

HTTP_ERROR_CODES: dict[int, tuple[str, str]] = {
    401: ("INVALID_TOKEN", "authorization"),
    403: ("FORBIDDEN", "authorization"),
    404: ("NOT_FOUND", "not_found"),
    405: ("METHOD_NOT_ALLOWED", "validation"),
}


def _request_context(request: Request) -> dict[str, Any]:
    state = request.state
    return {
        "request_id": getattr(state, "request_id", "unknown"),
        "path": request.url.path,
        "method": request.method,
        "actor": getattr(state, "actor", "anonymous"),
        "actor_id": getattr(state, "actor_id", None),
        "employee_id": getattr(state, "employee_id", None),
        "record_id": getattr(state, "record_id", None),
    }


async def _check_schema(app: FastAPI, settings: Settings) -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError("Runtime schema guard failed: " + "; ".join(result.issues))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    await _check_schema(app, settings)
    startup_logger.info(
        "realtime_publisher_ready",
        extra={"backend": settings.realtime_backend, "channel": settings.realtime_supervisor_channel},
    )
    try:
        yield
    finally:
        app.state.publisher.shutdown()


def _install_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-Id") or str(uuid4())
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-Id"] = request.state.request_id
            return response
        finally:
            logger.info(
                "request_complete",
                extra={
                    **_request_context(request),
                    "status_code": status_code,
                    "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message, kind=exc.kind)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        code, kind = HTTP_ERROR_CODES.get(exc.status_code, ("HTTP_ERROR", "internal"))
        return error_response(
            request,
            status_code=exc.status_code,
            code=code,
            message=str(exc.detail) if exc.detail else "Request failed.",
            kind=kind,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(
            request,
            status_code=422,
            code="VALIDATION_ERROR",
            message=str(exc.errors()),
            kind="validation",
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", extra=_request_context(request))
        return error_response(request, status_code=500, code="INTERNAL_ERROR", message="Unexpected server error.")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_json_logging(level=settings.log_level, service=settings.app_name)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.publisher = build_publisher(settings, session_factory=SessionLocal)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_request_logging(app)
    _install_error_handlers(app)
    app.include_router(attendance.router)
    app.include_router(admin.router)

    @app.get("/health")
    def health() -> dict[str, Any]:
        guard: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
        if guard is None:
            guard = SchemaGuardResult(
                ok=False,
                checked_at_utc=datetime.now(timezone.utc),
                issues=["SCHEMA_GUARD_NOT_RUN"],
            )
        return {
            "status": "ok",
            "schema_guard": guard.to_dict(),
            "realtime": {"backend": settings.realtime_backend, "channel": settings.realtime_supervisor_channel},
            "org_utc_offset_minutes": settings.org_utc_offset_minutes,
        }

    return app


app = create_app()
