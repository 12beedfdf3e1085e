"""
IQPS API - FastAPI backend for question paper search and moderation
"""

from __future__ import annotations

import time

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from iqps.api.responses import failure
from iqps.api.routes import admin, papers
from iqps.config import IqpsSettings
from iqps.domain.errors import (
    AuthError,
    ConfigError,
    ConsistencyError,
    IqpsError,
    NotFoundError,
    SearchUnavailableError,
    StoreBusyError,
    ValidationError,
)
from iqps.utils.logging_config import LogFiles, Logger, clear_trace_id, set_trace_id

load_dotenv(find_dotenv(usecwd=True), override=False)

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthError, 401),
    (NotFoundError, 404),
    (StoreBusyError, 503),
    (SearchUnavailableError, 503),
    (ConsistencyError, 500),
    (ConfigError, 500),
)


def status_for(exc: IqpsError) -> int:
    for kind, status in _STATUS_BY_ERROR:
        if isinstance(exc, kind):
            return status
    return 500


def create_app(cors_allowed_origins=None) -> FastAPI:
    app = FastAPI(
        title="IQPS API",
        description="Search and moderation of university question papers",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            Logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)",
                file=LogFiles.API,
            )
            response.headers["x-trace-id"] = trace_id
            return response
        finally:
            clear_trace_id()

    @app.exception_handler(IqpsError)
    async def handle_iqps_error(request: Request, exc: IqpsError):
        status = status_for(exc)
        if exc.internal:
            Logger.exception(f"{request.method} {request.url.path} failed", exc, file=LogFiles.ERROR)
        else:
            Logger.warning(f"{request.method} {request.url.path}: {exc}", file=LogFiles.API)
        response = failure(exc.public_message, status)
        if exc.retryable:
            response.headers["Retry-After"] = "1"
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {where}: {first.get('msg', 'bad value')}" if where else "Invalid request."
        return failure(message, 400)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return failure(str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        Logger.exception(f"{request.method} {request.url.path} crashed", exc, file=LogFiles.ERROR)
        return failure(IqpsError().public_message, 500)

    app.include_router(papers.router, tags=["Papers"])
    app.include_router(admin.router, tags=["Admin"])
    return app


settings = IqpsSettings.from_env()
app = create_app(settings.cors_allowed_origins)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.server_port)
