"""Request tracking and error mapping for the HTTP host.

Every response carries ``X-Request-ID`` and ``X-Process-Time``. Engine
errors become ``{"error": ..., "request_id": ...}`` bodies with the
status code the exception class declares.
"""

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.exceptions import WorkflowEngineError

logger = logging.getLogger(__name__)

# Polled by supervisors; not worth a log line each
QUIET_PATHS = frozenset({"/api/health", "/api/health/"})


def error_body(request: Request, message: str) -> dict:
    return {"error": message, "request_id": getattr(request.state, "request_id", None)}


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Tag requests with an id, time them and log one line per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} crashed: {e}", exc_info=True)
            message = "Internal server error" if get_settings().is_production else (str(e) or "Internal server error")
            response = JSONResponse(status_code=500, content=error_body(request, message))

        elapsed_ms = (time.monotonic() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"

        if request.url.path not in QUIET_PATHS:
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f}ms)",
                extra={"request_id": request_id},
            )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Map engine and validation errors to JSON responses."""

    @app.exception_handler(WorkflowEngineError)
    async def engine_error_handler(request: Request, exc: WorkflowEngineError):
        return JSONResponse(status_code=exc.status_code, content=error_body(request, exc.message))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content=error_body(request, str(exc)))
