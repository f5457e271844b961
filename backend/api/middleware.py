"""
API middleware stack.

- Request ID injection (X-Request-ID header)
- Structured request/response logging
- Exception handlers (rate limiting, not found, unhandled)
- CORS configuration
"""
from __future__ import annotations

import math
import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shared.config import Environment, get_settings
from shared.errors import RateLimited
from shared.utils.logging import get_logger

logger = get_logger(__name__)

UNLOGGED_PATHS = ("/health", "/metrics")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Injects a unique X-Request-ID header into every request/response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs structured request/response information."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in UNLOGGED_PATHS:
            return await call_next(request)

        start = time.monotonic()
        request_id = getattr(request.state, "request_id", "unknown")
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "http_request_error",
                method=request.method,
                path=path,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                request_id=request_id,
                error=str(exc),
                exc_info=True,
            )
            raise

        logger.info(
            "http_request",
            method=request.method,
            path=path,
            status=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            request_id=request_id,
            client=request.client.host if request.client else "unknown",
        )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
        retry_after = max(1, math.ceil(exc.retry_after_s))
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": str(exc),
                "retry_after_s": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            request_id=request_id,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        detail = getattr(exc, "detail", None)
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": detail if isinstance(detail, str) and detail != "Not Found" else "Resource not found",
            },
        )


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware."""
    settings = get_settings()
    origins = settings.cors_origins
    if settings.environment == Environment.PRODUCTION and origins == ["*"]:
        logger.warning("cors_wildcard_in_production")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Request-ID", "Cache-Control", "X-Freshness", "Retry-After"],
    )


def setup_middleware(app: FastAPI) -> None:
    """Apply all middleware to the FastAPI app. The last one added runs outermost."""
    app.add_middleware(RequestLoggingMiddleware)
    # Request ID wraps logging so the log line carries it.
    app.add_middleware(RequestIDMiddleware)
    # CORS outermost for preflight.
    setup_cors(app)
    setup_exception_handlers(app)
