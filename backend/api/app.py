"""
FastAPI application factory for the fixture calendar API.

Creates the app with:
- REST routes (fixtures, standings, force refresh)
- Middleware stack
- Health and metrics endpoints
- Lifespan management: runtime wiring plus the in-process refresh scheduler
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from scheduler.runtime import Runtime

from api.dependencies import get_controller, init_dependencies, reset_dependencies
from api.middleware import setup_middleware
from api.rate_limit import SlidingWindowLimiter
from api.routes.fixtures import router as fixtures_router
from api.routes.standings import router as standings_router

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing; dependencies are initialized by the caller."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Startup connects storage and sources and starts the refresh scheduler;
    shutdown stops the scheduler, cancels in-flight refreshes and disconnects.
    """
    settings = get_settings()
    setup_logging("api")

    runtime = Runtime(settings)
    await runtime.start()
    limiter = SlidingWindowLimiter.from_settings(settings)
    init_dependencies(runtime.controller, limiter)

    scheduler_task = asyncio.create_task(runtime.scheduler.run(), name="refresh-scheduler")

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        resources=runtime.controller.resources,
    )

    yield

    runtime.scheduler.request_shutdown()
    scheduler_task.cancel()
    try:
        await scheduler_task
    except asyncio.CancelledError:
        pass

    await runtime.close()
    await limiter.close()
    reset_dependencies()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without storage."""
    settings = get_settings()

    app = FastAPI(
        title="Fixture Calendar API",
        description="Reconciled football fixtures with stale-while-revalidate caching",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)
    app.include_router(fixtures_router)
    app.include_router(standings_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, Any]:
        try:
            resources = get_controller().resources
        except RuntimeError:
            resources = []
        return {"status": "ok", "service": "api", "resources": resources}

    if settings.metrics_enabled:

        @app.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# For running with uvicorn directly
app = create_app()
