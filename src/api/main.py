"""FlowWatch FastAPI application entry point.

Configures the FastAPI app with:
- Lifespan events for database, cache and HTTP connections
- The flow alert scheduler (and optionally its interval loop)
- Health and operator alert routes
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from src.api.routes import alerts, health
from src.api.version import API_VERSION
from src.core.config import get_settings
from src.core.database import create_engine
from src.core.redis import create_redis_client, verify_redis_connectivity
from src.monitoring.errors import ConfigurationError
from src.monitoring.metrics import RunHistory
from src.monitoring.worker import create_scheduler, run_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: open database, Redis and HTTP clients, build the scheduler
    and optionally start the interval loop.
    On shutdown: stop the loop and close all connections.
    """
    settings = get_settings()

    # -- PostgreSQL ---
    engine, session_factory = create_engine(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    logger.info("PostgreSQL connection pool initialized")

    # -- Redis ---
    redis_client = create_redis_client(settings)
    app.state.redis_client = redis_client
    if await verify_redis_connectivity(redis_client):
        logger.info("Redis connection verified")
    else:
        logger.warning("Redis is not reachable; starting in degraded mode")

    # -- Scheduler ---
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.http_client = http_client
    app.state.run_history = RunHistory()
    app.state.run_lock = asyncio.Lock()
    try:
        app.state.scheduler = create_scheduler(
            settings, session_factory, redis_client, http_client, history=app.state.run_history
        )
    except ConfigurationError as exc:
        logger.error("Flow alert scheduler not configured: %s", exc)
        app.state.scheduler = None

    # -- Alert worker ---
    shutdown_event = asyncio.Event()
    app.state.worker_shutdown = shutdown_event
    worker_task: asyncio.Task[None] | None = None
    if settings.alert_worker_enabled and app.state.scheduler is not None:
        worker_task = asyncio.create_task(
            run_worker(
                app.state.scheduler,
                settings.check_interval_minutes,
                settings.timezone,
                shutdown_event,
                run_lock=app.state.run_lock,
            )
        )
        logger.info("Started flow alert worker")
    app.state.worker_task = worker_task

    yield

    # -- Shutdown ---
    shutdown_event.set()
    if worker_task is not None:
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)
        logger.info("Flow alert worker stopped")

    await http_client.aclose()
    await redis_client.aclose()
    await engine.dispose()
    logger.info("All connections closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="River flow threshold alerts for favorited reaches",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(alerts.router)

    return app


app = create_app()
