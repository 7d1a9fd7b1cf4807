"""Health check endpoint.

Reports PostgreSQL and Redis reachability and whether the flow alert
scheduler could be built from the current settings.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from src.api.version import API_VERSION
from src.core.database import verify_database_connectivity
from src.core.redis import verify_redis_connectivity

router = APIRouter(tags=["health"])


def overall_status(services: dict[str, str]) -> str:
    down = sum(1 for state in services.values() if state == "down")
    if down == 0:
        return "healthy"
    if down < len(services):
        return "degraded"
    return "unhealthy"


@router.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Check the backing services.

    Returns:
        ``status`` (healthy, degraded or unhealthy), ``services`` with
        ``postgres`` and ``redis`` each up or down, ``scheduler``
        (configured or unconfigured), ``version`` and ``timestamp``.
    """
    state = request.app.state
    postgres_up = await verify_database_connectivity(state.db_session_factory)
    redis_up = await verify_redis_connectivity(state.redis_client)
    services = {
        "postgres": "up" if postgres_up else "down",
        "redis": "up" if redis_up else "down",
    }
    return {
        "status": overall_status(services),
        "services": services,
        "scheduler": "configured" if getattr(state, "scheduler", None) is not None else "unconfigured",
        "version": API_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }
