"""Tests for the health check endpoint."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError


@pytest.mark.asyncio
async def test_health_all_services_up(client: AsyncClient, mock_db_session: AsyncMock) -> None:
    """Health endpoint should return 'healthy' when all services are up."""
    mock_result = MagicMock()
    mock_result.scalar.return_value = 1
    mock_db_session.execute.return_value = mock_result

    response = await client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"] == {"postgres": "up", "redis": "up"}
    assert data["scheduler"] == "unconfigured"
    assert data["version"] == "1.0.0"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_degraded_when_redis_down(
    client: AsyncClient,
    mock_redis_client: AsyncMock,
) -> None:
    """Health endpoint should return 'degraded' when one service is down."""
    mock_redis_client.ping.side_effect = ConnectionError("Redis down")

    response = await client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "degraded"
    assert data["services"]["redis"] == "down"
    assert data["services"]["postgres"] == "up"


@pytest.mark.asyncio
async def test_health_unhealthy_when_all_down(
    client: AsyncClient,
    mock_db_session: AsyncMock,
    mock_redis_client: AsyncMock,
) -> None:
    """Health endpoint should return 'unhealthy' when all services are down."""
    mock_db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
    mock_redis_client.ping.side_effect = ConnectionError("Redis down")

    response = await client.get("/api/v1/health")

    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["services"] == {"postgres": "down", "redis": "down"}


@pytest.mark.asyncio
async def test_health_reports_configured_scheduler(client: AsyncClient, test_app: Any) -> None:
    test_app.state.scheduler = MagicMock()

    response = await client.get("/api/v1/health")

    assert response.json()["scheduler"] == "configured"
