"""Redis connection management and key layout.

Provides async Redis client creation, health checking and the key
builders used by the durable return-period cache and the repeat-alert
watermarks.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

import redis.asyncio as aioredis

from src.core.config import Settings

logger = logging.getLogger(__name__)

# -- Key prefixes --------------------------------------------------------------

RETURN_PERIOD_PREFIX = "flowwatch:return_period"
COOLDOWN_PREFIX = "flowwatch:alert_watermark"


def return_period_key(reach_id: str) -> str:
    return f"{RETURN_PERIOD_PREFIX}:{reach_id}"


def cooldown_key(user_id: str, reach_id: str) -> str:
    return f"{COOLDOWN_PREFIX}:{user_id}:{reach_id}"


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Create an async Redis client.

    Args:
        settings: Application settings with Redis connection details.

    Returns:
        An async Redis client instance.
    """
    client: aioredis.Redis = aioredis.from_url(
        settings.redis_url or f"redis://{settings.redis_host}:{settings.redis_port}/0",
        decode_responses=True,
        socket_timeout=settings.http_timeout_seconds,
    )
    return client


async def verify_redis_connectivity(client: aioredis.Redis) -> bool:
    """Return True if Redis answers PING."""
    try:
        return bool(await client.ping())
    except (aioredis.RedisError, ConnectionError, OSError) as exc:
        logger.warning("Redis health check failed: %s", exc)
        return False


# -- JSON helpers --------------------------------------------------------------


async def get_json(client: aioredis.Redis, key: str) -> dict[str, Any] | None:
    """Read a JSON document stored under ``key``.

    Returns:
        The decoded mapping, or None if the key is missing or unreadable.
    """
    raw = await client.get(key)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding undecodable Redis value at %s", key)
        return None
    return data if isinstance(data, dict) else None


async def set_json(
    client: aioredis.Redis,
    key: str,
    data: dict[str, Any],
    ttl: timedelta,
) -> None:
    """Store a JSON document under ``key`` with an expiry."""
    await client.setex(key, int(ttl.total_seconds()), json.dumps(data))
