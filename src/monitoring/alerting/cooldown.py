"""Repeat-alert cool-down keyed by (user, reach).

Keeps the category and time of the last alert sent for each pair. Within
the cool-down window a decision with the same category is suppressed; a
category change or an expired window lets the alert through and moves the
watermark. A zero window disables suppression entirely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis

from src.core.redis import cooldown_key, get_json, set_json
from src.monitoring.types import FlowCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Watermark:
    category: FlowCategory
    alerted_at: datetime


class WatermarkStore(Protocol):
    async def get(self, user_id: str, reach_id: str) -> Watermark | None: ...

    async def put(self, user_id: str, reach_id: str, mark: Watermark, ttl: timedelta) -> None: ...


class InMemoryWatermarkStore:
    """Process-local watermark store. Entries never expire on their own."""

    def __init__(self) -> None:
        self._marks: dict[tuple[str, str], Watermark] = {}

    async def get(self, user_id: str, reach_id: str) -> Watermark | None:
        return self._marks.get((user_id, reach_id))

    async def put(self, user_id: str, reach_id: str, mark: Watermark, ttl: timedelta) -> None:
        self._marks[(user_id, reach_id)] = mark


class RedisWatermarkStore:
    """Watermarks stored as JSON with a TTL equal to the cool-down window."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def get(self, user_id: str, reach_id: str) -> Watermark | None:
        data = await get_json(self._client, cooldown_key(user_id, reach_id))
        if data is None:
            return None
        try:
            return Watermark(
                category=FlowCategory(data["category"]),
                alerted_at=datetime.fromisoformat(data["alertedAt"]),
            )
        except (KeyError, ValueError):
            logger.warning("Ignoring malformed watermark for user=%s reach=%s", user_id, reach_id)
            return None

    async def put(self, user_id: str, reach_id: str, mark: Watermark, ttl: timedelta) -> None:
        await set_json(
            self._client,
            cooldown_key(user_id, reach_id),
            {"category": mark.category.value, "alertedAt": mark.alerted_at.isoformat()},
            ttl,
        )


class AlertCooldown:
    """Suppresses repeated alerts of the same category within a window."""

    def __init__(self, store: WatermarkStore, window: timedelta) -> None:
        self._store = store
        self._window = window

    @property
    def enabled(self) -> bool:
        return self._window > timedelta(0)

    async def should_suppress(
        self,
        user_id: str,
        reach_id: str,
        category: FlowCategory,
        now: datetime,
    ) -> bool:
        """Return True if an alert of ``category`` was already sent within the window."""
        if not self.enabled:
            return False
        mark = await self._store.get(user_id, reach_id)
        if mark is None or mark.category != category:
            return False
        return now - mark.alerted_at < self._window

    async def record(
        self,
        user_id: str,
        reach_id: str,
        category: FlowCategory,
        now: datetime,
    ) -> None:
        if not self.enabled:
            return
        await self._store.put(user_id, reach_id, Watermark(category, now), self._window)
