"""Return-period cache with freshness window and stale fallback.

``ReturnPeriodCache.get`` serves a cached table while it is fresh, refetches
once it is older than the freshness window, and falls back to the last
known table (flagged ``stale``) when the refresh fails. With nothing cached
it returns None, or re-raises the fetch error for callers that need to tell
an outage from a reach the provider has no data for. Concurrent misses
for the same reach share a single upstream fetch.

The durable store keeps entries for a retention window longer than the
freshness window so that a stale table survives provider outages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from datetime import UTC, datetime, timedelta
from typing import Generic, Protocol, TypeVar

import redis.asyncio as aioredis

from src.core.redis import get_json, return_period_key, set_json
from src.monitoring.types import ReturnPeriodTable

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS = timedelta(days=7)
DEFAULT_RETENTION = timedelta(days=30)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SingleFlight(Generic[K, T]):
    """Coalesces concurrent calls for the same key into one in-flight call.

    Callers arriving while a call for their key is running await the same
    future. The entry is removed once the call settles, so the next caller
    starts a fresh call.
    """

    def __init__(self) -> None:
        self._inflight: dict[K, asyncio.Future[T]] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    async def do(self, key: K, fn: Callable[[], Awaitable[T]]) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieve so an unawaited failure is not reported by the loop.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)


class ReturnPeriodFetcher(Protocol):
    async def fetch_return_period(self, reach_id: str) -> ReturnPeriodTable | None: ...


class ReturnPeriodStore(Protocol):
    async def load(self, reach_id: str) -> ReturnPeriodTable | None: ...

    async def save(self, table: ReturnPeriodTable) -> None: ...


class InMemoryReturnPeriodStore:
    def __init__(self) -> None:
        self._tables: dict[str, ReturnPeriodTable] = {}

    async def load(self, reach_id: str) -> ReturnPeriodTable | None:
        return self._tables.get(reach_id)

    async def save(self, table: ReturnPeriodTable) -> None:
        self._tables[table.reach_id] = table


class RedisReturnPeriodStore:
    """Tables persisted as ``{reachId, unit, flowByYear, cachedAt}`` JSON."""

    def __init__(self, client: aioredis.Redis, retention: timedelta = DEFAULT_RETENTION) -> None:
        self._client = client
        self._retention = retention

    async def load(self, reach_id: str) -> ReturnPeriodTable | None:
        data = await get_json(self._client, return_period_key(reach_id))
        if data is None:
            return None
        try:
            return ReturnPeriodTable.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed cached return periods for reach %s", reach_id)
            return None

    async def save(self, table: ReturnPeriodTable) -> None:
        await set_json(
            self._client,
            return_period_key(table.reach_id),
            table.to_dict(),
            self._retention,
        )


class ReturnPeriodCache:
    """Get-or-fetch cache for return-period tables.

    Args:
        fetcher: Return-period collaborator.
        store: Backing store; in memory by default.
        freshness: Age after which a table is refetched.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        fetcher: ReturnPeriodFetcher,
        store: ReturnPeriodStore | None = None,
        *,
        freshness: timedelta = DEFAULT_FRESHNESS,
        clock: Clock = utc_now,
    ) -> None:
        self._fetcher = fetcher
        self._store: ReturnPeriodStore = store or InMemoryReturnPeriodStore()
        self._freshness = freshness
        self._clock = clock
        self._flight: SingleFlight[str, ReturnPeriodTable | None] = SingleFlight()
        self.fetch_count = 0
        self.stale_served = 0

    def is_fresh(self, table: ReturnPeriodTable) -> bool:
        return self._clock() - table.retrieved_at < self._freshness

    async def get(self, reach_id: str, *, raise_errors: bool = False) -> ReturnPeriodTable | None:
        """Return a table for ``reach_id``.

        Args:
            reach_id: Reach to look up.
            raise_errors: Propagate the fetch error when the refresh fails
                and nothing is cached, instead of returning None.

        Returns:
            A fresh table, a stale table flagged ``stale=True`` when the
            refresh failed, or None when nothing is available.
        """
        cached = await self._load(reach_id)
        if cached is not None and self.is_fresh(cached):
            return cached
        try:
            return await self._flight.do(reach_id, lambda: self._refresh(reach_id))
        except Exception as exc:
            if raise_errors:
                raise
            logger.warning("Return-period fetch failed for reach %s with nothing cached: %s", reach_id, exc)
            return None

    async def _refresh(self, reach_id: str) -> ReturnPeriodTable | None:
        # Another caller may have refreshed while this one waited on the store.
        cached = await self._load(reach_id)
        if cached is not None and self.is_fresh(cached):
            return cached

        self.fetch_count += 1
        try:
            fetched = await self._fetcher.fetch_return_period(reach_id)
        except Exception as exc:
            if cached is None:
                raise
            logger.warning("Return-period refresh failed for reach %s: %s", reach_id, exc)
            fetched = None

        if fetched is not None:
            table = ReturnPeriodTable(
                reach_id=reach_id,
                unit=fetched.unit,
                flow_by_year=dict(fetched.flow_by_year),
                retrieved_at=self._clock(),
            )
            if not table.is_monotonic():
                logger.warning("Return periods for reach %s are not monotonic", reach_id)
            try:
                await self._store.save(table)
            except Exception:
                logger.exception("Failed to persist return periods for reach %s", reach_id)
            return table

        if cached is None:
            return None

        self.stale_served += 1
        logger.warning(
            "Serving STALE return periods for reach %s (retrieved %s)",
            reach_id,
            cached.retrieved_at.isoformat(),
        )
        return cached.as_stale()

    async def _load(self, reach_id: str) -> ReturnPeriodTable | None:
        try:
            return await self._store.load(reach_id)
        except Exception:
            logger.exception("Return-period store read failed for reach %s", reach_id)
            return None
