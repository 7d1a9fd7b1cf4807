"""Flow alert worker: wiring and the fixed-interval run loop.

``create_scheduler`` assembles a :class:`BatchScheduler` from settings and
the shared database, Redis and HTTP resources. ``run_worker`` runs it on
the configured interval until shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo

import httpx
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import Settings
from src.integrations.delivery import build_gateways
from src.integrations.nwps import NwmReturnPeriodClient, NwpsForecastClient
from src.monitoring.alerting.cooldown import AlertCooldown, RedisWatermarkStore
from src.monitoring.cache import RedisReturnPeriodStore, ReturnPeriodCache
from src.monitoring.errors import BatchAbortedError, ConfigurationError
from src.monitoring.metrics import RunHistory
from src.monitoring.notification import NotificationDispatcher
from src.monitoring.scheduler import BatchScheduler, next_run_time
from src.monitoring.store import SqlDeliveryLog, SqlUserStore

logger = logging.getLogger(__name__)


def create_scheduler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: aioredis.Redis,
    http_client: httpx.AsyncClient | None = None,
    history: RunHistory | None = None,
) -> BatchScheduler:
    """Build a scheduler backed by SQL, Redis and the HTTP collaborators.

    Raises:
        ConfigurationError: A delivery gateway or store cannot be initialised.
    """
    gateways = build_gateways(settings, client=http_client)
    cache = ReturnPeriodCache(
        NwmReturnPeriodClient.from_settings(settings, client=http_client),
        RedisReturnPeriodStore(redis_client, retention=settings.return_period_retention),
        freshness=settings.return_period_freshness,
    )
    cooldown = None
    if settings.alert_cooldown_minutes > 0:
        cooldown = AlertCooldown(RedisWatermarkStore(redis_client), settings.alert_cooldown)

    if settings.scale_factor != 1.0:
        logger.warning("Return-period thresholds scaled by 1/%s", settings.scale_factor)

    return BatchScheduler(
        SqlUserStore(session_factory),
        NwpsForecastClient.from_settings(settings, client=http_client),
        cache,
        NotificationDispatcher(gateways, SqlDeliveryLog(session_factory)),
        cooldown=cooldown,
        scale_factor=settings.scale_factor,
        concurrency=settings.batch_concurrency,
        deadline_seconds=settings.batch_deadline_seconds,
        timezone=settings.timezone,
        demo=settings.demo_mode,
        deep_link_scheme=settings.deep_link_scheme,
        history=history,
    )


async def run_worker(
    scheduler: BatchScheduler,
    interval_minutes: int,
    tz: tzinfo,
    shutdown_event: asyncio.Event | None = None,
    clock: Callable[[], datetime] | None = None,
    run_lock: asyncio.Lock | None = None,
) -> None:
    """Run the scheduler on interval boundaries until shutdown.

    A failed run is logged and the loop waits for the next boundary.
    ``run_lock`` is shared with manually triggered runs; a boundary that
    arrives while another run holds it is skipped.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()
    lock = run_lock or asyncio.Lock()
    now_fn = clock or (lambda: datetime.now(tz=UTC))
    logger.info(
        "Flow alert worker started (every %d min, %s)", interval_minutes, tz
    )

    while not shutdown_event.is_set():
        wake_at = next_run_time(now_fn(), interval_minutes, tz)
        delay = max(0.0, (wake_at - now_fn()).total_seconds())
        logger.debug("Next flow alert run at %s", wake_at.isoformat())
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
            break
        except TimeoutError:
            pass

        if lock.locked():
            logger.info("Skipping scheduled flow alert run; another run is in progress")
            continue
        try:
            async with lock:
                await scheduler.run_once()
        except asyncio.CancelledError:
            break
        except BatchAbortedError as exc:
            logger.error("Flow alert run aborted: %s", exc)
        except ConfigurationError:
            logger.exception("Flow alert run failed on configuration")
        except Exception:
            logger.exception("Flow alert run failed")

    logger.info("Flow alert worker stopped")
