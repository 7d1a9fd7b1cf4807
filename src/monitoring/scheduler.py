"""Batch scheduler for flow alerts.

One run enumerates notification-enabled users and their favorite reaches,
evaluates every (user, reach) pair with bounded concurrency under an
overall deadline, and dispatches the alerts that pass every gate. Failures
are isolated per pair; only a failure to load the recipient list aborts
the run.

Also provides interval alignment for the worker loop.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Protocol

from src.monitoring.alerting.cooldown import AlertCooldown
from src.monitoring.alerting.engine import (
    DEFAULT_EMERGENCY_CONDITIONS,
    REASON_COOLDOWN,
    DecisionContext,
    decide,
)
from src.monitoring.cache import Clock, ReturnPeriodCache, utc_now
from src.monitoring.classifier import classify
from src.monitoring.errors import BatchAbortedError, DataUnavailableError
from src.monitoring.metrics import BatchResult, RunCounters, RunHistory
from src.monitoring.notification import NotificationDispatcher
from src.monitoring.store import UserStore
from src.monitoring.types import (
    ALERTING_HORIZONS,
    AlertDecision,
    DeliveryResult,
    EmergencyCondition,
    Favorite,
    FlowObservation,
    FlowUnit,
    ForecastHorizon,
    Recipient,
    UserNotificationPreference,
)
from src.monitoring.units import convert

logger = logging.getLogger(__name__)


class ForecastSource(Protocol):
    async def fetch_streamflow_data(
        self,
        reach_id: str,
        include_forecast: bool = True,
        horizons: Sequence[ForecastHorizon] = ALERTING_HORIZONS,
    ) -> list[FlowObservation] | None: ...


# ── Pure helpers ─────────────────────────────────────────────────


def reduce_max_flow(
    observations: Sequence[FlowObservation],
    reach_id: str,
    horizons: Sequence[ForecastHorizon] = ALERTING_HORIZONS,
    now: datetime | None = None,
) -> FlowObservation:
    """Return the peak observation across ``horizons``.

    The first maximum wins on ties. NaN values are ignored. With nothing
    to compare the result is a zero flow, which classifies as no elevated
    signal.
    """
    candidates = [o for o in observations if o.horizon in horizons and not math.isnan(o.value)]
    if not candidates:
        return FlowObservation(
            reach_id=reach_id,
            value=0.0,
            unit=FlowUnit.CFS,
            horizon=ForecastHorizon.SHORT_RANGE,
            valid_at=now or utc_now(),
        )
    best = candidates[0]
    best_cfs = convert(best.value, best.unit, FlowUnit.CFS)
    for observation in candidates[1:]:
        value_cfs = convert(observation.value, observation.unit, FlowUnit.CFS)
        if value_cfs > best_cfs:
            best, best_cfs = observation, value_cfs
    return best


def current_observation(observations: Sequence[FlowObservation]) -> FlowObservation | None:
    """Earliest short-range point, i.e. current conditions."""
    short = [
        o
        for o in observations
        if o.horizon == ForecastHorizon.SHORT_RANGE and not math.isnan(o.value)
    ]
    if not short:
        return None
    return min(short, key=lambda o: o.valid_at)


def next_run_time(now: datetime, interval_minutes: int, tz: tzinfo) -> datetime:
    """Next run instant aligned to multiples of the interval since local midnight.

    Runs never cross local midnight without realigning, so a 25-minute
    interval restarts at 00:00 each day.
    """
    if interval_minutes < 1:
        raise ValueError("interval_minutes must be positive")
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    local = now.astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (local.replace(tzinfo=None) - midnight.replace(tzinfo=None)).total_seconds()
    step = interval_minutes * 60
    slots = int(elapsed // step) + 1
    naive_next = midnight.replace(tzinfo=None) + timedelta(seconds=slots * step)
    next_midnight = midnight.replace(tzinfo=None) + timedelta(days=1)
    if naive_next > next_midnight:
        naive_next = next_midnight
    return naive_next.replace(tzinfo=tz)


# ── Per-run forecast coalescing ──────────────────────────────────


class ForecastCoalescer:
    """Fetches each reach's forecast at most once per run."""

    def __init__(self, source: ForecastSource) -> None:
        self._source = source
        self._tasks: dict[str, asyncio.Future[list[FlowObservation] | None]] = {}

    @property
    def fetches(self) -> int:
        return len(self._tasks)

    async def get(self, reach_id: str) -> list[FlowObservation] | None:
        task = self._tasks.get(reach_id)
        if task is None:
            task = asyncio.ensure_future(
                self._source.fetch_streamflow_data(reach_id, include_forecast=True, horizons=ALERTING_HORIZONS)
            )
            self._tasks[reach_id] = task
        return await asyncio.shield(task)

    async def close(self) -> None:
        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


# ── Scheduler ────────────────────────────────────────────────────


@dataclass(frozen=True)
class PairOutcome:
    """Result of evaluating one (user, reach) pair.

    Attributes:
        status: One of sent, suppressed, skipped, failed, delivery_failed.
        decision: The decision, when one was reached.
        delivery: Dispatcher result, when a send was attempted.
        stale_table: True when classification used a stale table.
        detail: Suppression reason or error text.
    """

    status: str
    decision: AlertDecision | None = None
    delivery: DeliveryResult | None = None
    stale_table: bool = False
    detail: str | None = None


class BatchScheduler:
    """Runs one evaluation pass over every (user, favorite reach) pair.

    Args:
        users: Recipient, favorites, preferences and thresholds source.
        forecasts: Forecast collaborator.
        cache: Return-period cache.
        dispatcher: Notification dispatcher.
        cooldown: Optional repeat-alert cool-down.
        scale_factor: Divisor applied to every return-period threshold.
        concurrency: Maximum pairs evaluated at once.
        deadline_seconds: Overall run deadline.
        timezone: Zone for quiet hours.
        demo: Force Demonstration priority for every decision.
        deep_link_scheme: Scheme for payload deep links.
        emergency_conditions: Emergency table.
        clock: Current time source.
        history: Optional sink for completed run results.
    """

    def __init__(
        self,
        users: UserStore,
        forecasts: ForecastSource,
        cache: ReturnPeriodCache,
        dispatcher: NotificationDispatcher,
        *,
        cooldown: AlertCooldown | None = None,
        scale_factor: float = 1.0,
        concurrency: int = 8,
        deadline_seconds: float = 240.0,
        timezone: tzinfo = UTC,
        demo: bool = False,
        deep_link_scheme: str = "app",
        emergency_conditions: Sequence[EmergencyCondition] = DEFAULT_EMERGENCY_CONDITIONS,
        clock: Clock = utc_now,
        history: RunHistory | None = None,
    ) -> None:
        if scale_factor <= 0:
            raise ValueError("scale_factor must be greater than zero")
        self._users = users
        self._forecasts = forecasts
        self._cache = cache
        self._dispatcher = dispatcher
        self._cooldown = cooldown
        self._scale_factor = scale_factor
        self._concurrency = concurrency
        self._deadline = deadline_seconds
        self._timezone = timezone
        self._demo = demo
        self._deep_link_scheme = deep_link_scheme
        self._emergency_conditions = tuple(emergency_conditions)
        self._clock = clock
        self.history = history

    @property
    def users(self) -> UserStore:
        return self._users

    async def run_once(self) -> BatchResult:
        """Evaluate every pair once.

        Raises:
            BatchAbortedError: The recipient list could not be loaded.
        """
        started = time.monotonic()
        counters = RunCounters()
        counters.result.started_at = self._clock()

        try:
            recipients = await self._users.list_recipients()
        except Exception as exc:
            logger.error("Batch aborted: could not load recipients: %s", exc)
            raise BatchAbortedError("could not load notification recipients") from exc

        counters.result.users = len(recipients)
        work: list[tuple[Recipient, Favorite, UserNotificationPreference]] = []
        for recipient in recipients:
            try:
                favorites = await self._users.list_favorites(recipient.user_id)
                preferences = await self._users.get_preferences(recipient.user_id)
            except Exception as exc:
                logger.warning("Skipping user=%s: could not load favorites: %s", recipient.user_id, exc)
                await counters.increment("failed")
                continue
            work.extend((recipient, favorite, preferences) for favorite in favorites)
        counters.result.pairs = len(work)

        forecasts = ForecastCoalescer(self._forecasts)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _evaluate_with_sem(item: tuple[Recipient, Favorite, UserNotificationPreference]) -> None:
            async with semaphore:
                outcome = await self.evaluate_pair(*item, forecasts=forecasts)
            await self._count(counters, outcome)

        tasks = [asyncio.create_task(_evaluate_with_sem(item)) for item in work]
        try:
            if tasks:
                _done, pending = await asyncio.wait(tasks, timeout=self._deadline)
                if pending:
                    logger.warning(
                        "Batch deadline of %.0fs reached, cancelling %d pending pairs",
                        self._deadline,
                        len(pending),
                    )
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    await counters.increment("timed_out", len(pending))
        finally:
            await forecasts.close()

        result = counters.result
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Flow alert run complete: users=%d pairs=%d sent=%d suppressed=%d skipped=%d "
            "failed=%d delivery_failed=%d timed_out=%d stale=%d forecasts=%d in %.2fs",
            result.users,
            result.pairs,
            result.sent,
            result.suppressed,
            result.skipped,
            result.failed,
            result.delivery_failed,
            result.timed_out,
            result.stale_tables_used,
            forecasts.fetches,
            result.duration_seconds,
        )
        if self.history is not None:
            await self.history.record(result)
        return result

    async def evaluate_pair(
        self,
        recipient: Recipient,
        favorite: Favorite,
        preferences: UserNotificationPreference,
        *,
        demo: bool | None = None,
        forecasts: ForecastCoalescer | None = None,
    ) -> PairOutcome:
        """Evaluate and, if warranted, notify one (user, reach) pair.

        Never raises; errors are logged and reported as ``failed``.
        """
        user_id = recipient.user_id
        reach_id = favorite.reach_id
        stale = False
        try:
            if forecasts is None:
                forecasts = ForecastCoalescer(self._forecasts)
            observations = await forecasts.get(reach_id)
            if observations is None:
                raise DataUnavailableError(reach_id, "no forecast data")

            now = self._clock()
            peak = reduce_max_flow(observations, reach_id, now=now)

            table = await self._cache.get(reach_id, raise_errors=True)
            if table is None:
                raise DataUnavailableError(reach_id, "no return-period table")
            stale = table.stale
            effective = table.scaled(self._scale_factor)

            classification = classify(peak, effective)
            thresholds = await self._users.list_thresholds(user_id, reach_id)
            context = DecisionContext(
                user_id=user_id,
                reach_id=reach_id,
                now=now,
                timezone=self._timezone,
                reach_name=favorite.reach_name,
                previous=current_observation(observations),
                demo=self._demo if demo is None else demo,
                deep_link_scheme=self._deep_link_scheme,
                emergency_conditions=self._emergency_conditions,
            )
            decision = decide(peak, classification, effective, thresholds, preferences, context)

            if not decision.should_send:
                return PairOutcome("suppressed", decision, stale_table=stale, detail=decision.suppressed_reason)

            if self._cooldown is not None and await self._cooldown.should_suppress(
                user_id, reach_id, decision.category, now
            ):
                decision = decision.suppress(REASON_COOLDOWN)
                return PairOutcome("suppressed", decision, stale_table=stale, detail=REASON_COOLDOWN)

            delivery = await self._dispatcher.send(recipient, decision)
            if not delivery.success:
                return PairOutcome("delivery_failed", decision, delivery, stale, delivery.error)

            if self._cooldown is not None:
                await self._cooldown.record(user_id, reach_id, decision.category, now)
            logger.info(
                "Alert sent user=%s reach=%s category=%s priority=%s urgency=%s%s",
                user_id,
                reach_id,
                decision.category,
                decision.priority,
                decision.urgency,
                " (stale thresholds)" if stale else "",
            )
            return PairOutcome("sent", decision, delivery, stale)

        except DataUnavailableError as exc:
            logger.info("Skipping user=%s reach=%s: %s", user_id, reach_id, exc.reason)
            return PairOutcome("skipped", stale_table=stale, detail=exc.reason)
        except Exception as exc:
            logger.warning("Evaluation failed for user=%s reach=%s: %s", user_id, reach_id, exc)
            return PairOutcome("failed", stale_table=stale, detail=str(exc))

    async def _count(self, counters: RunCounters, outcome: PairOutcome) -> None:
        if outcome.stale_table:
            await counters.increment("stale_tables_used")
        if outcome.status == "suppressed":
            await counters.suppressed(outcome.detail or "unknown")
        else:
            await counters.increment(outcome.status)
