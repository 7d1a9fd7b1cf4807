"""Batch run counters and a rolling history of completed runs.

Counters are updated from concurrent work items, so every mutation goes
through an asyncio lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 48


@dataclass
class BatchResult:
    """Outcome counters for one batch run.

    Attributes:
        users: Notification-enabled users enumerated.
        pairs: (user, reach) work items scheduled.
        sent: Notifications delivered on at least one channel.
        suppressed: Decisions that did not pass a gate.
        skipped: Items skipped for missing forecast or return-period data.
        failed: Items that raised while being evaluated.
        delivery_failed: Notifications every channel failed to deliver.
        timed_out: Items cancelled by the batch deadline.
        stale_tables_used: Items classified against a stale table.
        duration_seconds: Wall time of the run.
        started_at: When the run began.
        suppressed_by_reason: Suppression counts keyed by reason.
    """

    users: int = 0
    pairs: int = 0
    sent: int = 0
    suppressed: int = 0
    skipped: int = 0
    failed: int = 0
    delivery_failed: int = 0
    timed_out: int = 0
    stale_tables_used: int = 0
    duration_seconds: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    suppressed_by_reason: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


class RunCounters:
    """Lock-guarded counters feeding a :class:`BatchResult`."""

    def __init__(self) -> None:
        self._result = BatchResult()
        self._lock = asyncio.Lock()

    @property
    def result(self) -> BatchResult:
        return self._result

    async def increment(self, name: str, amount: int = 1) -> None:
        async with self._lock:
            setattr(self._result, name, getattr(self._result, name) + amount)

    async def suppressed(self, reason: str) -> None:
        async with self._lock:
            self._result.suppressed += 1
            by_reason = self._result.suppressed_by_reason
            by_reason[reason] = by_reason.get(reason, 0) + 1


class RunHistory:
    """Keeps the most recent batch results for the operator API."""

    def __init__(self, size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._runs: deque[BatchResult] = deque(maxlen=size)
        self._lock = asyncio.Lock()

    async def record(self, result: BatchResult) -> None:
        async with self._lock:
            self._runs.append(result)

    async def latest(self) -> BatchResult | None:
        async with self._lock:
            return self._runs[-1] if self._runs else None

    async def totals(self) -> dict[str, int]:
        """Sum the integer counters across retained runs."""
        async with self._lock:
            runs = list(self._runs)
        totals: dict[str, int] = {"runs": len(runs)}
        for name in ("sent", "suppressed", "skipped", "failed", "delivery_failed", "timed_out"):
            totals[name] = sum(getattr(run, name) for run in runs)
        return totals
