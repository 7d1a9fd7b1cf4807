"""Flow alert operator routes.

Provides:
- POST /api/v1/alerts/run      (manual batch run)
- POST /api/v1/alerts/demo     (demonstration alert for one user and reach)
- GET  /api/v1/alerts/runs     (latest run and totals)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.api.deps import get_scheduler, require_admin_token
from src.monitoring.errors import BatchAbortedError
from src.monitoring.scheduler import BatchScheduler
from src.monitoring.types import Favorite

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


class DemoAlertRequest(BaseModel):
    """Request body for a demonstration alert."""

    user_id: str = Field(..., min_length=1)
    reach_id: str = Field(..., min_length=1)


def _run_lock(request: Request) -> asyncio.Lock:
    lock: asyncio.Lock | None = getattr(request.app.state, "run_lock", None)
    if lock is None:
        lock = asyncio.Lock()
        request.app.state.run_lock = lock
    return lock


@router.post("/run", dependencies=[Depends(require_admin_token)])
async def run_batch(
    request: Request,
    scheduler: BatchScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Run one batch immediately and return its counters.

    Returns 409 if a run is already in progress.
    """
    lock = _run_lock(request)
    if lock.locked():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A run is already in progress")
    async with lock:
        try:
            result = await scheduler.run_once()
        except BatchAbortedError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return result.to_dict()


@router.post("/demo", dependencies=[Depends(require_admin_token)])
async def trigger_demo_alert(
    payload: DemoAlertRequest,
    scheduler: BatchScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Evaluate one reach for one user with Demonstration priority.

    The user's reach toggle and quiet hours still apply.
    """
    users = scheduler.users
    recipient = await users.get_recipient(payload.user_id)
    if recipient is None or not recipient.delivery_token:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User has no delivery token")

    favorites = await users.list_favorites(payload.user_id)
    favorite = next(
        (f for f in favorites if f.reach_id == payload.reach_id),
        Favorite(reach_id=payload.reach_id),
    )
    preferences = await users.get_preferences(payload.user_id)
    outcome = await scheduler.evaluate_pair(recipient, favorite, preferences, demo=True)
    logger.info("Demo alert user=%s reach=%s status=%s", payload.user_id, payload.reach_id, outcome.status)

    body: dict[str, Any] = {"status": outcome.status, "detail": outcome.detail}
    if outcome.decision is not None:
        body["title"] = outcome.decision.title
        body["body"] = outcome.decision.body
        body["urgency"] = outcome.decision.urgency.value
        body["channel"] = outcome.decision.delivery_channel.value
    if outcome.delivery is not None:
        body["channels"] = list(outcome.delivery.channels)
    return body


@router.get("/runs", dependencies=[Depends(require_admin_token)])
async def get_run_summary(request: Request) -> dict[str, Any]:
    """Latest run counters and totals across retained runs."""
    history = request.app.state.run_history
    latest = await history.latest()
    return {
        "latest": latest.to_dict() if latest is not None else None,
        "totals": await history.totals(),
    }
