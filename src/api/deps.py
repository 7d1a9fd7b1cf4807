"""Shared FastAPI dependencies.

Provides the operator token guard and the batch scheduler held on app
state.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from src.core.config import Settings, get_settings
from src.monitoring.scheduler import BatchScheduler


async def require_admin_token(
    x_admin_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests without the configured ``X-Admin-Token``.

    When no token is configured the operator routes are open, which is only
    intended for local development.
    """
    expected = settings.admin_api_token.get_secret_value()
    if not expected:
        return
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def get_scheduler(request: Request) -> BatchScheduler:
    """Return the scheduler, or 503 when it could not be configured."""
    scheduler: BatchScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Flow alert scheduler is not configured",
        )
    return scheduler
