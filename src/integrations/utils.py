"""Shared HTTP utilities for the forecast and delivery collaborators.

Provides a retrying request helper and unit-label parsing used by every
client in this package.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.monitoring.types import FlowUnit

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (0.5, 1.0, 2.0)
DEFAULT_TIMEOUT = 15.0
USER_AGENT = "FlowWatch/1.0"


async def retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = 0,
    retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
    retry_on_status: tuple[int, ...] = (429, 500, 502, 503, 504),
    allow_status: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Make an HTTP request, retrying transient failures with backoff.

    Args:
        client: The httpx AsyncClient to use.
        method: HTTP method (GET, POST, etc.).
        url: The URL to request.
        max_retries: Retry attempts after the first. Zero means one attempt.
        retry_delays: Delay seconds for each retry.
        retry_on_status: HTTP status codes that trigger a retry.
        allow_status: Error status codes returned to the caller instead of
            raised (for example 404 for "no such reach").
        **kwargs: Additional arguments passed to client.request().

    Returns:
        The HTTP response.

    Raises:
        httpx.HTTPStatusError: If the final response is an error not in ``allow_status``.
        httpx.RequestError: If the final attempt failed at the transport level.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            if attempt >= max_retries:
                raise
            delay = retry_delays[min(attempt, len(retry_delays) - 1)]
            logger.warning(
                "Request to %s failed: %s, retrying in %.1fs (attempt %d/%d)",
                url, exc, delay, attempt + 1, max_retries,
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code in retry_on_status and attempt < max_retries:
            delay = retry_delays[min(attempt, len(retry_delays) - 1)]
            logger.warning(
                "Request to %s returned %d, retrying in %.1fs (attempt %d/%d)",
                url, response.status_code, delay, attempt + 1, max_retries,
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code not in allow_status:
            response.raise_for_status()
        return response

    raise RuntimeError("Unexpected retry loop exit")


_UNIT_LABELS: dict[str, FlowUnit] = {
    "cfs": FlowUnit.CFS,
    "ft3/s": FlowUnit.CFS,
    "ft³/s": FlowUnit.CFS,
    "cms": FlowUnit.CMS,
    "m3/s": FlowUnit.CMS,
    "m³/s": FlowUnit.CMS,
}


def parse_unit(label: str | None, default: FlowUnit = FlowUnit.CFS) -> FlowUnit:
    """Map a provider unit label to a :class:`FlowUnit`."""
    if not label:
        return default
    return _UNIT_LABELS.get(label.strip().lower(), default)
