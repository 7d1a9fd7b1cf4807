"""NOAA National Water Prediction Service collaborators.

``NwpsForecastClient`` reads streamflow forecasts per reach from the NWPS
``/reaches/{id}/streamflow`` endpoint, one request per horizon.
``NwmReturnPeriodClient`` reads the National Water Model return-period
table for a reach.

Both map transport failures and non-404 HTTP errors to
:class:`TransientFetchError`; a 404 means the reach is unknown and yields
``None``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import httpx

from src.core.config import Settings
from src.integrations.utils import DEFAULT_TIMEOUT, USER_AGENT, parse_unit, retry_request
from src.monitoring.errors import TransientFetchError
from src.monitoring.types import (
    ALERTING_HORIZONS,
    RETURN_YEARS,
    FlowObservation,
    FlowUnit,
    ForecastHorizon,
    ReturnPeriodTable,
)

logger = logging.getLogger(__name__)

# Response section for each requested series.
_SECTION_KEYS: dict[ForecastHorizon, str] = {
    ForecastHorizon.SHORT_RANGE: "shortRange",
    ForecastHorizon.MEDIUM_RANGE: "mediumRange",
    ForecastHorizon.LONG_RANGE: "longRange",
}


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _pick_series(section: dict[str, Any]) -> dict[str, Any] | None:
    """Prefer the mean ``series``; fall back to the first ensemble member with data."""
    series = section.get("series")
    if isinstance(series, dict) and series.get("data"):
        return series
    members = sorted(
        (key for key in section if key.startswith("member")),
        key=lambda k: int(k[6:]) if k[6:].isdigit() else 0,
    )
    for key in members:
        member = section.get(key)
        if isinstance(member, dict) and member.get("data"):
            return member
    return None


def parse_streamflow(
    payload: dict[str, Any],
    reach_id: str,
    horizon: ForecastHorizon,
) -> list[FlowObservation]:
    """Extract observations for one horizon from an NWPS streamflow response."""
    section = payload.get(_SECTION_KEYS[horizon])
    if not isinstance(section, dict):
        return []
    series = _pick_series(section)
    if series is None:
        return []

    unit = parse_unit(series.get("units"), FlowUnit.CFS)
    observations: list[FlowObservation] = []
    for point in series.get("data", []):
        if not isinstance(point, dict):
            continue
        valid_at = _parse_time(point.get("validTime"))
        flow = point.get("flow")
        if valid_at is None or not isinstance(flow, int | float) or isinstance(flow, bool):
            continue
        observations.append(
            FlowObservation(
                reach_id=reach_id,
                value=float(flow),
                unit=unit,
                horizon=horizon,
                valid_at=valid_at,
            )
        )
    return observations


class NwpsForecastClient:
    """Streamflow forecasts from the NWPS API.

    Args:
        base_url: NWPS API root, e.g. ``https://api.water.noaa.gov/nwps/v1``.
        timeout: Per-request timeout in seconds.
        max_retries: Retries per request within one run.
        client: Shared httpx client; one is created per call when omitted.
    """

    source = "forecast"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> NwpsForecastClient:
        return cls(
            settings.forecast_base_url,
            timeout=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
            client=client,
        )

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": USER_AGENT}

    async def fetch_streamflow_data(
        self,
        reach_id: str,
        include_forecast: bool = True,
        horizons: Sequence[ForecastHorizon] = ALERTING_HORIZONS,
    ) -> list[FlowObservation] | None:
        """Fetch observations for ``reach_id``.

        Args:
            reach_id: Reach identifier.
            include_forecast: When False only the current short-range value
                is returned.
            horizons: Horizons to request; short and medium range by default.

        Returns:
            Observations across the requested horizons (possibly empty), or
            None when the provider does not know the reach.

        Raises:
            TransientFetchError: Every requested horizon failed.
        """
        if not include_forecast:
            horizons = (ForecastHorizon.SHORT_RANGE,)

        if self._client is not None:
            results = await self._fetch_all(self._client, reach_id, horizons)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                results = await self._fetch_all(client, reach_id, horizons)

        observations: list[FlowObservation] = []
        errors: list[BaseException] = []
        found = False
        for horizon, result in zip(horizons, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Forecast %s fetch failed for reach %s: %s", horizon, reach_id, result)
                errors.append(result)
            elif result is not None:
                found = True
                observations.extend(result)

        if found:
            if not include_forecast:
                return observations[:1]
            return observations
        if errors:
            raise TransientFetchError(reach_id, self.source, str(errors[-1]))
        logger.info("Reach %s not found by forecast provider", reach_id)
        return None

    async def _fetch_all(
        self,
        client: httpx.AsyncClient,
        reach_id: str,
        horizons: Sequence[ForecastHorizon],
    ) -> list[list[FlowObservation] | None | BaseException]:
        return await asyncio.gather(
            *(self._fetch_horizon(client, reach_id, h) for h in horizons),
            return_exceptions=True,
        )

    async def _fetch_horizon(
        self,
        client: httpx.AsyncClient,
        reach_id: str,
        horizon: ForecastHorizon,
    ) -> list[FlowObservation] | None:
        response = await retry_request(
            client,
            "GET",
            f"{self._base_url}/reaches/{reach_id}/streamflow",
            params={"series": horizon.value},
            headers=self._headers(),
            timeout=self._timeout,
            max_retries=self._max_retries,
            allow_status=(404,),
        )
        if response.status_code == 404:
            return None
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected streamflow payload type {type(payload).__name__}")
        return parse_streamflow(payload, reach_id, horizon)


def parse_return_periods(
    payload: Any,
    reach_id: str,
    unit: FlowUnit,
) -> ReturnPeriodTable | None:
    """Build a table from a ``return_period_{year}`` record.

    Accepts a single object or a list of objects keyed by ``comid``.
    """
    records = payload if isinstance(payload, list) else [payload]
    record: dict[str, Any] | None = None
    for candidate in records:
        if not isinstance(candidate, dict):
            continue
        comid = candidate.get("comid", candidate.get("reach_id"))
        if comid is None or str(comid) == reach_id:
            record = candidate
            break
    if record is None:
        return None

    flow_by_year: dict[int, float] = {}
    for year in RETURN_YEARS:
        value = record.get(f"return_period_{year}")
        if isinstance(value, int | float) and not isinstance(value, bool):
            flow_by_year[year] = float(value)
    if not flow_by_year:
        return None
    return ReturnPeriodTable(
        reach_id=reach_id,
        unit=parse_unit(record.get("units"), unit),
        flow_by_year=flow_by_year,
    )


class NwmReturnPeriodClient:
    """Return-period tables from the NWM return-period API."""

    source = "return_period"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        unit: FlowUnit = FlowUnit.CMS,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._unit = unit
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient | None = None) -> NwmReturnPeriodClient:
        return cls(
            settings.return_period_base_url,
            settings.return_period_api_key.get_secret_value(),
            unit=FlowUnit(settings.return_period_unit),
            timeout=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
            client=client,
        )

    async def fetch_return_period(self, reach_id: str) -> ReturnPeriodTable | None:
        """Fetch the return-period table for ``reach_id``.

        Raises:
            TransientFetchError: The provider could not be reached or failed.
        """
        params = {"comids": reach_id}
        if self._api_key:
            params["key"] = self._api_key
        try:
            if self._client is not None:
                response = await self._get(self._client, params)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._get(client, params)
            if response.status_code == 404:
                return None
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientFetchError(reach_id, self.source, str(exc)) from exc

        table = parse_return_periods(payload, reach_id, self._unit)
        if table is None:
            logger.info("No return periods published for reach %s", reach_id)
        return table

    async def _get(self, client: httpx.AsyncClient, params: dict[str, str]) -> httpx.Response:
        return await retry_request(
            client,
            "GET",
            f"{self._base_url}/return-period",
            params=params,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            timeout=self._timeout,
            max_retries=self._max_retries,
            allow_status=(404,),
        )
