"""Tests for the NWPS forecast and NWM return-period clients."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from src.integrations.nwps import (
    NwmReturnPeriodClient,
    NwpsForecastClient,
    parse_return_periods,
    parse_streamflow,
)
from src.monitoring.errors import TransientFetchError
from src.monitoring.types import FlowUnit, ForecastHorizon

BASE = "https://nwps.example.com/v1"


def _make_response(status_code: int = 200, json_data: Any = None) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json=json_data if json_data is not None else {},
        request=httpx.Request("GET", BASE),
    )


SHORT_PAYLOAD = {
    "shortRange": {
        "series": {
            "units": "ft³/s",
            "data": [
                {"validTime": "2026-10-17T18:00:00Z", "flow": 512.5},
                {"validTime": "2026-10-17T19:00:00Z", "flow": 530.0},
            ],
        }
    }
}

MEDIUM_PAYLOAD = {
    "mediumRange": {
        "series": {"data": []},
        "member1": {"units": "cfs", "data": [{"validTime": "2026-10-19T00:00:00Z", "flow": 700}]},
    }
}


def _by_series(responses: dict[str, httpx.Response | Exception]) -> AsyncMock:
    """Mock client answering each streamflow request by its ``series`` param."""
    client = AsyncMock(spec=httpx.AsyncClient)

    async def request(method: str, url: str, **kwargs: Any) -> httpx.Response:
        result = responses[kwargs["params"]["series"]]
        if isinstance(result, Exception):
            raise result
        return result

    client.request.side_effect = request
    return client


class TestParseStreamflow:
    def test_mean_series(self) -> None:
        observations = parse_streamflow(SHORT_PAYLOAD, "12345", ForecastHorizon.SHORT_RANGE)

        assert [o.value for o in observations] == [512.5, 530.0]
        assert observations[0].unit == FlowUnit.CFS
        assert observations[0].valid_at == datetime(2026, 10, 17, 18, 0, tzinfo=UTC)
        assert all(o.horizon == ForecastHorizon.SHORT_RANGE for o in observations)

    def test_falls_back_to_first_member(self) -> None:
        observations = parse_streamflow(MEDIUM_PAYLOAD, "12345", ForecastHorizon.MEDIUM_RANGE)
        assert [o.value for o in observations] == [700.0]

    def test_missing_section_and_bad_points(self) -> None:
        assert parse_streamflow({}, "12345", ForecastHorizon.SHORT_RANGE) == []
        payload = {
            "shortRange": {
                "series": {
                    "data": [
                        {"validTime": "not a time", "flow": 1.0},
                        {"validTime": "2026-10-17T18:00:00Z", "flow": "high"},
                        {"validTime": "2026-10-17T18:00:00Z", "flow": 3},
                    ]
                }
            }
        }
        assert [o.value for o in parse_streamflow(payload, "r", ForecastHorizon.SHORT_RANGE)] == [3.0]

    def test_cms_units(self) -> None:
        payload = {"shortRange": {"series": {"units": "m³/s", "data": [{"validTime": "2026-10-17T18:00:00", "flow": 20}]}}}
        (observation,) = parse_streamflow(payload, "r", ForecastHorizon.SHORT_RANGE)
        assert observation.unit == FlowUnit.CMS
        assert observation.valid_at.tzinfo is not None


class TestNwpsForecastClient:
    @pytest.mark.asyncio
    async def test_requests_each_alerting_horizon(self) -> None:
        client = _by_series(
            {"short_range": _make_response(200, SHORT_PAYLOAD), "medium_range": _make_response(200, MEDIUM_PAYLOAD)}
        )
        forecasts = NwpsForecastClient(BASE + "/", client=client)

        observations = await forecasts.fetch_streamflow_data("12345")

        assert observations is not None
        assert sorted(o.value for o in observations) == [512.5, 530.0, 700.0]
        urls = {call.args[1] for call in client.request.call_args_list}
        assert urls == {f"{BASE}/reaches/12345/streamflow"}
        assert client.request.call_count == 2

    @pytest.mark.asyncio
    async def test_current_only(self) -> None:
        client = _by_series({"short_range": _make_response(200, SHORT_PAYLOAD)})
        forecasts = NwpsForecastClient(BASE, client=client)

        observations = await forecasts.fetch_streamflow_data("12345", include_forecast=False)

        assert observations is not None and [o.value for o in observations] == [512.5]
        assert client.request.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_reach_is_none(self) -> None:
        client = _by_series({"short_range": _make_response(404), "medium_range": _make_response(404)})
        assert await NwpsForecastClient(BASE, client=client).fetch_streamflow_data("nope") is None

    @pytest.mark.asyncio
    async def test_partial_failure_returns_what_was_found(self) -> None:
        client = _by_series(
            {"short_range": _make_response(200, SHORT_PAYLOAD), "medium_range": _make_response(503)}
        )
        observations = await NwpsForecastClient(BASE, client=client).fetch_streamflow_data("12345")
        assert observations is not None and len(observations) == 2

    @pytest.mark.asyncio
    async def test_total_failure_is_transient(self) -> None:
        client = _by_series(
            {"short_range": httpx.ConnectTimeout("timeout"), "medium_range": _make_response(500)}
        )

        with pytest.raises(TransientFetchError) as exc_info:
            await NwpsForecastClient(BASE, client=client).fetch_streamflow_data("12345")

        assert exc_info.value.reach_id == "12345"
        assert exc_info.value.source == "forecast"

    @pytest.mark.asyncio
    async def test_empty_forecast_is_empty_list(self) -> None:
        client = _by_series({"short_range": _make_response(200, {}), "medium_range": _make_response(200, {})})
        assert await NwpsForecastClient(BASE, client=client).fetch_streamflow_data("12345") == []


class TestParseReturnPeriods:
    def test_list_matched_by_comid(self) -> None:
        payload = [
            {"comid": 1, "return_period_2": 1.0},
            {"comid": 12345, "return_period_2": 4.2, "return_period_100": 22.6},
        ]
        table = parse_return_periods(payload, "12345", FlowUnit.CMS)

        assert table is not None
        assert table.flow_by_year == {2: 4.2, 100: 22.6}
        assert table.unit == FlowUnit.CMS

    def test_unit_label_overrides_default(self) -> None:
        table = parse_return_periods({"return_period_5": 250, "units": "cfs"}, "r", FlowUnit.CMS)
        assert table is not None and table.unit == FlowUnit.CFS

    def test_no_match_or_no_years(self) -> None:
        assert parse_return_periods([{"comid": 1, "return_period_2": 1.0}], "2", FlowUnit.CMS) is None
        assert parse_return_periods({"comid": "r"}, "r", FlowUnit.CMS) is None


class TestNwmReturnPeriodClient:
    @pytest.mark.asyncio
    async def test_fetch_with_api_key(self) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.request.return_value = _make_response(200, [{"comid": "12345", "return_period_2": 4.2}])

        table = await NwmReturnPeriodClient(BASE, "secret", client=client).fetch_return_period("12345")

        assert table is not None and table.flow_by_year == {2: 4.2}
        args = client.request.call_args
        assert args.args[1] == f"{BASE}/return-period"
        assert args.kwargs["params"] == {"comids": "12345", "key": "secret"}

    @pytest.mark.asyncio
    async def test_no_key_param_without_api_key(self) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.request.return_value = _make_response(200, [])

        assert await NwmReturnPeriodClient(BASE, client=client).fetch_return_period("12345") is None
        assert client.request.call_args.kwargs["params"] == {"comids": "12345"}

    @pytest.mark.asyncio
    async def test_not_found_is_none(self) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.request.return_value = _make_response(404)
        assert await NwmReturnPeriodClient(BASE, client=client).fetch_return_period("12345") is None

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.request.return_value = _make_response(500)

        with pytest.raises(TransientFetchError) as exc_info:
            await NwmReturnPeriodClient(BASE, client=client).fetch_return_period("12345")
        assert exc_info.value.source == "return_period"
