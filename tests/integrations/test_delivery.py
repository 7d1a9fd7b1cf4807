"""Tests for the push, SMS and email gateways."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from src.core.config import Settings
from src.integrations.delivery import (
    EmailGateway,
    FcmPushGateway,
    SmsGateway,
    build_gateways,
)
from src.monitoring.alerting.payload import FlowAlertData, NotificationContent, PushMessage
from src.monitoring.errors import ConfigurationError, DeliveryError
from src.monitoring.types import (
    AlertPriority,
    DeliveryChannel,
    FlowCategory,
    FlowUnit,
    Recipient,
    Urgency,
)

URL = "https://gateway.example.com/send"

RECIPIENT = Recipient("u1", "device-token", phone="+15555550100", email="u1@example.com")


def _message() -> PushMessage:
    return PushMessage(
        token="device-token",
        notification=NotificationContent(title="Safety Alert: Very High Flow", body="Green River: Very High flow."),
        data=FlowAlertData(
            reach_id="12345",
            category=FlowCategory.VERY_HIGH,
            priority=AlertPriority.SAFETY,
            flow_value=700.0,
            flow_unit=FlowUnit.CFS,
            timestamp=datetime(2026, 10, 17, 18, 0, tzinfo=UTC),
            deep_link="app://reach/12345",
        ),
    )


def _client(status_code: int = 200) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.request.return_value = httpx.Response(
        status_code=status_code, json={}, request=httpx.Request("POST", URL)
    )
    return client


class TestFcmPushGateway:
    def test_critical_message_is_high_priority(self) -> None:
        body = FcmPushGateway.build_message(_message(), Urgency.CRITICAL)["message"]

        assert body["token"] == "device-token"
        assert body["notification"] == {"title": "Safety Alert: Very High Flow", "body": "Green River: Very High flow."}
        assert body["android"] == {"priority": "high"}
        assert body["apns"] == {"headers": {"apns-priority": "10"}}

    def test_data_values_are_strings(self) -> None:
        data = FcmPushGateway.build_message(_message(), Urgency.LOW)["message"]["data"]

        assert data["type"] == "flow_alert"
        assert data["reachId"] == "12345"
        assert data["category"] == "Very High"
        assert data["flowValue"] == "700.0"
        assert data["deepLink"] == "app://reach/12345"
        assert data["riskLevel"] == "critical"
        assert all(isinstance(v, str) for v in data.values())

    def test_non_critical_is_normal_priority(self) -> None:
        body = FcmPushGateway.build_message(_message(), Urgency.HIGH)["message"]
        assert body["android"]["priority"] == "normal"
        assert body["apns"]["headers"]["apns-priority"] == "5"

    @pytest.mark.asyncio
    async def test_send_posts_with_bearer_token(self) -> None:
        client = _client()
        await FcmPushGateway(URL, "push-token", client=client).send(RECIPIENT, _message(), Urgency.CRITICAL)

        call = client.request.call_args
        assert call.args == ("POST", URL)
        assert call.kwargs["headers"]["Authorization"] == "Bearer push-token"
        assert call.kwargs["json"]["message"]["token"] == "device-token"

    @pytest.mark.asyncio
    async def test_http_error_becomes_delivery_error(self) -> None:
        gateway = FcmPushGateway(URL, "push-token", client=_client(401))

        with pytest.raises(DeliveryError) as exc_info:
            await gateway.send(RECIPIENT, _message(), Urgency.LOW)

        assert exc_info.value.channel == DeliveryChannel.PUSH
        assert exc_info.value.detail == "HTTP 401"

    @pytest.mark.asyncio
    async def test_transport_error_becomes_delivery_error(self) -> None:
        client = AsyncMock(spec=httpx.AsyncClient)
        client.request.side_effect = httpx.ConnectError("refused")

        with pytest.raises(DeliveryError):
            await FcmPushGateway(URL, "t", client=client).send(RECIPIENT, _message(), Urgency.LOW)

    def test_can_deliver_needs_token(self) -> None:
        gateway = FcmPushGateway(URL, "t")
        assert gateway.can_deliver(RECIPIENT)
        assert not gateway.can_deliver(Recipient("u2", ""))


class TestSmsAndEmail:
    @pytest.mark.asyncio
    async def test_sms_body(self) -> None:
        client = _client()
        await SmsGateway(URL, "", client=client).send(RECIPIENT, _message(), Urgency.HIGH)

        call = client.request.call_args
        assert call.kwargs["json"] == {
            "to": "+15555550100",
            "body": "Safety Alert: Very High Flow\nGreen River: Very High flow.",
            "urgency": "high",
        }
        assert "Authorization" not in call.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_email_body_includes_deep_link(self) -> None:
        client = _client()
        await EmailGateway(URL, "mail-token", client=client).send(RECIPIENT, _message(), Urgency.CRITICAL)

        body = client.request.call_args.kwargs["json"]
        assert body["to"] == "u1@example.com"
        assert body["subject"] == "Safety Alert: Very High Flow"
        assert body["text"].endswith("Open: app://reach/12345")
        assert body["urgency"] == "critical"

    def test_can_deliver(self) -> None:
        bare = Recipient("u2", "t")
        assert SmsGateway(URL, "").can_deliver(RECIPIENT)
        assert not SmsGateway(URL, "").can_deliver(bare)
        assert EmailGateway(URL, "").can_deliver(RECIPIENT)
        assert not EmailGateway(URL, "").can_deliver(bare)


class TestBuildGateways:
    def test_push_only(self, test_settings: Settings) -> None:
        gateways = build_gateways(test_settings)
        assert set(gateways) == {DeliveryChannel.PUSH}
        assert isinstance(gateways[DeliveryChannel.PUSH], FcmPushGateway)

    def test_optional_channels(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(
            update={"sms_gateway_url": "https://sms.example.com", "email_gateway_url": "https://mail.example.com"}
        )
        gateways = build_gateways(settings)
        assert set(gateways) == {DeliveryChannel.PUSH, DeliveryChannel.SMS, DeliveryChannel.EMAIL}

    def test_missing_push_token_raises(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"push_gateway_url": ""})
        with pytest.raises(ConfigurationError):
            build_gateways(settings)
