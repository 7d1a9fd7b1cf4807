"""Tests for the notification dispatcher."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.monitoring.alerting.payload import FlowAlertData, PushMessage
from src.monitoring.errors import DeliveryError
from src.monitoring.notification import NotificationDispatcher
from src.monitoring.store import DeliveryRecord, InMemoryDeliveryLog
from src.monitoring.types import (
    AlertDecision,
    AlertPriority,
    DeliveryChannel,
    FlowCategory,
    FlowUnit,
    Recipient,
    TriggeredBy,
    Urgency,
)

STAMP = datetime(2026, 10, 17, 18, 0, tzinfo=UTC)


class RecordingGateway:
    """Gateway double that records sends and can be told to fail."""

    def __init__(self, channel: DeliveryChannel, *, requires: str | None = None, fail: bool = False) -> None:
        self.channel = channel
        self.requires = requires
        self.fail = fail
        self.sent: list[tuple[Recipient, PushMessage, Urgency]] = []

    def can_deliver(self, recipient: Recipient) -> bool:
        if self.requires is None:
            return bool(recipient.delivery_token)
        return bool(getattr(recipient, self.requires))

    async def send(self, recipient: Recipient, message: PushMessage, urgency: Urgency) -> None:
        if self.fail:
            raise DeliveryError(self.channel, "HTTP 500")
        self.sent.append((recipient, message, urgency))


def _decision(
    channel: DeliveryChannel = DeliveryChannel.PUSH,
    urgency: Urgency = Urgency.MEDIUM,
) -> AlertDecision:
    return AlertDecision(
        should_send=True,
        priority=AlertPriority.SAFETY,
        urgency=urgency,
        triggered_by=TriggeredBy.SAFETY,
        delivery_channel=channel,
        title="Safety Alert: Very High Flow",
        body="River 12345: Very High flow conditions (700 cfs).",
        payload=FlowAlertData(
            reach_id="12345",
            category=FlowCategory.VERY_HIGH,
            priority=AlertPriority.SAFETY,
            flow_value=700.0,
            flow_unit=FlowUnit.CFS,
            timestamp=STAMP,
            deep_link="app://reach/12345",
        ),
        category=FlowCategory.VERY_HIGH,
    )


@pytest.fixture
def push() -> RecordingGateway:
    return RecordingGateway(DeliveryChannel.PUSH)


@pytest.fixture
def sms() -> RecordingGateway:
    return RecordingGateway(DeliveryChannel.SMS, requires="phone")


@pytest.fixture
def email() -> RecordingGateway:
    return RecordingGateway(DeliveryChannel.EMAIL, requires="email")


FULL = Recipient("u1", "token-1", phone="+15555550100", email="u1@example.com")
TOKEN_ONLY = Recipient("u2", "token-2")


class TestSend:
    @pytest.mark.asyncio
    async def test_push_success_logs_one_record(self, push: RecordingGateway) -> None:
        log = InMemoryDeliveryLog()
        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: push}, log)

        result = await dispatcher.send(FULL, _decision())

        assert result.success is True
        assert result.error is None
        assert result.channels == ("push",)
        _, message, urgency = push.sent[0]
        assert message.token == "token-1"
        assert message.notification.title == "Safety Alert: Very High Flow"
        assert message.data.deep_link == "app://reach/12345"
        assert urgency == Urgency.MEDIUM

        assert len(log.records) == 1
        record: DeliveryRecord = log.records[0]
        assert record.user_id == "u1"
        assert record.reach_id == "12345"
        assert record.sent is True
        assert record.channel == "push"
        assert record.priority == "safety"
        assert record.category == "Very High"

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self) -> None:
        log = InMemoryDeliveryLog()
        failing = RecordingGateway(DeliveryChannel.PUSH, fail=True)
        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: failing}, log)

        result = await dispatcher.send(FULL, _decision())

        assert result.success is False
        assert result.error == "push delivery failed: HTTP 500"
        assert len(log.records) == 1
        assert log.records[0].sent is False
        assert log.records[0].error == "push delivery failed: HTTP 500"

    @pytest.mark.asyncio
    async def test_all_channels(self, push: RecordingGateway, sms: RecordingGateway, email: RecordingGateway) -> None:
        log = InMemoryDeliveryLog()
        dispatcher = NotificationDispatcher(
            {DeliveryChannel.PUSH: push, DeliveryChannel.SMS: sms, DeliveryChannel.EMAIL: email}, log
        )

        result = await dispatcher.send(FULL, _decision(DeliveryChannel.ALL, Urgency.CRITICAL))

        assert result.success is True
        assert set(result.channels) == {"push", "sms", "email"}
        assert len(log.records) == 1
        assert log.records[0].channel == "push,sms,email"

    @pytest.mark.asyncio
    async def test_all_channels_partial_failure_is_success(
        self, push: RecordingGateway, email: RecordingGateway
    ) -> None:
        failing_sms = RecordingGateway(DeliveryChannel.SMS, requires="phone", fail=True)
        dispatcher = NotificationDispatcher(
            {DeliveryChannel.PUSH: push, DeliveryChannel.SMS: failing_sms, DeliveryChannel.EMAIL: email},
            InMemoryDeliveryLog(),
        )

        result = await dispatcher.send(FULL, _decision(DeliveryChannel.ALL, Urgency.CRITICAL))

        assert result.success is True
        assert result.channels == ("push", "email")

    @pytest.mark.asyncio
    async def test_all_skips_channels_the_recipient_lacks(
        self, push: RecordingGateway, sms: RecordingGateway, email: RecordingGateway
    ) -> None:
        dispatcher = NotificationDispatcher(
            {DeliveryChannel.PUSH: push, DeliveryChannel.SMS: sms, DeliveryChannel.EMAIL: email},
            InMemoryDeliveryLog(),
        )

        result = await dispatcher.send(TOKEN_ONLY, _decision(DeliveryChannel.ALL, Urgency.CRITICAL))

        assert result.channels == ("push",)
        assert sms.sent == [] and email.sent == []

    @pytest.mark.asyncio
    async def test_log_failure_does_not_raise(self, push: RecordingGateway) -> None:
        class BrokenLog:
            async def append(self, record: DeliveryRecord) -> None:
                raise ConnectionError("db down")

        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: push}, BrokenLog())
        result = await dispatcher.send(FULL, _decision())
        assert result.success is True


class TestResolveGateways:
    def test_sms_for_recipient_with_phone(self, push: RecordingGateway, sms: RecordingGateway) -> None:
        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: push, DeliveryChannel.SMS: sms}, InMemoryDeliveryLog())
        assert dispatcher.resolve_gateways(DeliveryChannel.SMS, FULL) == [sms]

    def test_sms_falls_back_to_push_without_phone(self, push: RecordingGateway, sms: RecordingGateway) -> None:
        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: push, DeliveryChannel.SMS: sms}, InMemoryDeliveryLog())
        assert dispatcher.resolve_gateways(DeliveryChannel.SMS, TOKEN_ONLY) == [push]

    def test_sms_falls_back_to_push_without_gateway(self, push: RecordingGateway) -> None:
        dispatcher = NotificationDispatcher({DeliveryChannel.PUSH: push}, InMemoryDeliveryLog())
        assert dispatcher.resolve_gateways(DeliveryChannel.SMS, FULL) == [push]

    def test_email_falls_back_to_push(self, push: RecordingGateway, email: RecordingGateway) -> None:
        dispatcher = NotificationDispatcher(
            {DeliveryChannel.PUSH: push, DeliveryChannel.EMAIL: email}, InMemoryDeliveryLog()
        )
        assert dispatcher.resolve_gateways(DeliveryChannel.EMAIL, FULL) == [email]
        assert dispatcher.resolve_gateways(DeliveryChannel.EMAIL, TOKEN_ONLY) == [push]

    @pytest.mark.asyncio
    async def test_no_route_records_failure(self, sms: RecordingGateway) -> None:
        log = InMemoryDeliveryLog()
        dispatcher = NotificationDispatcher({DeliveryChannel.SMS: sms}, log)

        result = await dispatcher.send(TOKEN_ONLY, _decision(DeliveryChannel.SMS))

        assert result.success is False
        assert "no deliverable channel" in (result.error or "")
        assert log.records[0].channel == "sms"
