"""Notification dispatch for flow alerts.

Builds the wire message for a decision, delivers it on the channel(s) the
decision selected and appends exactly one delivery-log record per send.
Delivery failures are reported in the result, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from src.integrations.delivery import Gateway
from src.monitoring.alerting.payload import FlowAlertData, NotificationContent, PushMessage
from src.monitoring.store import DeliveryLog, DeliveryRecord
from src.monitoring.types import AlertDecision, DeliveryChannel, DeliveryResult, Recipient

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends alert decisions through the configured gateways.

    Args:
        gateways: Gateway per channel. Push must be present.
        delivery_log: Sink for one record per send.
    """

    def __init__(self, gateways: Mapping[DeliveryChannel, Gateway], delivery_log: DeliveryLog) -> None:
        self._gateways = dict(gateways)
        self._log = delivery_log

    def resolve_gateways(self, channel: DeliveryChannel, recipient: Recipient) -> list[Gateway]:
        """Gateways to use for ``channel``.

        SMS and email fall back to push when the recipient has no address
        for them or the gateway is not configured.
        """
        if channel == DeliveryChannel.ALL:
            return [g for g in self._gateways.values() if g.can_deliver(recipient)]

        gateway = self._gateways.get(channel)
        if gateway is not None and gateway.can_deliver(recipient):
            return [gateway]
        push = self._gateways.get(DeliveryChannel.PUSH)
        if channel != DeliveryChannel.PUSH and push is not None and push.can_deliver(recipient):
            logger.debug("No %s route for user %s, falling back to push", channel, recipient.user_id)
            return [push]
        return []

    @staticmethod
    def build_message(recipient: Recipient, decision: AlertDecision) -> PushMessage:
        data = decision.payload
        if not isinstance(data, FlowAlertData):
            data = FlowAlertData.model_validate(data)
        return PushMessage(
            token=recipient.delivery_token,
            notification=NotificationContent(title=decision.title, body=decision.body),
            data=data,
        )

    async def send(self, recipient: Recipient, decision: AlertDecision) -> DeliveryResult:
        """Deliver ``decision`` to ``recipient``.

        Returns:
            Success when at least one gateway delivered; otherwise the last
            error message.
        """
        reach_id = ""
        delivered: list[str] = []
        errors: list[str] = []
        try:
            message = self.build_message(recipient, decision)
            reach_id = message.data.reach_id
            gateways = self.resolve_gateways(decision.delivery_channel, recipient)
            if not gateways:
                errors.append(f"no deliverable channel for {decision.delivery_channel}")
            for gateway in gateways:
                try:
                    await gateway.send(recipient, message, decision.urgency)
                    delivered.append(gateway.channel.value)
                except Exception as exc:
                    logger.warning(
                        "Delivery via %s failed for user=%s reach=%s: %s",
                        gateway.channel, recipient.user_id, reach_id, exc,
                    )
                    errors.append(str(exc))
        except Exception as exc:
            logger.exception("Failed to build notification for user=%s", recipient.user_id)
            errors.append(str(exc))

        result = DeliveryResult(
            success=bool(delivered),
            error=None if delivered else (errors[-1] if errors else "not delivered"),
            channels=tuple(delivered),
        )
        await self._record(recipient, decision, reach_id, result)
        return result

    async def _record(
        self,
        recipient: Recipient,
        decision: AlertDecision,
        reach_id: str,
        result: DeliveryResult,
    ) -> None:
        record = DeliveryRecord(
            user_id=recipient.user_id,
            reach_id=reach_id,
            priority=decision.priority.value,
            category=decision.category.value,
            urgency=decision.urgency.value,
            channel=",".join(result.channels) or decision.delivery_channel.value,
            triggered_by=decision.triggered_by.value,
            title=decision.title,
            sent=result.success,
            error=result.error,
        )
        try:
            await self._log.append(record)
        except Exception:
            logger.exception("Failed to append delivery log for user=%s reach=%s", recipient.user_id, reach_id)
