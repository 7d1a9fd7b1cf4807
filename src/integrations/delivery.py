"""Delivery gateways for flow alerts.

Each gateway posts a rendered alert to an HTTP endpoint and raises
:class:`DeliveryError` on failure. ``build_gateways`` assembles the set
configured in settings; push is mandatory, SMS and email are optional.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from src.core.config import Settings
from src.integrations.utils import DEFAULT_TIMEOUT, USER_AGENT, retry_request
from src.monitoring.alerting.payload import PushMessage
from src.monitoring.errors import ConfigurationError, DeliveryError
from src.monitoring.types import DeliveryChannel, Recipient, Urgency

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    channel: DeliveryChannel

    def can_deliver(self, recipient: Recipient) -> bool: ...

    async def send(self, recipient: Recipient, message: PushMessage, urgency: Urgency) -> None: ...


class _HttpGateway:
    """Shared POST plumbing for webhook-style gateways."""

    channel: DeliveryChannel

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _post(self, body: dict[str, Any]) -> None:
        try:
            if self._client is not None:
                await self._request(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    await self._request(client, body)
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(self.channel, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(self.channel, str(exc) or type(exc).__name__) from exc

    async def _request(self, client: httpx.AsyncClient, body: dict[str, Any]) -> None:
        await retry_request(
            client,
            "POST",
            self._url,
            json=body,
            headers=self._headers(),
            timeout=self._timeout,
        )


class FcmPushGateway(_HttpGateway):
    """Firebase Cloud Messaging style push delivery."""

    channel = DeliveryChannel.PUSH

    def can_deliver(self, recipient: Recipient) -> bool:
        return bool(recipient.delivery_token)

    @staticmethod
    def build_message(message: PushMessage, urgency: Urgency) -> dict[str, Any]:
        """Build the FCM ``message`` body. FCM data values must be strings."""
        wire = message.to_wire()
        critical = urgency == Urgency.CRITICAL
        return {
            "message": {
                "token": wire["token"],
                "notification": wire["notification"],
                "data": {key: str(value) for key, value in wire["data"].items()},
                "android": {"priority": "high" if critical else "normal"},
                "apns": {"headers": {"apns-priority": "10" if critical else "5"}},
            }
        }

    async def send(self, recipient: Recipient, message: PushMessage, urgency: Urgency) -> None:
        await self._post(self.build_message(message, urgency))


class SmsGateway(_HttpGateway):
    channel = DeliveryChannel.SMS

    def can_deliver(self, recipient: Recipient) -> bool:
        return bool(recipient.phone)

    async def send(self, recipient: Recipient, message: PushMessage, urgency: Urgency) -> None:
        text = f"{message.notification.title}\n{message.notification.body}"
        await self._post({"to": recipient.phone, "body": text, "urgency": urgency.value})


class EmailGateway(_HttpGateway):
    channel = DeliveryChannel.EMAIL

    def can_deliver(self, recipient: Recipient) -> bool:
        return bool(recipient.email)

    async def send(self, recipient: Recipient, message: PushMessage, urgency: Urgency) -> None:
        body = f"{message.notification.body}\n\nOpen: {message.data.deep_link}"
        await self._post(
            {
                "to": recipient.email,
                "subject": message.notification.title,
                "text": body,
                "urgency": urgency.value,
            }
        )


def build_gateways(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> dict[DeliveryChannel, Gateway]:
    """Create the configured gateways.

    Raises:
        ConfigurationError: Push gateway URL or token is missing.
    """
    push_token = settings.push_gateway_token.get_secret_value()
    if not settings.push_gateway_url or not push_token:
        raise ConfigurationError("push gateway URL and token must be configured")

    timeout = settings.http_timeout_seconds
    gateways: dict[DeliveryChannel, Gateway] = {
        DeliveryChannel.PUSH: FcmPushGateway(settings.push_gateway_url, push_token, timeout=timeout, client=client),
    }
    if settings.sms_gateway_url:
        gateways[DeliveryChannel.SMS] = SmsGateway(
            settings.sms_gateway_url,
            settings.sms_gateway_token.get_secret_value(),
            timeout=timeout,
            client=client,
        )
    if settings.email_gateway_url:
        gateways[DeliveryChannel.EMAIL] = EmailGateway(
            settings.email_gateway_url,
            settings.email_gateway_token.get_secret_value(),
            timeout=timeout,
            client=client,
        )
    logger.info("Delivery gateways configured: %s", ", ".join(sorted(gateways)))
    return gateways
