"""
Operational alerts.

Fire-and-forget: alert() never raises. A failed delivery is logged and
dropped so that alerting cannot break the operation being reported.
"""

import logging
from typing import Protocol

import httpx

from cardkeeper.config import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Alert sink consumed by the caching and archival components."""

    async def alert(self, subject: str, body: str) -> None: ...


class LoggingNotifier:
    """Writes alerts to the log at ERROR level."""

    async def alert(self, subject: str, body: str) -> None:
        logger.error("ALERT: %s\n%s", subject, body)


class WebhookNotifier:
    """
    Posts alerts as JSON to a webhook, and logs them.

    Delivery errors are logged and swallowed.
    """

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def alert(self, subject: str, body: str) -> None:
        logger.error("ALERT: %s\n%s", subject, body)
        payload = {"subject": f"[{settings.app_name}] {subject}", "body": body}

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                return

            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Alert delivery to webhook failed: %s", e)


def build_notifier(webhook_url: str | None = None) -> Notifier:
    """Pick the notifier for the configured alert destination."""
    url = webhook_url if webhook_url is not None else settings.alert_webhook_url
    if url:
        return WebhookNotifier(url)
    return LoggingNotifier()
