"""
Webhook notifier - hands messages to an external delivery service.
"""

from dataclasses import asdict

import httpx

from boxoffice.core.logging import get_logger
from boxoffice.services.interfaces.notifier import NotificationMessage, Notifier

logger = get_logger(__name__)


class WebhookNotifier(Notifier):
    """POSTs each message as JSON to NOTIFY_WEBHOOK_URL."""

    def __init__(self, url: str, sender: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.sender = sender
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, message: NotificationMessage) -> bool:
        payload = asdict(message)
        payload["from"] = self.sender
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("notification_delivery_error", kind=message.kind, error=str(e))
            return False
        if response.status_code >= 400:
            logger.warning(
                "notification_delivery_rejected",
                kind=message.kind,
                status_code=response.status_code,
            )
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()
