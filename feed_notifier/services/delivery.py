"""Delivery of notification messages to destination channels."""

import logging
from typing import Optional, Protocol

import httpx

from feed_notifier.errors import DeliveryError
from feed_notifier.models.schemas import Notification


logger = logging.getLogger(__name__)


def format_notification(notification: Notification) -> str:
    """Render the message announcing a new article."""
    return f'New item from collection "{notification.collection_name}": {notification.link}'


class Delivery(Protocol):
    """Sends a text message to a channel."""

    async def send(self, channel_id: str, text: str) -> None:
        """Deliver `text` to `channel_id`, raising DeliveryError on failure."""
        ...


class WebhookDelivery:
    """Posts messages as JSON to a webhook endpoint."""

    def __init__(self, url: str, timeout: float = 3.0, token: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.token = token

    async def send(self, channel_id: str, text: str) -> None:
        headers = {"User-Agent": "FeedNotifier/1.0 (RSS Feed Notifier)"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with httpx.AsyncClient(timeout=self.timeout, headers=headers) as client:
            try:
                response = await client.post(
                    self.url,
                    json={"channel_id": channel_id, "content": text},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise DeliveryError(f"Send to channel {channel_id} failed: {e}") from e


class LogDelivery:
    """Writes messages to the log instead of sending them."""

    async def send(self, channel_id: str, text: str) -> None:
        logger.info(f"[{channel_id}] {text}")
