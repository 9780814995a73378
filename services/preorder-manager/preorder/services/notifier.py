"""
PreOrder Manager — Customer notifications

Pushes "preparing" / "ready for pickup" events to the Notification Hub, which
fans them out over its order:{order_id} SSE channel. Fire-and-forget:
failures are logged here and never retried by the pipeline.
"""
import logging
from typing import Protocol

import httpx

from preorder.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, customer_id: str, kind: str, payload: dict) -> None:
        ...


class HubNotifier:
    """Notification Hub client over HTTP."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.NOTIFICATION_HUB_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    async def send(self, customer_id: str, kind: str, payload: dict) -> None:
        body = {
            "type": "order_status",
            "customer_id": customer_id,
            "status": kind,
            "channels": ["push", "inApp"],
            **payload,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/notifications/publish", json=body)
                response.raise_for_status()
        except Exception as exc:
            # Notification failures MUST NOT affect order processing
            logger.warning(
                "Notification Hub unreachable for %s notification (customer %s): %s",
                kind, customer_id, exc,
            )


_notifier: NotificationSender | None = None


def get_notifier() -> NotificationSender:
    global _notifier
    if _notifier is None:
        _notifier = HubNotifier()
    return _notifier
