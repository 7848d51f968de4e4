# classroll/backend/tools/notifier.py

import logging
from typing import List, Optional

import httpx

from ..config.config import settings
from ..models.db_models import Notification

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when the push gateway rejects or cannot receive a notification."""
    pass


class PushNotifier:
    """
    Thin client for the push gateway service.

    The gateway owns device tokens and delivery; this side only posts
    notification payloads. Callers must treat every NotificationError as
    non-fatal.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.NOTIFICATION_SERVICE_URL).rstrip("/")
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._http_client = http_client

    async def _post(self, path: str, payload) -> None:
        url = f"{self.base_url}{path}"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                return
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Push gateway error: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Push gateway unreachable: {e}") from e

    async def send(self, notification: Notification) -> None:
        await self._post("/notifications", notification.model_dump(mode="json"))

    async def send_bulk(self, notifications: List[Notification]) -> None:
        if not notifications:
            return
        await self._post(
            "/notifications/bulk",
            {"notifications": [n.model_dump(mode="json") for n in notifications]},
        )
        logger.info(f"{len(notifications)} notifications handed to the push gateway.")
