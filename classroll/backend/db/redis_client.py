import logging
from typing import Optional
from uuid import UUID

import redis.asyncio as redis

from ..config.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Redis client for short-lived notification idempotency tokens.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    @staticmethod
    def _token_key(kind: str, session_id: UUID, recipient_id: Optional[str] = None) -> str:
        key = f"notification_sent:{kind}:{session_id}"
        if recipient_id:
            key = f"{key}:{recipient_id}"
        return key

    async def claim_notification(self, kind: str, session_id: UUID, recipient_id: Optional[str] = None,
                                 ttl: Optional[int] = None) -> bool:
        """
        Takes the send token for a notification. Returns False if it was already
        taken, meaning the notification was sent (or is being sent) by another tick.
        """
        key = self._token_key(kind, session_id, recipient_id)
        claimed = await self._redis.set(key, "1", nx=True, ex=ttl or settings.NOTIFICATION_TOKEN_TTL_SECONDS)
        return bool(claimed)

    async def release_notification(self, kind: str, session_id: UUID, recipient_id: Optional[str] = None) -> int:
        """Gives the token back after a failed send so a later tick retries."""
        return await self._redis.delete(self._token_key(kind, session_id, recipient_id))
