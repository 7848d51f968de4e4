#classroll/backend/api/dependencies.py
import logging
from typing import Optional

from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.clock import Clock, default_clock
from ..services.attendance_service import AttendanceService
from ..services.notification_service import NotificationService
from ..services.session_service import SessionService
from ..tools.notifier import PushNotifier

logger = logging.getLogger(__name__)


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """Returns the Redis connection pool created in the application lifespan."""
    return request.app.state.redis_pool


def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """Returns the PostgreSQL connection pool created in the application lifespan."""
    return request.app.state.postgres_pool


def get_clock() -> Clock:
    return default_clock


def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool)


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)


def get_notification_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> NotificationService:
    return NotificationService(db_client=db_client, notifier=PushNotifier())


def get_session_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> SessionService:
    """
    Builds a fresh SessionService for every request.

    The clients are cheap wrappers around the pools shared through app.state,
    so nothing but the pools outlives the request.
    """
    return SessionService(db_client=db_client)


def get_attendance_service(
    db_client: AsyncPostgresClient = Depends(get_db_client),
    notification_service: NotificationService = Depends(get_notification_service)
) -> AttendanceService:
    return AttendanceService(db_client=db_client, notification_service=notification_service)


async def get_client_ip(request: Request) -> Optional[str]:
    """
    Reads the real client IP from proxy headers (CloudFlare, Nginx),
    falling back to the direct connection address.
    """
    for header_name in ["cf-connecting-ip", "x-real-ip", "x-forwarded-for"]:
        header = request.headers.get(header_name)
        if header:
            # X-Forwarded-For can be "client, proxy1, proxy2"; the leftmost is the client.
            client_ip = header.split(",")[0].strip()
            logger.debug(f"Client IP '{client_ip}' taken from header '{header_name}'.")
            return client_ip

    return request.client.host if request.client else None
