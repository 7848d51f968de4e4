# classroll/backend/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .api import attendance, lifecycle, sessions
from .logging.logging_config import setup_logging

from .db.redis_client import RedisClient
from .db.db_client import AsyncPostgresClient
from .services.notification_service import NotificationService
from .tasks.lifecycle import lifecycle_task, retention_task
from .tools.notifier import PushNotifier

from .api.utilities.limiter import limiter

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the connection pools and starts the lifecycle scheduler on startup,
    and tears them down on shutdown.
    """
    logger.info("Application starting...")

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20,
            command_timeout=settings.STORE_TIMEOUT_SECONDS
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL and Redis connection pools created.")

        db_client = AsyncPostgresClient(pool=postgres_pool)
        redis_client = RedisClient(pool=redis_pool)
        notification_service = NotificationService(db_client=db_client, notifier=PushNotifier())

        scheduler = Scheduler()
        scheduler.add_job(
            lifecycle_task, "interval", minutes=settings.LIFECYCLE_TICK_MINUTES,
            args=[db_client, redis_client, notification_service],
            id="advance_lifecycle", max_instances=1, coalesce=True
        )
        scheduler.add_job(
            retention_task, "interval", minutes=settings.RETENTION_TICK_MINUTES,
            args=[db_client], id="attendance_retention", max_instances=1, coalesce=True
        )
        scheduler.start()

        app.state.scheduler = scheduler
        logger.info("Lifecycle and retention jobs scheduled.")

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        app.state.postgres_pool = None
        app.state.redis_pool = None
        app.state.scheduler = None

    yield

    logger.info("Application shutting down...")
    if getattr(app.state, "scheduler", None):
        app.state.scheduler.shutdown()
        logger.info("Scheduler stopped.")
    if getattr(app.state, "postgres_pool", None):
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL connection pool closed.")
    if getattr(app.state, "redis_pool", None):
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")


app = FastAPI(
    title="Classroll API",
    description="Class scheduling and attendance register API",
    version="1.0.0",
    lifespan=lifespan
)

origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(sessions.router, prefix="/api/v1")
app.include_router(attendance.router, prefix="/api/v1")
app.include_router(lifecycle.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
def health_check():
    """Simple liveness endpoint."""
    return {"status": "ok", "message": "Classroll API is running."}
