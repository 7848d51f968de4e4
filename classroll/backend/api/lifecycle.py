import logging
from fastapi import APIRouter, Depends, Request

from ..db.db_client import AsyncPostgresClient
from ..db.redis_client import RedisClient
from ..models.db_models import LifecycleReport, Principal, Role
from ..modules.clock import Clock
from ..services.notification_service import NotificationService
from ..tasks.lifecycle import advance_lifecycle
from .auth import require_roles
from .dependencies import get_clock, get_db_client, get_notification_service, get_redis_client
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lifecycle", tags=["Lifecycle"])


@router.post("/run", response_model=LifecycleReport, summary="Run one lifecycle tick now")
@limiter.limit("5/minute")
async def run_lifecycle(request: Request, principal: Principal = Depends(require_roles(Role.ADMIN)), db_client: AsyncPostgresClient = Depends(get_db_client), redis_client: RedisClient = Depends(get_redis_client), notification_service: NotificationService = Depends(get_notification_service), clock: Clock = Depends(get_clock)):
    """Manual trigger for the job the scheduler runs every few minutes. Safe to call at any time."""
    logger.info(f"Lifecycle tick triggered manually by '{principal.user_id}'.")
    return await advance_lifecycle(db_client, redis_client, notification_service, clock.now())
