import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from fanqueue.api.dependencies.services import get_notification_scheduler
from fanqueue.core.config import settings
from fanqueue.schemas.payment import SweepResultSchema
from fanqueue.services.notification_scheduler import NotificationSchedulerService

logger = logging.getLogger(__name__)

router = APIRouter()


async def verify_scheduler_token(x_scheduler_token: Optional[str] = Header(default=None)) -> None:
    expected = settings.SCHEDULER_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler endpoint is not configured",
        )
    if not x_scheduler_token or not hmac.compare_digest(x_scheduler_token, expected):
        logger.warning("Rejected notification sweep trigger with bad token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid scheduler token")


@router.post("/sweep", response_model=SweepResultSchema, dependencies=[Depends(verify_scheduler_token)])
async def trigger_sweep(
    scheduler: NotificationSchedulerService = Depends(get_notification_scheduler),
):
    """
    Run one notification sweep now. Called by an external cron when the
    in-process loop is disabled.
    """
    return SweepResultSchema(processed=await scheduler.sweep())
