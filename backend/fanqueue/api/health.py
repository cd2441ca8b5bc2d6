import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.core.cache import get_cache
from fanqueue.core.distributed_lock import get_lock_manager
from fanqueue.db.database import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def root_health_check():
    return {"status": "ok"}


@router.get("/db")
async def db_health_check(session: AsyncSession = Depends(get_db_session)):
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )


@router.get("/redis")
async def redis_health_check():
    """Redis is optional: without it event locks are process-local."""
    cache = await get_cache()
    if cache.connected:
        return {"status": "ok", "redis": "connected"}
    return {"status": "degraded", "redis": "not connected", "locking": "local"}


@router.get("/services")
async def services_health_check():
    cache = await get_cache()
    sweep = await cache.get_service_health("notification_sweep")
    return {
        "status": "ok",
        "notification_sweep": sweep or {"status": "unknown"},
        "active_event_locks": get_lock_manager().get_active_locks_count(),
    }
