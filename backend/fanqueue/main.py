import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from fanqueue.api import events, health, notifications, payments, queue, scheduler
from fanqueue.core.cache import close_cache
from fanqueue.core.config import settings
from fanqueue.core.distributed_lock import get_lock_manager
from fanqueue.core.logging_config import setup_logging
from fanqueue.db.database import AsyncSessionLocal
from fanqueue.exceptions import APIError
from fanqueue.rate_limiter import limiter
from fanqueue.services.event_service import EventService
from fanqueue.services.notification_scheduler import NotificationSchedulerService
from fanqueue.services.notification_service import NotificationService
from fanqueue.services.payment_gateway.factory import get_payment_gateway
from fanqueue.services.payment_service import PaymentService
from fanqueue.services.queue_manager import QueueManagerService

logger = logging.getLogger(__name__)

# Validate CORS for production
if settings.ENVIRONMENT == "production":
    if "http://localhost:3000" in settings.CORS_ORIGINS and len(settings.CORS_ORIGINS) == 1:
        logger.error("Production environment detected but CORS_ORIGINS contains only localhost.")
        sys.exit(1)

app = FastAPI(title="fanqueue")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if os.getenv("TESTING") != "true":
    app.add_middleware(SlowAPIMiddleware)


@app.on_event("startup")
async def startup_event():
    setup_logging()

    logger.info(f"Starting up in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS Allowed Origins: {settings.CORS_ORIGINS}")
    logger.info(f"Payment provider: {settings.PAYMENT_PROVIDER}")

    lock_manager = get_lock_manager()

    app.state.queue_manager_service = QueueManagerService(
        session_factory=AsyncSessionLocal,
        lock_manager=lock_manager,
    )
    app.state.event_service = EventService(
        session_factory=AsyncSessionLocal,
        lock_manager=lock_manager,
    )
    app.state.notification_service = NotificationService(session_factory=AsyncSessionLocal)
    app.state.payment_service = PaymentService(
        session_factory=AsyncSessionLocal,
        gateway=get_payment_gateway(),
        queue_manager_service=app.state.queue_manager_service,
    )

    app.state.notification_scheduler = NotificationSchedulerService(
        session_factory=AsyncSessionLocal,
        queue_manager_service=app.state.queue_manager_service,
    )
    await app.state.notification_scheduler.start_sweep_task()


@app.on_event("shutdown")
async def shutdown_event():
    if hasattr(app.state, "notification_scheduler"):
        await app.state.notification_scheduler.stop_sweep_task()
    await close_cache()


app.include_router(health.router, prefix="/api/v1/health", tags=["Health Check"])
app.include_router(events.router, prefix="/api/v1/events", tags=["Events"])
app.include_router(queue.router, prefix="/api/v1/queue", tags=["Queue"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(payments.router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(scheduler.router, prefix="/api/v1/scheduler", tags=["Scheduler"])
