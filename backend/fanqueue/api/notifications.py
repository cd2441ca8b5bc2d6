import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from fanqueue.api.dependencies.auth import get_current_user_id
from fanqueue.api.dependencies.services import get_notification_service
from fanqueue.schemas.notification import MarkedReadSchema, NotificationSchema, UnreadCountSchema
from fanqueue.services.notification_service import NotificationService

router = APIRouter()


@router.get("/", response_model=List[NotificationSchema])
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    notification_service: NotificationService = Depends(get_notification_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    notifications = await notification_service.list_notifications(user_id, limit=limit)
    return [NotificationSchema.model_validate(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountSchema)
async def unread_count(
    notification_service: NotificationService = Depends(get_notification_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return UnreadCountSchema(unread=await notification_service.unread_count(user_id))


@router.post("/read-all", response_model=MarkedReadSchema)
async def mark_all_read(
    notification_service: NotificationService = Depends(get_notification_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return MarkedReadSchema(marked=await notification_service.mark_all_read(user_id))


@router.post("/{notification_id}/read", response_model=NotificationSchema)
async def mark_read(
    notification_id: uuid.UUID,
    notification_service: NotificationService = Depends(get_notification_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    notification = await notification_service.mark_read(notification_id, user_id)
    return NotificationSchema.model_validate(notification)
