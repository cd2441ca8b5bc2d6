from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from fanqueue.models.notification import NotificationKind


class NotificationSchema(BaseModel):
    id: UUID
    user_id: UUID
    event_id: UUID
    queue_entry_id: UUID
    kind: NotificationKind
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UnreadCountSchema(BaseModel):
    unread: int


class MarkedReadSchema(BaseModel):
    marked: int
