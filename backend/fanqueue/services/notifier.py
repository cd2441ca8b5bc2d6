"""
Builds and records fan notifications.

Delivery (push, in-app) is handled elsewhere; this module only writes the
append-only notification rows inside the caller's transaction.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.models import Event, Notification, QueueEntry
from fanqueue.models.notification import NotificationKind
from fanqueue.repositories.notification import NotificationRepository

logger = logging.getLogger(__name__)


def build_message(kind: NotificationKind, event: Event, position: Optional[int] = None) -> str:
    if kind == NotificationKind.QUEUE_JOINED:
        return f"You've joined the queue for {event.title}. You are #{position} in line."
    if kind == NotificationKind.POSITION_UPDATE:
        return f"Your position has been updated! You are now #{position} in line."
    if kind == NotificationKind.COMING_UP:
        return f"You're coming up! Your turn for {event.title} is in about 15 minutes."
    if kind == NotificationKind.NEXT_UP:
        return (
            f"You're next! Your turn for {event.title} is in about 5 minutes. "
            f"Please head to {event.location}."
        )
    if kind == NotificationKind.YOUR_TURN:
        return f"It's your turn! Please come to the {event.location}."
    if kind == NotificationKind.MISSED_TURN:
        return f"You missed your turn for {event.title}. Please contact staff if you're still interested."
    if kind == NotificationKind.PAYMENT_FAILED:
        return "Your payment failed. Queue entry has been cancelled."
    raise ValueError(f"Unknown notification kind: {kind}")


class Notifier:
    def __init__(self, notification_repository_class=NotificationRepository):
        self.notification_repository_class = notification_repository_class

    async def emit(
        self,
        session: AsyncSession,
        kind: NotificationKind,
        entry: QueueEntry,
        event: Event,
        now: datetime,
        position: Optional[int] = None,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4(),
            user_id=entry.user_id,
            event_id=event.id,
            queue_entry_id=entry.id,
            kind=kind,
            message=build_message(kind, event, position if position is not None else entry.position),
            is_read=False,
            created_at=now,
        )
        repo = self.notification_repository_class(session)
        await repo.add(notification)
        logger.info(f"Notification {kind.value} queued for user {entry.user_id} (entry {entry.id})")
        return notification
