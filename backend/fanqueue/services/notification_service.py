import logging
import uuid
from typing import Callable, List

from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.exceptions import NotificationNotFoundError
from fanqueue.models import Notification
from fanqueue.repositories.notification import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """Read side of fan notifications. Rows are append-only apart from the read flag."""

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        notification_repository_class=NotificationRepository,
    ):
        self.session_factory = session_factory
        self.notification_repository_class = notification_repository_class

    async def list_notifications(self, user_id: uuid.UUID, limit: int = 50) -> List[Notification]:
        async with self.session_factory() as session:
            return await self.notification_repository_class(session).get_for_user(user_id, limit=limit)

    async def unread_count(self, user_id: uuid.UUID) -> int:
        async with self.session_factory() as session:
            return await self.notification_repository_class(session).count_unread(user_id)

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        async with self.session_factory() as session:
            repo = self.notification_repository_class(session)
            notification = await repo.get_by_id(notification_id)
            # Someone else's notification is reported as missing
            if not notification or notification.user_id != user_id:
                raise NotificationNotFoundError()

            if not notification.is_read:
                notification.is_read = True
                await repo.update(notification)
                await session.commit()
            return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        async with self.session_factory() as session:
            marked = await self.notification_repository_class(session).mark_all_read(user_id)
            await session.commit()
            logger.debug(f"Marked {marked} notifications read for user {user_id}")
            return marked
