from typing import List
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.models import Notification
from fanqueue.repositories.base import BaseRepository


class NotificationRepository(BaseRepository[Notification]):
    def __init__(self, session: AsyncSession):
        super().__init__(Notification, session)

    async def get_by_id(self, notification_id: UUID) -> Notification | None:
        return await self.get(notification_id)

    async def add(self, notification: Notification) -> Notification:
        """Stage a notification in the current transaction without a refresh round-trip."""
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get_for_user(self, user_id: UUID, limit: int = 50) -> List[Notification]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_for_entry(self, queue_entry_id: UUID) -> List[Notification]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.queue_entry_id == queue_entry_id)
            .order_by(self.model.created_at.asc())
        )
        return list(result.scalars().all())

    async def count_unread(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(self.model.id)).where(
                self.model.user_id == user_id,
                self.model.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_all_read(self, user_id: UUID) -> int:
        result = await self.session.execute(
            update(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.is_read.is_(False),
            )
            .values(is_read=True)
        )
        return result.rowcount
