from typing import List
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fanqueue.models import QueueEntry
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.repositories.base import BaseRepository


class QueueEntryRepository(BaseRepository[QueueEntry]):
    def __init__(self, session: AsyncSession):
        super().__init__(QueueEntry, session)

    async def get_by_id(self, entry_id: UUID, for_update: bool = False) -> QueueEntry | None:
        return await self.get(entry_id, for_update=for_update)

    async def count_non_cancelled(self, event_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(self.model.id)).where(
                self.model.event_id == event_id,
                self.model.status != EntryStatus.CANCELLED,
            )
        )
        return result.scalar_one()

    async def get_waiting_for_event(self, event_id: UUID, for_update: bool = False) -> List[QueueEntry]:
        """Waiting pool of one event, ordered by position then join time."""
        query = (
            select(self.model)
            .where(
                self.model.event_id == event_id,
                self.model.status == EntryStatus.WAITING,
            )
            .order_by(self.model.position.asc(), self.model.joined_at.asc())
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_event_queue(self, event_id: UUID) -> List[QueueEntry]:
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.event_id == event_id,
                self.model.status != EntryStatus.CANCELLED,
            )
            .order_by(self.model.position.asc(), self.model.joined_at.asc())
        )
        return list(result.scalars().all())

    async def get_for_user(self, user_id: UUID) -> List[QueueEntry]:
        result = await self.session.execute(
            select(self.model)
            .options(selectinload(self.model.event))
            .where(
                self.model.user_id == user_id,
                self.model.status != EntryStatus.CANCELLED,
            )
            .order_by(self.model.joined_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_payment_intent(self, payment_intent_id: str) -> QueueEntry | None:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.payment_intent_id == payment_intent_id)
            .order_by(self.model.joined_at.desc())
        )
        return result.scalars().first()
