from typing import List
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.models import Event, QueueEntry
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.repositories.base import BaseRepository


class EventRepository(BaseRepository[Event]):
    def __init__(self, session: AsyncSession):
        super().__init__(Event, session)

    async def get_by_id(self, event_id: UUID, for_update: bool = False) -> Event | None:
        return await self.get(event_id, for_update=for_update)

    async def get_by_code(self, event_code: str) -> Event | None:
        result = await self.session.execute(
            select(self.model).where(self.model.event_code == event_code)
        )
        return result.scalars().first()

    async def code_exists(self, event_code: str) -> bool:
        result = await self.session.execute(
            select(func.count(self.model.id)).where(self.model.event_code == event_code)
        )
        return result.scalar_one() > 0

    async def get_by_organizer(self, organizer_id: UUID) -> List[Event]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.organizer_id == organizer_id)
            .order_by(self.model.start_time.desc())
        )
        return result.scalars().all()

    async def get_active(self) -> List[Event]:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.is_active.is_(True))
            .order_by(self.model.start_time.asc())
        )
        return result.scalars().all()

    async def get_active_ids_with_waiting_entries(self) -> List[UUID]:
        """Events the notification sweep has work for."""
        result = await self.session.execute(
            select(self.model.id)
            .join(QueueEntry, QueueEntry.event_id == self.model.id)
            .where(
                self.model.is_active.is_(True),
                QueueEntry.status == EntryStatus.WAITING,
            )
            .distinct()
        )
        return list(result.scalars().all())
