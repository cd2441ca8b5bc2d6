from typing import Generic, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def get(self, pk: UUID, for_update: bool = False) -> ModelType | None:
        if for_update:
            result = await self.session.execute(
                select(self.model).where(self.model.id == pk).with_for_update()
            )
            return result.scalars().first()
        return await self.session.get(self.model, pk)

    async def create(self, instance: ModelType) -> ModelType:
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def update(self, instance: ModelType) -> ModelType:
        self.session.add(instance)  # Re-add the instance to the session to track changes
        await self.session.flush()
        return instance

    async def delete(self, pk: UUID) -> bool:
        instance = await self.get(pk)
        if instance:
            await self.session.delete(instance)
            await self.session.flush()
            return True
        return False
