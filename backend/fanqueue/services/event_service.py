import logging
import secrets
import string
import uuid
from typing import Callable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.core.clock import Clock, utc_now
from fanqueue.core.config import settings
from fanqueue.core.distributed_lock import DistributedLockManager, event_lock, get_lock_manager
from fanqueue.exceptions import APIError, EventNotFoundError, UnauthorizedActionError
from fanqueue.models import Event
from fanqueue.repositories.event import EventRepository
from fanqueue.repositories.queue_entry import QueueEntryRepository
from fanqueue.schemas.event import EventCreate, EventUpdate
from fanqueue.services.renumbering import RenumberingEngine

logger = logging.getLogger(__name__)

EVENT_CODE_ALPHABET = string.ascii_uppercase + string.digits
EVENT_CODE_LENGTH = 6
EVENT_CODE_ATTEMPTS = 10


def generate_event_code(length: int = EVENT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(EVENT_CODE_ALPHABET) for _ in range(length))


class EventService:
    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        lock_manager: Optional[DistributedLockManager] = None,
        event_repository_class=EventRepository,
        queue_entry_repository_class=QueueEntryRepository,
        renumbering_engine: Optional[RenumberingEngine] = None,
        clock: Clock = utc_now,
        lock_timeout: float = settings.EVENT_LOCK_TIMEOUT_SECONDS,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager or get_lock_manager()
        self.event_repository_class = event_repository_class
        self.queue_entry_repository_class = queue_entry_repository_class
        self.renumbering_engine = renumbering_engine or RenumberingEngine(settings.POSITION_UPDATE_THRESHOLD)
        self.clock = clock
        self.lock_timeout = lock_timeout

    async def create_event(self, organizer_id: uuid.UUID, data: EventCreate) -> Event:
        async with self.session_factory() as session:
            repo = self.event_repository_class(session)

            # The unique constraint on event_code backs this check
            for _ in range(EVENT_CODE_ATTEMPTS):
                code = generate_event_code()
                if not await repo.code_exists(code):
                    break
            else:
                logger.error(f"Could not find a free event code after {EVENT_CODE_ATTEMPTS} attempts")
                raise APIError("Could not create the event. Please try again.", status_code=503)

            now = self.clock()
            event = Event(
                id=uuid.uuid4(),
                organizer_id=organizer_id,
                title=data.title,
                description=data.description,
                location=data.location,
                event_code=code,
                start_time=data.start_time,
                end_time=data.end_time,
                max_duration=data.resolved_max_duration(),
                slot_duration=data.slot_duration,
                max_capacity=data.resolved_max_capacity(),
                physical_line_threshold=data.physical_line_threshold,
                is_active=True,
                price=data.price,
                currency=(data.currency or settings.DEFAULT_CURRENCY).lower(),
                payment_account_id=data.payment_account_id,
                created_at=now,
                updated_at=now,
            )
            await repo.create(event)
            await session.commit()
            logger.info(f"Organizer {organizer_id} created event {event.id} ({code}), capacity {event.max_capacity}")
            return event

    async def _with_count(self, session: AsyncSession, event: Event) -> Tuple[Event, int]:
        count = await self.queue_entry_repository_class(session).count_non_cancelled(event.id)
        return event, count

    async def get_event(self, event_id: uuid.UUID) -> Tuple[Event, int]:
        """Event plus its current non-cancelled queue count."""
        async with self.session_factory() as session:
            event = await self.event_repository_class(session).get_by_id(event_id)
            if not event:
                raise EventNotFoundError()
            return await self._with_count(session, event)

    async def get_event_by_code(self, event_code: str) -> Tuple[Event, int]:
        async with self.session_factory() as session:
            event = await self.event_repository_class(session).get_by_code(event_code.strip().upper())
            if not event:
                raise EventNotFoundError()
            return await self._with_count(session, event)

    async def list_organizer_events(self, organizer_id: uuid.UUID) -> List[Tuple[Event, int]]:
        async with self.session_factory() as session:
            events = await self.event_repository_class(session).get_by_organizer(organizer_id)
            return [await self._with_count(session, event) for event in events]

    async def list_active_events(self) -> List[Tuple[Event, int]]:
        async with self.session_factory() as session:
            events = await self.event_repository_class(session).get_active()
            return [await self._with_count(session, event) for event in events]

    async def update_event(self, event_id: uuid.UUID, organizer_id: uuid.UUID, data: EventUpdate) -> Event:
        """
        Apply organizer edits. Changing the schedule re-derives every waiting
        fan's estimated call time in the same transaction.
        """
        changes = data.changes()

        async with event_lock(self.lock_manager, event_id, self.lock_timeout):
            async with self.session_factory() as session:
                event = await self.event_repository_class(session).get_by_id(event_id, for_update=True)
                if not event:
                    raise EventNotFoundError()
                if event.organizer_id != organizer_id:
                    raise UnauthorizedActionError("You can only edit your own events.")

                start_time = changes.get("start_time", event.start_time)
                end_time = changes.get("end_time", event.end_time)
                if end_time <= start_time:
                    raise APIError("end_time must be after start_time", status_code=422)

                for field, value in changes.items():
                    setattr(event, field, value)
                event.updated_at = self.clock()

                rescheduled = []
                if any(field in changes for field in EventUpdate.SCHEDULE_FIELDS):
                    waiting = await self.queue_entry_repository_class(session).get_waiting_for_event(
                        event_id, for_update=True
                    )
                    rescheduled = self.renumbering_engine.reschedule(event, waiting)

                await self.event_repository_class(session).update(event)
                await session.commit()

                logger.info(
                    f"Event {event_id} updated ({', '.join(sorted(changes)) or 'no fields'}); "
                    f"{len(rescheduled)} waiting entries rescheduled"
                )
                return event
