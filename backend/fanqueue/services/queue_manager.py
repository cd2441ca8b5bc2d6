import logging
import uuid
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.core.clock import Clock, utc_now
from fanqueue.core.config import settings
from fanqueue.core.distributed_lock import DistributedLockManager, event_lock, get_lock_manager
from fanqueue.exceptions import (
    AlreadyInQueueError,
    EntryNotFoundError,
    EventNotFoundError,
    PaymentIntentInUseError,
    QueueConsistencyError,
    QueueEmptyError,
    UnauthorizedActionError,
)
from fanqueue.models import Event, QueueEntry
from fanqueue.models.notification import NotificationKind
from fanqueue.models.queue_entry import EntryStatus, PaymentStatus
from fanqueue.repositories.event import EventRepository
from fanqueue.repositories.notification import NotificationRepository
from fanqueue.repositories.queue_entry import QueueEntryRepository
from fanqueue.schemas.payment import PaymentUpdate
from fanqueue.services.entry_state_machine import (
    Actor,
    EntryAction,
    PaymentPatch,
    apply_patch,
    can_advance_payment,
    transition,
)
from fanqueue.services.notifier import Notifier
from fanqueue.services.position_allocator import allocate
from fanqueue.services.renumbering import PositionChange, RenumberingEngine

logger = logging.getLogger(__name__)


class QueueManagerService:
    """
    Owns every mutation of an event's queue.

    Each mutating operation runs inside the event's critical section and one
    database transaction: the transition, the renumbering it triggers and the
    notifications it emits commit together or not at all.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        lock_manager: Optional[DistributedLockManager] = None,
        queue_entry_repository_class=QueueEntryRepository,
        event_repository_class=EventRepository,
        notification_repository_class=NotificationRepository,
        renumbering_engine: Optional[RenumberingEngine] = None,
        clock: Clock = utc_now,
        lock_timeout: float = settings.EVENT_LOCK_TIMEOUT_SECONDS,
        missed_grace_minutes: int = settings.MISSED_GRACE_MINUTES,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager or get_lock_manager()
        self.queue_entry_repository_class = queue_entry_repository_class
        self.event_repository_class = event_repository_class
        self.notifier = Notifier(notification_repository_class)
        self.renumbering_engine = renumbering_engine or RenumberingEngine(settings.POSITION_UPDATE_THRESHOLD)
        self.clock = clock
        self.lock_timeout = lock_timeout
        self.missed_grace = timedelta(minutes=missed_grace_minutes)

    def event_critical_section(self, event_id: uuid.UUID):
        return event_lock(self.lock_manager, event_id, self.lock_timeout)

    async def _event_id_for_entry(self, entry_id: uuid.UUID) -> uuid.UUID:
        async with self.session_factory() as session:
            entry = await self.queue_entry_repository_class(session).get_by_id(entry_id)
            if not entry:
                raise EntryNotFoundError()
            return entry.event_id

    # --- Mutations ---

    async def join(
        self,
        event_id: uuid.UUID,
        user_id: uuid.UUID,
        payment_intent_id: Optional[str] = None,
    ) -> QueueEntry:
        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                event_repo = self.event_repository_class(session)
                entry_repo = self.queue_entry_repository_class(session)

                event = await event_repo.get_by_id(event_id, for_update=True)
                existing = await entry_repo.get_event_queue(event_id) if event else []
                intent_holder = None
                if event and payment_intent_id:
                    intent_holder = await entry_repo.get_by_payment_intent(payment_intent_id)

                now = self.clock()
                entry = allocate(
                    event,
                    existing,
                    user_id,
                    now,
                    payment_intent_id=payment_intent_id,
                    payment_intent_holder=intent_holder,
                )

                try:
                    await entry_repo.create(entry)
                except IntegrityError:
                    # Another worker inserted a conflicting entry without our lock
                    await session.rollback()
                    if payment_intent_id and await entry_repo.get_by_payment_intent(payment_intent_id):
                        logger.warning(f"Payment intent {payment_intent_id} was claimed concurrently; rejecting join")
                        raise PaymentIntentInUseError()
                    logger.warning(f"Live-entry constraint rejected join of user {user_id} to event {event_id}")
                    raise AlreadyInQueueError()

                await self.notifier.emit(session, NotificationKind.QUEUE_JOINED, entry, event, now)
                await session.commit()

                logger.info(
                    f"User {user_id} joined event {event_id} at position {entry.position} "
                    f"(estimated call {entry.estimated_call_time.isoformat()})"
                )
                return entry

    async def cancel(self, entry_id: uuid.UUID, user_id: uuid.UUID) -> QueueEntry:
        """Fan leaves the queue."""
        event_id = await self._event_id_for_entry(entry_id)

        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                entry, event = await self._load_entry_and_event(session, entry_id)

                transition(entry, EntryAction.CANCEL, Actor.user(user_id), event, self.clock())
                await self.renumber_in_session(session, event)
                await session.commit()
                return entry

    async def call_next(self, event_id: uuid.UUID, organizer_id: uuid.UUID) -> QueueEntry:
        """Organizer calls the first waiting fan forward."""
        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                event = await self.event_repository_class(session).get_by_id(event_id, for_update=True)
                if not event:
                    raise EventNotFoundError()
                if event.organizer_id != organizer_id:
                    raise UnauthorizedActionError("Only the event organizer can do this.")

                waiting = await self.queue_entry_repository_class(session).get_waiting_for_event(
                    event_id, for_update=True
                )
                if not waiting:
                    raise QueueEmptyError()

                now = self.clock()
                entry = transition(waiting[0], EntryAction.CALL, Actor.user(organizer_id), event, now)
                await self.notifier.emit(session, NotificationKind.YOUR_TURN, entry, event, now)
                await self.renumber_in_session(session, event)
                await session.commit()
                return entry

    async def complete(self, entry_id: uuid.UUID, organizer_id: uuid.UUID) -> QueueEntry:
        event_id = await self._event_id_for_entry(entry_id)

        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                entry, event = await self._load_entry_and_event(session, entry_id)

                transition(entry, EntryAction.COMPLETE, Actor.user(organizer_id), event, self.clock())
                await self.renumber_in_session(session, event)
                await session.commit()
                return entry

    async def mark_missed(self, entry_id: uuid.UUID) -> QueueEntry:
        """
        System transition for an overdue waiting entry. The notification sweep
        normally does this itself; this entry point exists for operator tooling.
        """
        event_id = await self._event_id_for_entry(entry_id)

        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                entry, event = await self._load_entry_and_event(session, entry_id)

                now = self.clock()
                transition(entry, EntryAction.MISS, Actor.system(), event, now, self.missed_grace)
                await self.notifier.emit(session, NotificationKind.MISSED_TURN, entry, event, now)
                await self.renumber_in_session(session, event)
                await session.commit()
                return entry

    async def renumber(self, event_id: uuid.UUID) -> List[PositionChange]:
        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                event = await self.event_repository_class(session).get_by_id(event_id, for_update=True)
                if not event:
                    raise EventNotFoundError()
                changes = await self.renumber_in_session(session, event)
                await session.commit()
                return changes

    async def update_payment_status(self, update: PaymentUpdate) -> Optional[QueueEntry]:
        """
        Apply a settled payment callback to the entry holding the intent.

        A failed payment cancels a still-waiting entry. Succeeded and refunded
        callbacks are recorded only. Callbacks that would move the payment
        backwards, and unknown intents, are logged and ignored.
        """
        async with self.session_factory() as session:
            found = await self.queue_entry_repository_class(session).get_by_payment_intent(update.payment_intent_id)
            if not found:
                logger.error(f"Payment callback for unknown intent {update.payment_intent_id} ({update.status.value})")
                return None
            entry_id, event_id = found.id, found.event_id

        async with self.event_critical_section(event_id):
            async with self.session_factory() as session:
                entry, event = await self._load_entry_and_event(session, entry_id)

                if not can_advance_payment(entry.payment_status, update.status):
                    current = PaymentStatus(entry.payment_status).value if entry.payment_status else "none"
                    logger.warning(
                        f"Ignoring stale payment callback for {update.payment_intent_id}: "
                        f"entry {entry.id} is already {current}, callback says {update.status.value}"
                    )
                    return entry

                amount = update.amount if update.amount is not None else entry.amount_paid
                apply_patch(entry, PaymentPatch(payment_status=update.status, amount_paid=amount))
                logger.info(f"Payment {update.payment_intent_id} for entry {entry.id} is now {update.status.value}")

                if update.status == PaymentStatus.FAILED:
                    if entry.status == EntryStatus.WAITING:
                        now = self.clock()
                        transition(entry, EntryAction.CANCEL, Actor.system(), event, now)
                        await self.notifier.emit(session, NotificationKind.PAYMENT_FAILED, entry, event, now)
                        await self.renumber_in_session(session, event)
                    else:
                        logger.warning(
                            f"Payment {update.payment_intent_id} failed for entry {entry.id} "
                            f"already {EntryStatus(entry.status).value}; status recorded only"
                        )

                await session.commit()
                return entry

    # --- Helpers shared with the notification sweep ---

    async def _load_entry_and_event(self, session: AsyncSession, entry_id: uuid.UUID):
        entry = await self.queue_entry_repository_class(session).get_by_id(entry_id, for_update=True)
        if not entry:
            raise EntryNotFoundError()
        event = await self.event_repository_class(session).get_by_id(entry.event_id, for_update=True)
        if not event:
            raise EventNotFoundError()
        return entry, event

    async def renumber_in_session(self, session: AsyncSession, event: Event) -> List[PositionChange]:
        """
        Compact the event's waiting pool inside the caller's transaction and
        send position updates to fans who moved up far enough.

        A consistency violation skips this pass and leaves positions as they
        are; the caller's own transition still commits.
        """
        await session.flush()
        waiting = await self.queue_entry_repository_class(session).get_waiting_for_event(event.id, for_update=True)

        try:
            changes = self.renumbering_engine.renumber(event, waiting)
        except QueueConsistencyError:
            return []

        now = self.clock()
        for change in changes:
            if self.renumbering_engine.should_notify(change):
                await self.notifier.emit(
                    session, NotificationKind.POSITION_UPDATE, change.entry, event, now, position=change.new_position
                )
        return changes

    # --- Reads ---

    async def get_entry(self, entry_id: uuid.UUID) -> QueueEntry:
        async with self.session_factory() as session:
            entry = await self.queue_entry_repository_class(session).get_by_id(entry_id)
            if not entry:
                raise EntryNotFoundError()
            return entry

    async def get_event_queue(self, event_id: uuid.UUID, organizer_id: Optional[uuid.UUID] = None) -> List[QueueEntry]:
        """Non-cancelled entries of an event in position order."""
        async with self.session_factory() as session:
            event = await self.event_repository_class(session).get_by_id(event_id)
            if not event:
                raise EventNotFoundError()
            if organizer_id is not None and event.organizer_id != organizer_id:
                # Other organizers' queues are reported as missing
                raise EventNotFoundError()
            return await self.queue_entry_repository_class(session).get_event_queue(event_id)

    async def get_user_entries(self, user_id: uuid.UUID) -> List[QueueEntry]:
        async with self.session_factory() as session:
            return await self.queue_entry_repository_class(session).get_for_user(user_id)
