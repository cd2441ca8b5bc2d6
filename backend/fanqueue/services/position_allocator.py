"""
Position allocation for new queue entries.

A new fan goes to the back of the waiting pool. Their estimated call time is
the event start plus one slot for every person ahead of them, counting the
people already standing in the physical line.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from fanqueue.exceptions import (
    AlreadyInQueueError,
    CapacityExceededError,
    EventInactiveError,
    EventNotFoundError,
    PaymentIntentInUseError,
    PaymentRequiredError,
)
from fanqueue.models import Event, QueueEntry
from fanqueue.models.queue_entry import EntryStatus, PaymentStatus

logger = logging.getLogger(__name__)


def slots_ahead(event: Event, position: int) -> int:
    return position - 1 + (event.physical_line_threshold or 0)


def estimate_call_time(event: Event, position: int) -> datetime:
    """startTime + (position - 1 + physicalLineThreshold) * slotDuration"""
    return event.start_time + timedelta(minutes=slots_ahead(event, position) * event.slot_duration)


def allocate(
    event: Optional[Event],
    existing_entries: Iterable[QueueEntry],
    user_id: uuid.UUID,
    now: datetime,
    payment_intent_id: Optional[str] = None,
    payment_intent_holder: Optional[QueueEntry] = None,
) -> QueueEntry:
    """
    Build the waiting entry for `user_id`, or raise the precondition error that blocks it.

    `existing_entries` are the event's entries; cancelled ones are ignored.
    `payment_intent_holder` is any entry, in any event, already admitted with
    the same payment intent.
    The caller must hold the event's critical section and persist the result.
    """
    if event is None:
        raise EventNotFoundError()

    if not event.is_active:
        raise EventInactiveError()

    if event.requires_payment and not payment_intent_id:
        raise PaymentRequiredError()

    if payment_intent_id and payment_intent_holder is not None:
        # One intent pays for one ticket, whatever became of that ticket
        raise PaymentIntentInUseError()

    entries = [e for e in existing_entries if e.status != EntryStatus.CANCELLED]

    if any(e.user_id == user_id and e.is_live for e in entries):
        raise AlreadyInQueueError()

    if len(entries) >= event.max_capacity:
        logger.info(f"Event {event.id} is full ({len(entries)}/{event.max_capacity}); rejecting user {user_id}")
        raise CapacityExceededError()

    waiting_count = sum(1 for e in entries if e.status == EntryStatus.WAITING)
    position = waiting_count + 1

    entry = QueueEntry(
        id=uuid.uuid4(),
        event_id=event.id,
        user_id=user_id,
        position=position,
        estimated_call_time=estimate_call_time(event, position),
        status=EntryStatus.WAITING,
        joined_at=now,
        notifications_sent=[],
    )

    if payment_intent_id:
        # Settlement arrives later through the payment webhook
        entry.payment_intent_id = payment_intent_id
        entry.payment_status = PaymentStatus.PENDING
        entry.amount_paid = event.price

    return entry
