"""
Lifecycle of a single queue entry.

    waiting --cancel--> cancelled
    waiting --call----> called --complete--> completed
    waiting --miss----> missed

cancelled, completed and missed are terminal. A transition is validated in
full before anything is written, so a rejected transition leaves the entry
untouched.

Every write to an entry goes through one of the patch types below; each one
lists exactly the columns its operation may touch.
"""
import logging
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from fanqueue.exceptions import InvalidTransitionError, UnauthorizedActionError
from fanqueue.models import Event, QueueEntry
from fanqueue.models.notification import NotificationKind
from fanqueue.models.queue_entry import EntryStatus, PaymentStatus

logger = logging.getLogger(__name__)


class EntryAction(str, Enum):
    CANCEL = "cancel"
    CALL = "call"
    COMPLETE = "complete"
    MISS = "miss"


@dataclass(frozen=True)
class Actor:
    """Who is asking for a transition. System actors come from the sweep and payment callbacks."""
    user_id: Optional[uuid.UUID] = None
    is_system: bool = False

    @classmethod
    def system(cls) -> "Actor":
        return cls(is_system=True)

    @classmethod
    def user(cls, user_id: uuid.UUID) -> "Actor":
        return cls(user_id=user_id)


# --- Patches ---

@dataclass(frozen=True)
class CancelPatch:
    status: EntryStatus = EntryStatus.CANCELLED


@dataclass(frozen=True)
class CallPatch:
    called_at: datetime
    status: EntryStatus = EntryStatus.CALLED


@dataclass(frozen=True)
class CompletePatch:
    completed_at: datetime
    status: EntryStatus = EntryStatus.COMPLETED


@dataclass(frozen=True)
class MissPatch:
    notifications_sent: list
    status: EntryStatus = EntryStatus.MISSED


@dataclass(frozen=True)
class RenumberPatch:
    position: int
    estimated_call_time: datetime


@dataclass(frozen=True)
class SchedulePatch:
    estimated_call_time: datetime


@dataclass(frozen=True)
class NotificationTagPatch:
    notifications_sent: list


@dataclass(frozen=True)
class PaymentPatch:
    payment_status: PaymentStatus
    amount_paid: Optional[int]


EntryPatch = Union[
    CancelPatch,
    CallPatch,
    CompletePatch,
    MissPatch,
    RenumberPatch,
    SchedulePatch,
    NotificationTagPatch,
    PaymentPatch,
]


def apply_patch(entry: QueueEntry, patch: EntryPatch) -> QueueEntry:
    for f in fields(patch):
        setattr(entry, f.name, getattr(patch, f.name))
    return entry


def tag_patch(entry: QueueEntry, kind: NotificationKind) -> NotificationTagPatch:
    # A fresh list so the JSON column registers the change
    sent = list(entry.notifications_sent or [])
    if kind.value not in sent:
        sent.append(kind.value)
    return NotificationTagPatch(notifications_sent=sent)


# --- Transition rules ---

ALLOWED_SOURCES = {
    EntryAction.CANCEL: frozenset({EntryStatus.WAITING}),
    EntryAction.CALL: frozenset({EntryStatus.WAITING}),
    EntryAction.COMPLETE: frozenset({EntryStatus.CALLED}),
    EntryAction.MISS: frozenset({EntryStatus.WAITING}),
}


def can_transition(status: EntryStatus, action: EntryAction) -> bool:
    return status in ALLOWED_SOURCES[action]


# Payment status only moves forward; callbacks arrive in no particular order
PAYMENT_PROGRESSIONS = {
    None: frozenset({PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_advance_payment(current: Optional[PaymentStatus], new: PaymentStatus) -> bool:
    current = PaymentStatus(current) if current is not None else None
    return new in PAYMENT_PROGRESSIONS[current]


def is_overdue(entry: QueueEntry, now: datetime, grace: timedelta) -> bool:
    """True once the entry is more than `grace` past its estimated call time and not yet marked missed."""
    return (
        entry.estimated_call_time < now - grace
        and not entry.has_sent(NotificationKind.MISSED_TURN)
    )


def _authorize(entry: QueueEntry, action: EntryAction, actor: Actor, event: Event) -> None:
    if action == EntryAction.CANCEL:
        if actor.is_system or actor.user_id == entry.user_id:
            return
        raise UnauthorizedActionError("You can only cancel your own queue entries.")

    if action in (EntryAction.CALL, EntryAction.COMPLETE):
        if not actor.is_system and actor.user_id == event.organizer_id:
            return
        raise UnauthorizedActionError("Only the event organizer can do this.")

    if action == EntryAction.MISS:
        if actor.is_system:
            return
        raise UnauthorizedActionError("Missed turns are detected automatically.")


def plan_transition(
    entry: QueueEntry,
    action: EntryAction,
    actor: Actor,
    event: Event,
    now: datetime,
    missed_grace: timedelta = timedelta(minutes=5),
) -> EntryPatch:
    """
    Validate `action` against the entry and return the patch that performs it.

    Raises:
        UnauthorizedActionError: actor may not perform this action
        InvalidTransitionError: entry is not in a source state for this action
    """
    _authorize(entry, action, actor, event)

    if not can_transition(entry.status, action):
        raise InvalidTransitionError(
            f"Cannot {action.value} a queue entry that is {EntryStatus(entry.status).value}."
        )

    if action == EntryAction.CANCEL:
        return CancelPatch()
    if action == EntryAction.CALL:
        return CallPatch(called_at=now)
    if action == EntryAction.COMPLETE:
        return CompletePatch(completed_at=now)

    # MISS
    if not is_overdue(entry, now, missed_grace):
        raise InvalidTransitionError("This queue entry's turn has not been missed.")
    return MissPatch(notifications_sent=tag_patch(entry, NotificationKind.MISSED_TURN).notifications_sent)


def transition(
    entry: QueueEntry,
    action: EntryAction,
    actor: Actor,
    event: Event,
    now: datetime,
    missed_grace: timedelta = timedelta(minutes=5),
) -> QueueEntry:
    patch = plan_transition(entry, action, actor, event, now, missed_grace)
    old_status = EntryStatus(entry.status)
    apply_patch(entry, patch)
    logger.info(
        f"Queue entry {entry.id} (event {entry.event_id}): {old_status.value} -> {EntryStatus(entry.status).value} "
        f"via {action.value} by {'system' if actor.is_system else actor.user_id}"
    )
    return entry
