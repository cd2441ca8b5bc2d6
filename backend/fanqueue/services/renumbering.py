"""
Renumbering of an event's waiting pool.

Whenever an entry leaves the waiting pool the remaining entries are compacted
to positions 1..N in their existing order, and their estimated call times are
re-derived from the new positions.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List

from fanqueue.exceptions import QueueConsistencyError
from fanqueue.models import Event, QueueEntry
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.services.entry_state_machine import RenumberPatch, SchedulePatch, apply_patch
from fanqueue.services.position_allocator import estimate_call_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionChange:
    entry: QueueEntry
    old_position: int
    new_position: int
    new_estimated_call_time: datetime

    @property
    def improvement(self) -> int:
        return self.old_position - self.new_position


def _ordered(waiting_entries: Iterable[QueueEntry]) -> List[QueueEntry]:
    # sorted() is stable; join time only matters if positions ever collide
    return sorted(waiting_entries, key=lambda e: (e.position, e.joined_at))


def find_duplicate_positions(waiting_entries: Iterable[QueueEntry]) -> List[int]:
    counts = Counter(e.position for e in waiting_entries)
    return sorted(position for position, count in counts.items() if count > 1)


def recompute(event: Event, waiting_entries: Iterable[QueueEntry]) -> List[PositionChange]:
    """
    Plan the compaction of the waiting pool. Pure: nothing is written.

    Returns one change per entry whose position differs from its compacted slot.
    """
    changes = []
    for index, entry in enumerate(_ordered(waiting_entries)):
        new_position = index + 1
        if entry.position != new_position:
            changes.append(
                PositionChange(
                    entry=entry,
                    old_position=entry.position,
                    new_position=new_position,
                    new_estimated_call_time=estimate_call_time(event, new_position),
                )
            )
    return changes


class RenumberingEngine:
    """
    Applies renumbering plans and decides who hears about their new position.

    Args:
        position_update_threshold: minimum number of places an entry must move
            up before its owner gets a position_update notification
    """

    def __init__(self, position_update_threshold: int = 3):
        if position_update_threshold < 1:
            raise ValueError("position_update_threshold must be at least 1")
        self.position_update_threshold = position_update_threshold

    def renumber(self, event: Event, waiting_entries: Iterable[QueueEntry]) -> List[PositionChange]:
        """
        Compact the waiting pool in place.

        Raises:
            QueueConsistencyError: if a non-waiting entry is passed in or two
                waiting entries share a position. Nothing is modified.
        """
        waiting_entries = list(waiting_entries)

        strays = [e for e in waiting_entries if e.status != EntryStatus.WAITING]
        if strays:
            logger.error(
                f"Renumbering for event {event.id} received {len(strays)} non-waiting entries; aborting pass"
            )
            raise QueueConsistencyError()

        duplicates = find_duplicate_positions(waiting_entries)
        if duplicates:
            logger.error(
                f"Consistency violation in event {event.id}: duplicate waiting positions {duplicates}. "
                f"Renumbering aborted, positions left unchanged."
            )
            raise QueueConsistencyError()

        changes = recompute(event, waiting_entries)
        for change in changes:
            apply_patch(
                change.entry,
                RenumberPatch(position=change.new_position, estimated_call_time=change.new_estimated_call_time),
            )

        if changes:
            logger.info(f"Renumbered {len(changes)} waiting entries for event {event.id}")
        return changes

    def should_notify(self, change: PositionChange) -> bool:
        # Moving back is not announced; entries only leave, they never jump ahead
        return change.improvement >= self.position_update_threshold

    def reschedule(self, event: Event, waiting_entries: Iterable[QueueEntry]) -> List[QueueEntry]:
        """Re-derive estimated call times after the event's schedule changed. Positions stay as they are."""
        updated = []
        for entry in waiting_entries:
            estimate = estimate_call_time(event, entry.position)
            if entry.estimated_call_time != estimate:
                apply_patch(entry, SchedulePatch(estimated_call_time=estimate))
                updated.append(entry)
        return updated
