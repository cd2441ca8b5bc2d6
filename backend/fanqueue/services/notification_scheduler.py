"""
Periodic notification sweep.

For every active event with waiting fans, the sweep walks the waiting pool in
position order and
  - sends `coming_up` once the estimated call time is within 15 minutes,
  - sends `next_up` once it is within 5 minutes,
  - marks the entry missed once it is more than 5 minutes overdue.

A miss renumbers the pool immediately, so entries further back are evaluated
against their new estimates in the same pass. Every notification kind is
sent at most once per entry.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from fanqueue.core.config import settings
from fanqueue.exceptions import APIError
from fanqueue.models import QueueEntry
from fanqueue.models.notification import NotificationKind
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.services.entry_state_machine import (
    Actor,
    EntryAction,
    apply_patch,
    is_overdue,
    tag_patch,
    transition,
)
from fanqueue.services.queue_manager import QueueManagerService

logger = logging.getLogger(__name__)


def due_notification(
    entry: QueueEntry,
    now: datetime,
    coming_up_window: timedelta = timedelta(minutes=15),
    next_up_window: timedelta = timedelta(minutes=5),
) -> Optional[NotificationKind]:
    """The proximity notification this entry is owed right now, if any."""
    call_time = entry.estimated_call_time

    if now + next_up_window < call_time <= now + coming_up_window:
        if not entry.has_sent(NotificationKind.COMING_UP):
            return NotificationKind.COMING_UP
    elif now < call_time <= now + next_up_window:
        if not entry.has_sent(NotificationKind.NEXT_UP):
            return NotificationKind.NEXT_UP
    return None


class NotificationSchedulerService:
    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        queue_manager_service: QueueManagerService,
        clock=None,
        interval_seconds: int = settings.SWEEP_INTERVAL_SECONDS,
        coming_up_minutes: int = settings.COMING_UP_WINDOW_MINUTES,
        next_up_minutes: int = settings.NEXT_UP_WINDOW_MINUTES,
        missed_grace_minutes: int = settings.MISSED_GRACE_MINUTES,
    ):
        self.session_factory = session_factory
        self.queue_manager = queue_manager_service
        self.clock = clock or queue_manager_service.clock
        self.interval_seconds = interval_seconds
        self.coming_up_window = timedelta(minutes=coming_up_minutes)
        self.next_up_window = timedelta(minutes=next_up_minutes)
        self.missed_grace = timedelta(minutes=missed_grace_minutes)

        self._running = False
        self._sweep_task = None

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Run one pass over every active event.

        Returns:
            Number of waiting entries evaluated
        """
        now = now or self.clock()

        async with self.session_factory() as session:
            event_ids = await self.queue_manager.event_repository_class(session).get_active_ids_with_waiting_entries()

        processed = 0
        for event_id in event_ids:
            try:
                processed += await self._sweep_event(event_id, now)
            except APIError as e:
                # One busy or broken event must not hold up the others
                logger.warning(f"Sweep skipped event {event_id}: {e.message}")

        logger.info(f"Notification sweep at {now.isoformat()} evaluated {processed} entries across {len(event_ids)} events")
        return processed

    async def _sweep_event(self, event_id: uuid.UUID, now: datetime) -> int:
        qm = self.queue_manager
        async with qm.event_critical_section(event_id):
            async with self.session_factory() as session:
                event = await qm.event_repository_class(session).get_by_id(event_id, for_update=True)
                if not event or not event.is_active:
                    return 0

                waiting = await qm.queue_entry_repository_class(session).get_waiting_for_event(event_id, for_update=True)

                processed = 0
                for entry in waiting:
                    # An earlier miss in this pass may have moved this entry; it is never un-waited though
                    if entry.status != EntryStatus.WAITING:
                        continue
                    processed += 1

                    kind = due_notification(entry, now, self.coming_up_window, self.next_up_window)
                    if kind is not None:
                        apply_patch(entry, tag_patch(entry, kind))
                        await qm.notifier.emit(session, kind, entry, event, now)

                    if is_overdue(entry, now, self.missed_grace):
                        transition(entry, EntryAction.MISS, Actor.system(), event, now, self.missed_grace)
                        await qm.notifier.emit(session, NotificationKind.MISSED_TURN, entry, event, now)
                        await qm.renumber_in_session(session, event)

                await session.commit()
                return processed

    # --- Background loop ---

    async def start_sweep_task(self):
        if self.interval_seconds <= 0:
            logger.info("Notification sweep loop disabled (interval 0); relying on the scheduler endpoint")
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Notification Sweep Task Started")

    async def stop_sweep_task(self):
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        logger.info("Notification Sweep Task Stopped")

    async def _sweep_loop(self):
        cycle_count = 0
        error_count = 0
        last_error = None
        entries_processed = 0

        while self._running:
            try:
                entries_processed += await self.sweep()
                cycle_count += 1

                await self._report_health(
                    status="running",
                    metrics={
                        "cycle_count": cycle_count,
                        "entries_processed": entries_processed,
                        "error_count": error_count,
                        "last_error": last_error
                    }
                )
            except Exception as e:
                error_count += 1
                last_error = str(e)
                logger.error(f"Error in notification sweep loop: {e}")

                await self._report_health(
                    status="error",
                    metrics={
                        "cycle_count": cycle_count,
                        "entries_processed": entries_processed,
                        "error_count": error_count,
                        "last_error": last_error
                    }
                )

            await asyncio.sleep(self.interval_seconds)

    async def _report_health(self, status: str, metrics: dict = None):
        """Report service health to cache."""
        try:
            from fanqueue.core.cache import get_cache
            cache = await get_cache()
            await cache.update_service_health("notification_sweep", status, metrics)
        except Exception as e:
            logger.debug(f"Failed to report health: {e}")
