import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fanqueue.core.distributed_lock import event_resource
from fanqueue.models.notification import NotificationKind
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.repositories.notification import NotificationRepository
from fanqueue.repositories.queue_entry import QueueEntryRepository
from fanqueue.services.notification_scheduler import due_notification

from conftest import NOW


async def _entry(session_factory, entry_id):
    async with session_factory() as session:
        return await QueueEntryRepository(session).get_by_id(entry_id)


async def _kinds(session_factory, entry_id):
    async with session_factory() as session:
        return [n.kind for n in await NotificationRepository(session).get_for_entry(entry_id)]


# --- Window rules ---

@pytest.mark.parametrize(
    "minutes_ahead, expected",
    [
        (16, None),
        (15, NotificationKind.COMING_UP),
        (10, NotificationKind.COMING_UP),
        (5.5, NotificationKind.COMING_UP),
        (5, NotificationKind.NEXT_UP),
        (1, NotificationKind.NEXT_UP),
        (0, None),
        (-3, None),
    ],
)
def test_due_notification_windows(make_event, make_entry, minutes_ahead, expected):
    event = make_event()
    entry = make_entry(event, 1, estimated_call_time=NOW + timedelta(minutes=minutes_ahead))

    assert due_notification(entry, NOW) == expected


def test_due_notification_respects_sent_tags(make_event, make_entry):
    event = make_event()
    entry = make_entry(event, 1, estimated_call_time=NOW + timedelta(minutes=10), notifications_sent=["coming_up"])

    assert due_notification(entry, NOW) is None

    entry.estimated_call_time = NOW + timedelta(minutes=4)
    assert due_notification(entry, NOW) == NotificationKind.NEXT_UP


# --- Sweep ---

@pytest.mark.asyncio
async def test_overdue_entry_is_marked_missed_once(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW - timedelta(minutes=6)))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW - timedelta(minutes=6)))

    processed = await scheduler.sweep(NOW)

    assert processed == 1
    stored = await _entry(session_factory, entry.id)
    assert stored.status == EntryStatus.MISSED
    assert stored.has_sent(NotificationKind.MISSED_TURN)
    assert await _kinds(session_factory, entry.id) == [NotificationKind.MISSED_TURN]

    # Missed entries leave the waiting pool; nothing more is sent
    assert await scheduler.sweep(NOW + timedelta(minutes=1)) == 0
    assert await _kinds(session_factory, entry.id) == [NotificationKind.MISSED_TURN]


@pytest.mark.asyncio
async def test_entry_within_grace_is_left_alone(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW - timedelta(minutes=4)))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW - timedelta(minutes=4)))

    assert await scheduler.sweep(NOW) == 1

    stored = await _entry(session_factory, entry.id)
    assert stored.status == EntryStatus.WAITING
    assert await _kinds(session_factory, entry.id) == []


@pytest.mark.asyncio
async def test_coming_up_then_next_up(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW + timedelta(minutes=12)))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW + timedelta(minutes=12)))

    await scheduler.sweep(NOW)
    await scheduler.sweep(NOW + timedelta(minutes=1))
    assert await _kinds(session_factory, entry.id) == [NotificationKind.COMING_UP]

    await scheduler.sweep(NOW + timedelta(minutes=8))
    assert await _kinds(session_factory, entry.id) == [NotificationKind.COMING_UP, NotificationKind.NEXT_UP]

    stored = await _entry(session_factory, entry.id)
    assert stored.notifications_sent == ["coming_up", "next_up"]


@pytest.mark.asyncio
async def test_notification_messages(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW + timedelta(minutes=3), title="Meet Ada", location="Hall B"))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW + timedelta(minutes=3)))

    await scheduler.sweep(NOW)

    async with session_factory() as session:
        (note,) = await NotificationRepository(session).get_for_entry(entry.id)
    assert note.kind == NotificationKind.NEXT_UP
    assert note.message == "You're next! Your turn for Meet Ada is in about 5 minutes. Please head to Hall B."
    assert note.user_id == entry.user_id
    assert note.is_read is False


@pytest.mark.asyncio
async def test_miss_cascades_to_entries_behind(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW + timedelta(minutes=10), slot_duration=10))
    late = make_entry(event, 1, estimated_call_time=NOW - timedelta(minutes=6))
    behind = make_entry(event, 2, estimated_call_time=NOW + timedelta(minutes=40))
    await persist(late, behind)

    processed = await scheduler.sweep(NOW)

    assert processed == 2
    assert (await _entry(session_factory, late.id)).status == EntryStatus.MISSED
    moved = await _entry(session_factory, behind.id)
    assert moved.position == 1
    assert moved.estimated_call_time == NOW + timedelta(minutes=10)
    # Evaluated against the new estimate in the same pass
    assert await _kinds(session_factory, behind.id) == [NotificationKind.COMING_UP]


@pytest.mark.asyncio
async def test_waiting_pool_stays_compact(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW - timedelta(minutes=20), slot_duration=10, physical_line_threshold=0))
    entries = [make_entry(event, p) for p in range(1, 6)]
    # Only the first entry is overdue; the start moves forward so nobody else cascades
    entries[0].estimated_call_time = NOW - timedelta(minutes=20)
    for e in entries[1:]:
        e.estimated_call_time = NOW + timedelta(hours=1)
    await persist(*entries)

    async with session_factory() as session:
        stored_event = await session.get(type(event), event.id)
        stored_event.start_time = NOW + timedelta(hours=1)
        await session.commit()

    await scheduler.sweep(NOW)

    async with session_factory() as session:
        waiting = await QueueEntryRepository(session).get_waiting_for_event(event.id)
    assert [e.position for e in waiting] == [1, 2, 3, 4]
    assert [e.id for e in waiting] == [e.id for e in entries[1:]]


@pytest.mark.asyncio
async def test_inactive_events_are_skipped(scheduler, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(is_active=False, start_time=NOW - timedelta(hours=1)))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW - timedelta(hours=1)))

    assert await scheduler.sweep(NOW) == 0
    assert (await _entry(session_factory, entry.id)).status == EntryStatus.WAITING


@pytest.mark.asyncio
async def test_busy_event_does_not_block_others(scheduler, queue_manager, lock_manager, make_event, make_entry, persist, session_factory):
    busy = await persist(make_event(start_time=NOW + timedelta(minutes=3)))
    free = await persist(make_event(start_time=NOW + timedelta(minutes=3)))
    busy_entry = await persist(make_entry(busy, 1, estimated_call_time=NOW + timedelta(minutes=3)))
    free_entry = await persist(make_entry(free, 1, estimated_call_time=NOW + timedelta(minutes=3)))
    queue_manager.lock_timeout = 0.05

    async with lock_manager.lock(event_resource(busy.id)):
        processed = await scheduler.sweep(NOW)

    assert processed == 1
    assert await _kinds(session_factory, free_entry.id) == [NotificationKind.NEXT_UP]
    assert await _kinds(session_factory, busy_entry.id) == []


@pytest.mark.asyncio
async def test_sweep_uses_clock_by_default(scheduler, clock, make_event, make_entry, persist, session_factory):
    event = await persist(make_event(start_time=NOW + timedelta(minutes=30)))
    entry = await persist(make_entry(event, 1, estimated_call_time=NOW + timedelta(minutes=30)))

    await scheduler.sweep()
    assert await _kinds(session_factory, entry.id) == []

    clock.advance(timedelta(minutes=20))
    await scheduler.sweep()
    assert await _kinds(session_factory, entry.id) == [NotificationKind.COMING_UP]


# --- Background loop ---

@pytest.mark.asyncio
async def test_loop_disabled_with_zero_interval(scheduler):
    await scheduler.start_sweep_task()

    assert scheduler._sweep_task is None
    await scheduler.stop_sweep_task()


@pytest.mark.asyncio
async def test_loop_runs_and_stops(scheduler):
    scheduler.interval_seconds = 3600
    scheduler.sweep = AsyncMock(return_value=2)
    scheduler._report_health = AsyncMock()

    await scheduler.start_sweep_task()
    await asyncio.sleep(0.01)
    await scheduler.stop_sweep_task()

    scheduler.sweep.assert_awaited_once()
    scheduler._report_health.assert_awaited_once_with(
        status="running",
        metrics={"cycle_count": 1, "entries_processed": 2, "error_count": 0, "last_error": None},
    )


@pytest.mark.asyncio
async def test_loop_reports_errors(scheduler):
    scheduler.interval_seconds = 3600
    scheduler.sweep = AsyncMock(side_effect=RuntimeError("db down"))
    scheduler._report_health = AsyncMock()

    await scheduler.start_sweep_task()
    await asyncio.sleep(0.01)
    await scheduler.stop_sweep_task()

    scheduler._report_health.assert_awaited_once_with(
        status="error",
        metrics={"cycle_count": 0, "entries_processed": 0, "error_count": 1, "last_error": "db down"},
    )
