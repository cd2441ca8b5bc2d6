import itertools
from datetime import timedelta

import pytest

from fanqueue.exceptions import QueueConsistencyError
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.services.renumbering import RenumberingEngine, find_duplicate_positions, recompute


@pytest.fixture
def event(make_event):
    return make_event(slot_duration=10)


def test_cancel_first_of_three_shifts_the_rest(event, make_entry):
    """U1 leaves; U2 -> 1 at T, U3 -> 2 at T+10m, neither moved far enough to be told."""
    u2 = make_entry(event, 2)
    u3 = make_entry(event, 3)
    engine = RenumberingEngine(position_update_threshold=3)

    changes = engine.renumber(event, [u3, u2])

    assert (u2.position, u2.estimated_call_time) == (1, event.start_time)
    assert (u3.position, u3.estimated_call_time) == (2, event.start_time + timedelta(minutes=10))
    assert [c.improvement for c in changes] == [1, 1]
    assert not any(engine.should_notify(c) for c in changes)


def test_only_changed_entries_are_reported(event, make_entry):
    entries = [make_entry(event, 1), make_entry(event, 2), make_entry(event, 4)]

    changes = recompute(event, entries)

    assert len(changes) == 1
    assert changes[0].old_position == 4
    assert changes[0].new_position == 3
    # recompute plans only
    assert entries[2].position == 4


def test_large_jump_is_notified(event, make_entry):
    entry = make_entry(event, 5)
    engine = RenumberingEngine(position_update_threshold=3)

    (change,) = engine.renumber(event, [entry])

    assert change.improvement == 4
    assert engine.should_notify(change)


def test_threshold_is_configurable(event, make_entry):
    entry = make_entry(event, 2)
    engine = RenumberingEngine(position_update_threshold=1)

    (change,) = engine.renumber(event, [entry])

    assert engine.should_notify(change)


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        RenumberingEngine(position_update_threshold=0)


def test_result_is_permutation_for_any_gaps(event, make_entry):
    for positions in itertools.permutations([2, 5, 9, 11]):
        entries = [make_entry(event, p) for p in positions]
        RenumberingEngine().renumber(event, entries)

        ordered = sorted(entries, key=lambda e: e.position)
        assert [e.position for e in ordered] == [1, 2, 3, 4]
        # Relative order is preserved
        assert [e.estimated_call_time for e in ordered] == [
            event.start_time + timedelta(minutes=10 * i) for i in range(4)
        ]


def test_already_compact_pool_is_untouched(event, make_entry):
    entries = [make_entry(event, p) for p in (1, 2, 3)]

    assert RenumberingEngine().renumber(event, entries) == []


def test_duplicate_positions_abort(event, make_entry):
    entries = [make_entry(event, 1), make_entry(event, 3), make_entry(event, 3)]
    assert find_duplicate_positions(entries) == [3]

    with pytest.raises(QueueConsistencyError):
        RenumberingEngine().renumber(event, entries)

    assert [e.position for e in entries] == [1, 3, 3]


def test_non_waiting_entries_abort(event, make_entry):
    entries = [make_entry(event, 2), make_entry(event, 3, status=EntryStatus.CALLED)]

    with pytest.raises(QueueConsistencyError):
        RenumberingEngine().renumber(event, entries)


def test_reschedule_moves_estimates_not_positions(event, make_entry):
    entries = [make_entry(event, 1), make_entry(event, 2)]
    event.start_time = event.start_time + timedelta(minutes=30)
    event.physical_line_threshold = 2

    updated = RenumberingEngine().reschedule(event, entries)

    assert updated == entries
    assert [e.position for e in entries] == [1, 2]
    assert entries[0].estimated_call_time == event.start_time + timedelta(minutes=20)
    assert entries[1].estimated_call_time == event.start_time + timedelta(minutes=30)
