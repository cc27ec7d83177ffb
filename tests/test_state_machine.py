from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import InvalidStateTransition
from core.state_machine import EntryStateMachine
from models import EntryStatus, QueueEntry

T0 = datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc)


def make_entry(status):
    return QueueEntry(id="e-1", participant_id="p-1", stand_id="s-1", status=status, joined_at=T0)


def test_full_lifecycle_stamps_timestamps_once():
    entry = make_entry(EntryStatus.WAITING)

    EntryStateMachine.transition(entry, EntryStatus.ACTIVE, T0 + timedelta(minutes=1))
    EntryStateMachine.transition(entry, EntryStatus.COMPLETED, T0 + timedelta(minutes=5))
    EntryStateMachine.transition(entry, EntryStatus.ACTIVE, T0 + timedelta(minutes=6))

    assert entry.status == EntryStatus.ACTIVE
    assert entry.joined_at == T0
    assert entry.started_at == T0 + timedelta(minutes=1)
    assert entry.completed_at is None


def test_leave_stamps_left_at():
    entry = make_entry(EntryStatus.ACTIVE)

    EntryStateMachine.transition(entry, EntryStatus.LEFT, T0)

    assert entry.status == EntryStatus.LEFT
    assert entry.left_at == T0


@pytest.mark.parametrize("terminal", [EntryStatus.LEFT, EntryStatus.CANCELLED])
@pytest.mark.parametrize("target", list(EntryStatus))
def test_terminal_states_have_no_exit(terminal, target):
    entry = make_entry(terminal)

    with pytest.raises(InvalidStateTransition):
        EntryStateMachine.transition(entry, target, T0)


def test_completed_only_reopens_to_active():
    assert EntryStateMachine.TRANSITIONS[EntryStatus.COMPLETED] == {EntryStatus.ACTIVE}
    assert not EntryStateMachine.can_transition(EntryStatus.COMPLETED, EntryStatus.WAITING)
    assert not EntryStateMachine.can_transition(EntryStatus.ACTIVE, EntryStatus.WAITING)


def test_sources_for_completed():
    assert EntryStateMachine.sources_for(EntryStatus.COMPLETED) == {
        EntryStatus.WAITING,
        EntryStatus.ACTIVE,
    }
