"""CapacityPolicy.decide(): pure decision rules."""

import pytest

from core.exceptions import RejectionReason
from models import EntryStatus, StandStatus
from services.capacity_policy import (
    Allow,
    Deny,
    Operation,
    StandState,
    check_invariants,
    decide,
    derive_status,
)


def state(occupancy=0, capacity=2, status=StandStatus.OPEN, processed=0):
    return StandState(
        capacity=capacity,
        status=status,
        current_occupancy=occupancy,
        total_processed=processed,
    )


class TestJoin:
    def test_join_empty_stand_increments_occupancy(self):
        decision = decide(state(0), Operation.JOIN, 0)

        assert isinstance(decision, Allow)
        assert decision.stand.current_occupancy == 1
        assert decision.stand.status == StandStatus.OPEN
        assert decision.entry_status == EntryStatus.ACTIVE

    def test_join_at_capacity_minus_one_flips_to_full(self):
        decision = decide(state(1), Operation.JOIN, 0)

        assert isinstance(decision, Allow)
        assert decision.stand.current_occupancy == 2
        assert decision.stand.status == StandStatus.FULL

    def test_join_full_stand_is_rejected(self):
        decision = decide(state(2, status=StandStatus.FULL), Operation.JOIN, 0)

        assert isinstance(decision, Deny)
        assert decision.reason == RejectionReason.CAPACITY_EXCEEDED

    def test_join_closed_stand_is_rejected_before_capacity(self):
        decision = decide(state(2, status=StandStatus.CLOSED), Operation.JOIN, 5)

        assert decision.reason == RejectionReason.CLOSED

    def test_participant_limit_checked_before_duplicate_join(self):
        decision = decide(state(1), Operation.JOIN, 2, max_active=2, already_joined=True)

        assert decision.reason == RejectionReason.PARTICIPANT_LIMIT_EXCEEDED

    def test_duplicate_join_is_rejected(self):
        decision = decide(state(1), Operation.JOIN, 1, already_joined=True)

        assert decision.reason == RejectionReason.ALREADY_JOINED

    def test_queue_mode_starts_waiting(self):
        decision = decide(state(0, capacity=4), Operation.JOIN, 0, initial_status=EntryStatus.WAITING)

        assert decision.entry_status == EntryStatus.WAITING
        assert decision.stand.current_occupancy == 1


class TestTransitions:
    def test_leave_reopens_full_stand(self):
        decision = decide(
            state(2, status=StandStatus.FULL), Operation.LEAVE, entry_status=EntryStatus.ACTIVE
        )

        assert decision.stand.current_occupancy == 1
        assert decision.stand.status == StandStatus.OPEN
        assert decision.entry_status == EntryStatus.LEFT

    def test_leave_keeps_closed_stand_closed(self):
        decision = decide(
            state(1, status=StandStatus.CLOSED), Operation.LEAVE, entry_status=EntryStatus.WAITING
        )

        assert decision.stand.current_occupancy == 0
        assert decision.stand.status == StandStatus.CLOSED

    def test_complete_counts_processed(self):
        decision = decide(state(2, processed=3), Operation.COMPLETE, entry_status=EntryStatus.ACTIVE)

        assert decision.stand.current_occupancy == 1
        assert decision.stand.total_processed == 4
        assert decision.entry_status == EntryStatus.COMPLETED

    def test_uncomplete_reverses_complete(self):
        before = state(1, processed=1)
        completed = decide(before, Operation.COMPLETE, entry_status=EntryStatus.ACTIVE)
        reopened = decide(completed.stand, Operation.UNCOMPLETE, entry_status=EntryStatus.COMPLETED)

        assert reopened.entry_status == EntryStatus.ACTIVE
        assert reopened.stand == before

    def test_uncomplete_denied_when_stand_refilled(self):
        decision = decide(
            state(2, status=StandStatus.FULL, processed=1),
            Operation.UNCOMPLETE,
            entry_status=EntryStatus.COMPLETED,
        )

        assert decision.reason == RejectionReason.CAPACITY_EXCEEDED

    def test_uncomplete_floors_processed_at_zero(self):
        decision = decide(state(0, processed=0), Operation.UNCOMPLETE, entry_status=EntryStatus.COMPLETED)

        assert decision.stand.total_processed == 0

    def test_start_keeps_occupancy(self):
        decision = decide(state(1), Operation.START, entry_status=EntryStatus.WAITING)

        assert decision.stand == state(1)
        assert decision.entry_status == EntryStatus.ACTIVE

    @pytest.mark.parametrize("op,entry_status", [
        (Operation.COMPLETE, EntryStatus.COMPLETED),
        (Operation.LEAVE, EntryStatus.LEFT),
        (Operation.UNCOMPLETE, EntryStatus.ACTIVE),
        (Operation.START, EntryStatus.ACTIVE),
        (Operation.CANCEL, EntryStatus.CANCELLED),
    ])
    def test_wrong_source_status_is_invalid_state(self, op, entry_status):
        decision = decide(state(1), op, entry_status=entry_status)

        assert decision.reason == RejectionReason.INVALID_STATE

    def test_status_changed_under_caller_is_conflict(self):
        decision = decide(
            state(1),
            Operation.COMPLETE,
            entry_status=EntryStatus.COMPLETED,
            expected_status=EntryStatus.ACTIVE,
        )

        assert decision.reason == RejectionReason.CONFLICT

    def test_transition_without_entry_status_is_a_programming_error(self):
        with pytest.raises(ValueError):
            decide(state(1), Operation.COMPLETE)


def test_derive_status():
    assert derive_status(StandStatus.OPEN, 2, 2) == StandStatus.FULL
    assert derive_status(StandStatus.FULL, 1, 2) == StandStatus.OPEN
    assert derive_status(StandStatus.CLOSED, 0, 2) == StandStatus.CLOSED


def test_check_invariants():
    assert check_invariants(state(2)) is None
    assert check_invariants(state(3)) is not None
    assert check_invariants(state(0, processed=-1)) is not None


def test_uncomplete_respects_participant_limit():
    decision = decide(
        state(0, processed=1),
        Operation.UNCOMPLETE,
        2,
        max_active=2,
        entry_status=EntryStatus.COMPLETED,
    )

    assert decision.reason == RejectionReason.PARTICIPANT_LIMIT_EXCEEDED


def test_uncomplete_denied_when_participant_rejoined_stand():
    decision = decide(
        state(1, processed=1),
        Operation.UNCOMPLETE,
        1,
        max_active=2,
        already_joined=True,
        entry_status=EntryStatus.COMPLETED,
    )

    assert decision.reason == RejectionReason.ALREADY_JOINED
