"""
Randomized operation sequences.

After every join / leave / start / complete / uncomplete / cancel the stored
counters must agree with the entries they summarize, and no participant
holds more than one Waiting/Active entry on a stand.
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from core.queue_coordinator import CoordinatorConfig, QueueCoordinator
from models import HOLDING_STATUSES, EntryStatus, QueueEntry, Stand
from tests.util import make_memory_engine

PARTICIPANTS = ["p1", "p2", "p3", "p4"]
ENTERPRISES = ["acme", "globex", "initech"]

participant_ops = st.tuples(
    st.sampled_from(["join", "leave"]),
    st.sampled_from(PARTICIPANTS),
    st.sampled_from(ENTERPRISES),
)
entry_ops = st.tuples(
    st.sampled_from(["start", "complete", "uncomplete", "cancel"]),
    st.integers(min_value=0, max_value=30),
)
operations = st.lists(st.one_of(participant_ops, entry_ops), max_size=40)


def assert_invariants(db, max_active):
    db.expire_all()
    for stand in db.query(Stand).all():
        holding = db.query(QueueEntry).filter(
            QueueEntry.stand_id == stand.id,
            QueueEntry.status.in_(HOLDING_STATUSES)
        ).count()
        completed = db.query(QueueEntry).filter(
            QueueEntry.stand_id == stand.id,
            QueueEntry.status == EntryStatus.COMPLETED
        ).count()

        assert 0 <= stand.current_occupancy <= stand.capacity
        assert stand.current_occupancy == holding
        assert stand.total_processed == completed
        assert stand.total_processed >= 0

    per_participant = db.query(QueueEntry.participant_id, func.count(QueueEntry.id)).filter(
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).group_by(QueueEntry.participant_id).all()
    for _, count in per_participant:
        assert count <= max_active

    per_participant_stand = db.query(
        QueueEntry.participant_id, QueueEntry.stand_id, func.count(QueueEntry.id)
    ).filter(
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).group_by(QueueEntry.participant_id, QueueEntry.stand_id).all()
    for _, _, count in per_participant_stand:
        assert count <= 1


@settings(max_examples=75, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(ops=operations, queue_mode=st.booleans())
def test_counters_match_entries_after_every_operation(ops, queue_mode):
    config = CoordinatorConfig(
        default_capacity=4 if queue_mode else 2,
        initial_status=EntryStatus.WAITING if queue_mode else EntryStatus.ACTIVE,
    )
    coordinator = QueueCoordinator(config)
    engine = make_memory_engine()
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    entry_ids = []

    try:
        for op in ops:
            if op[0] == "join":
                outcome = coordinator.join(db, op[1], op[2])
                if outcome.ok:
                    entry_ids.append(outcome.value.id)
            elif op[0] == "leave":
                coordinator.leave(db, op[1], op[2])
            elif entry_ids:
                entry_id = entry_ids[op[1] % len(entry_ids)]
                getattr(coordinator, op[0])(db, entry_id)

            assert_invariants(db, config.max_active_entries)
    finally:
        db.close()
        engine.dispose()
