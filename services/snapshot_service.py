"""
Stand status snapshots.

Builds the read-only view returned by the status endpoints: every stand
with its Waiting/Active entries nested in join order.
"""
from typing import Any, Dict, Iterable, List

from models import QueueEntry, Stand


def entry_to_dict(entry: QueueEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "participant_id": entry.participant_id,
        "stand_id": entry.stand_id,
        "status": entry.status,
        "joined_at": entry.joined_at,
        "started_at": entry.started_at,
        "completed_at": entry.completed_at,
        "left_at": entry.left_at,
    }


def stand_to_dict(stand: Stand) -> Dict[str, Any]:
    return {
        "id": stand.id,
        "enterprise_id": stand.enterprise_id,
        "capacity": stand.capacity,
        "status": stand.status,
        "current_occupancy": stand.current_occupancy,
        "total_processed": stand.total_processed,
    }


def build_stand_snapshots(stands: Iterable[Stand], entries: Iterable[QueueEntry]) -> List[Dict[str, Any]]:
    """
    Group active entries under their stand.

    Entries are expected in join order; that order is kept so the first
    Waiting entry of a stand is the next one to be served.
    """
    by_stand: Dict[str, List[Dict[str, Any]]] = {}
    for entry in entries:
        by_stand.setdefault(entry.stand_id, []).append(entry_to_dict(entry))

    snapshots: List[Dict[str, Any]] = []
    for stand in stands:
        snapshot = stand_to_dict(stand)
        snapshot["entries"] = by_stand.get(stand.id, [])
        snapshots.append(snapshot)

    return snapshots
