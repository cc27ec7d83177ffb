"""
狀態機：集中管理 QueueEntry 的所有狀態轉換

    WAITING -> ACTIVE -> COMPLETED
                  ^          |
                  +----------+   (uncomplete)
    WAITING | ACTIVE -> LEFT | CANCELLED   (終止狀態)

任何不在 TRANSITIONS 表內的轉換都會被拒絕。
"""
from datetime import datetime
from typing import Dict, FrozenSet

from models import EntryStatus, QueueEntry
from core.exceptions import InvalidStateTransition


class EntryStateMachine:
    """QueueEntry 狀態轉換表"""

    TRANSITIONS: Dict[EntryStatus, FrozenSet[EntryStatus]] = {
        EntryStatus.WAITING: frozenset({
            EntryStatus.ACTIVE,
            EntryStatus.COMPLETED,
            EntryStatus.LEFT,
            EntryStatus.CANCELLED,
        }),
        EntryStatus.ACTIVE: frozenset({
            EntryStatus.COMPLETED,
            EntryStatus.LEFT,
            EntryStatus.CANCELLED,
        }),
        EntryStatus.COMPLETED: frozenset({EntryStatus.ACTIVE}),
        EntryStatus.LEFT: frozenset(),
        EntryStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: EntryStatus, target: EntryStatus) -> bool:
        return target in cls.TRANSITIONS[current]

    @classmethod
    def sources_for(cls, target: EntryStatus) -> FrozenSet[EntryStatus]:
        """回傳可以轉換到 target 的所有狀態"""
        return frozenset(
            source for source, targets in cls.TRANSITIONS.items() if target in targets
        )

    @classmethod
    def transition(cls, entry: QueueEntry, target: EntryStatus, at: datetime) -> QueueEntry:
        """
        執行狀態轉換並寫入對應的時間戳

        規則：
        - started_at / joined_at 寫入後不再改變
        - completed_at 在 uncomplete（COMPLETED -> ACTIVE）時清除

        異常：
            InvalidStateTransition: 轉換不在表內
        """
        current = entry.status
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Cannot transition entry {entry.id} from {current.value} to {target.value}"
            )

        if target == EntryStatus.ACTIVE:
            if entry.started_at is None:
                entry.started_at = at
            entry.completed_at = None
        elif target == EntryStatus.COMPLETED:
            entry.completed_at = at
        elif target in (EntryStatus.LEFT, EntryStatus.CANCELLED):
            entry.left_at = at

        entry.status = target
        return entry
