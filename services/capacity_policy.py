"""
容量政策：決定一個操作是否允許，以及允許後攤位的新計數

純計算邏輯，不涉及 I/O，也不修改任何 ORM 物件。
Coordinator 在持有攤位鎖的情況下呼叫 decide()，再把 Allow 的結果寫回資料庫。

JOIN 的檢查順序（先符合者先拒絕）：
1. 攤位 CLOSED            -> CLOSED
2. 攤位 FULL              -> CAPACITY_EXCEEDED
3. 參加者已達 N_max       -> PARTICIPANT_LIMIT_EXCEEDED
4. 已在此攤位排隊         -> ALREADY_JOINED

UNCOMPLETE 重新佔用名額，依相同順序檢查容量、N_max、同攤位重複。
"""
import enum
from dataclasses import dataclass, replace
from typing import Optional, Union

from models import EntryStatus, Stand, StandStatus
from core.exceptions import RejectionReason


class Operation(str, enum.Enum):
    JOIN = "JOIN"
    LEAVE = "LEAVE"
    CANCEL = "CANCEL"
    START = "START"
    COMPLETE = "COMPLETE"
    UNCOMPLETE = "UNCOMPLETE"


# 每個操作要求的 entry 前置狀態
EXPECTED_SOURCES = {
    Operation.LEAVE: frozenset({EntryStatus.WAITING, EntryStatus.ACTIVE}),
    Operation.CANCEL: frozenset({EntryStatus.WAITING, EntryStatus.ACTIVE}),
    Operation.START: frozenset({EntryStatus.WAITING}),
    Operation.COMPLETE: frozenset({EntryStatus.WAITING, EntryStatus.ACTIVE}),
    Operation.UNCOMPLETE: frozenset({EntryStatus.COMPLETED}),
}

TARGET_STATUS = {
    Operation.LEAVE: EntryStatus.LEFT,
    Operation.CANCEL: EntryStatus.CANCELLED,
    Operation.START: EntryStatus.ACTIVE,
    Operation.COMPLETE: EntryStatus.COMPLETED,
    Operation.UNCOMPLETE: EntryStatus.ACTIVE,
}


@dataclass(frozen=True)
class StandState:
    """攤位計數的快照"""
    capacity: int
    status: StandStatus
    current_occupancy: int
    total_processed: int

    @classmethod
    def from_stand(cls, stand: Stand, occupancy: Optional[int] = None) -> "StandState":
        return cls(
            capacity=stand.capacity,
            status=stand.status,
            current_occupancy=stand.current_occupancy if occupancy is None else occupancy,
            total_processed=stand.total_processed,
        )


@dataclass(frozen=True)
class Allow:
    stand: StandState
    entry_status: Optional[EntryStatus] = None


@dataclass(frozen=True)
class Deny:
    reason: RejectionReason
    message: str


Decision = Union[Allow, Deny]


def derive_status(status: StandStatus, occupancy: int, capacity: int) -> StandStatus:
    """
    由佔用數推導攤位狀態

    CLOSED 是管理者手動設定的，優先於佔用數。
    """
    if status == StandStatus.CLOSED:
        return StandStatus.CLOSED
    if occupancy >= capacity:
        return StandStatus.FULL
    return StandStatus.OPEN


def check_invariants(state: StandState) -> Optional[str]:
    """回傳第一個被違反的不變量描述，全部成立時回傳 None"""
    if state.capacity < 1:
        return f"capacity must be >= 1, got {state.capacity}"
    if not 0 <= state.current_occupancy <= state.capacity:
        return (
            f"occupancy {state.current_occupancy} out of range "
            f"0..{state.capacity}"
        )
    if state.total_processed < 0:
        return f"total_processed must be >= 0, got {state.total_processed}"
    return None


def _with_occupancy(stand: StandState, occupancy: int, total_processed: int) -> StandState:
    return replace(
        stand,
        current_occupancy=occupancy,
        total_processed=total_processed,
        status=derive_status(stand.status, occupancy, stand.capacity),
    )


def _decide_join(
    stand: StandState,
    participant_active_count: int,
    max_active: int,
    already_joined: bool,
    initial_status: EntryStatus,
) -> Decision:
    if stand.status == StandStatus.CLOSED:
        return Deny(RejectionReason.CLOSED, "This stand is not accepting participants")

    if stand.status == StandStatus.FULL or stand.current_occupancy >= stand.capacity:
        return Deny(
            RejectionReason.CAPACITY_EXCEEDED,
            f"Queue is full (maximum {stand.capacity} concurrent participants)",
        )

    if participant_active_count >= max_active:
        return Deny(
            RejectionReason.PARTICIPANT_LIMIT_EXCEEDED,
            f"You can only be in {max_active} queues at a time",
        )

    if already_joined:
        return Deny(RejectionReason.ALREADY_JOINED, "You are already in this queue")

    new_state = _with_occupancy(stand, stand.current_occupancy + 1, stand.total_processed)
    return Allow(new_state, initial_status)


def _decide_transition(stand: StandState, op: Operation) -> StandState:
    occupancy = stand.current_occupancy
    processed = stand.total_processed

    if op in (Operation.LEAVE, Operation.CANCEL):
        return _with_occupancy(stand, max(0, occupancy - 1), processed)
    if op == Operation.COMPLETE:
        return _with_occupancy(stand, max(0, occupancy - 1), processed + 1)
    if op == Operation.UNCOMPLETE:
        return _with_occupancy(stand, occupancy + 1, max(0, processed - 1))
    # START：Waiting -> Active，不改變佔用數
    return stand


def decide(
    stand: StandState,
    op: Operation,
    participant_active_count: int = 0,
    *,
    max_active: int = 2,
    already_joined: bool = False,
    initial_status: EntryStatus = EntryStatus.ACTIVE,
    entry_status: Optional[EntryStatus] = None,
    expected_status: Optional[EntryStatus] = None,
) -> Decision:
    """
    判斷操作是否允許

    參數：
        stand: 取得鎖之後讀到的攤位狀態
        op: 要執行的操作
        participant_active_count: 參加者目前 Waiting/Active 的紀錄數（JOIN / UNCOMPLETE）
        max_active: N_max
        already_joined: 參加者是否已在此攤位有 Waiting/Active 紀錄（JOIN / UNCOMPLETE）
        initial_status: JOIN 建立的紀錄初始狀態
        entry_status: 取得鎖之後讀到的 entry 狀態（JOIN 以外必填）
        expected_status: 呼叫者在取得鎖之前看到的 entry 狀態

    返回：
        Allow(新的攤位狀態, entry 新狀態) 或 Deny(reason, message)

    範例：
        capacity=2, occupancy=1, JOIN -> Allow(occupancy=2, status=FULL)
        capacity=2, occupancy=2, JOIN -> Deny(CAPACITY_EXCEEDED)
    """
    if op == Operation.JOIN:
        decision = _decide_join(
            stand, participant_active_count, max_active, already_joined, initial_status
        )
    else:
        if entry_status is None:
            raise ValueError(f"{op.value} requires the current entry status")

        if entry_status not in EXPECTED_SOURCES[op]:
            if expected_status is not None and expected_status != entry_status:
                return Deny(
                    RejectionReason.CONFLICT,
                    f"Entry changed from {expected_status.value} to "
                    f"{entry_status.value} while the request was in flight",
                )
            return Deny(
                RejectionReason.INVALID_STATE,
                f"Cannot {op.value.lower()} an entry in status {entry_status.value}",
            )

        if op == Operation.UNCOMPLETE:
            if stand.current_occupancy + 1 > stand.capacity:
                return Deny(
                    RejectionReason.CAPACITY_EXCEEDED,
                    "Stand has no free slot to reopen this entry",
                )
            if participant_active_count >= max_active:
                return Deny(
                    RejectionReason.PARTICIPANT_LIMIT_EXCEEDED,
                    f"Participant already holds {participant_active_count} active entries",
                )
            if already_joined:
                return Deny(
                    RejectionReason.ALREADY_JOINED,
                    "Participant has rejoined this stand; the completed entry cannot be reopened",
                )

        decision = Allow(_decide_transition(stand, op), TARGET_STATUS[op])

    if isinstance(decision, Allow):
        violation = check_invariants(decision.stand)
        if violation:
            return Deny(RejectionReason.INVALID_STATE, violation)
    return decision
