"""
Queue Coordinator：唯一可以修改 Stand / QueueEntry 的地方

職責：
1. 參加者 join / leave 攤位
2. 攤位管理者 start / complete / uncomplete / cancel 排隊紀錄
3. 管理者建立或修改攤位（容量、關閉）
4. 唯讀的狀態查詢

並發模型：
- 每個攤位一個序列化單位（process 內的 keyed lock + 資料庫行級鎖）
- 「讀取 -> CapacityPolicy 判斷 -> 寫入」全部在鎖內完成
- 不同攤位的操作可以完全平行
- strict_participant_limit 開啟時，join / uncomplete 另外持有參加者的鎖，
  同一個參加者的兩個操作不會同時通過 N_max 檢查

回傳：
- 所有業務拒絕都包成 QueueOutcome.rejected()
- 只有資料庫錯誤會以 StoreUnavailable 拋出
"""
import enum
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache, wraps
from typing import Any, Dict, Iterator, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Settings, get_settings
from models import EntryStatus, EventLog, QueueEntry, Stand, StandStatus
from core import store
from core.exceptions import (
    CapacityExceeded,
    EntryNotFound,
    InvalidStandSettings,
    NotEntryOwner,
    NotInQueue,
    QueueRejection,
    StandNotFound,
    StoreUnavailable,
    rejection_for,
)
from core.locks import KeyedLockRegistry, participant_key, stand_key, with_entry_lock, with_stand_lock
from core.outcome import QueueOutcome, Rejection
from core.store import EntryMutation, StandMutation
from services.capacity_policy import (
    Decision,
    Deny,
    Operation,
    StandState,
    decide,
    derive_status,
)
from services.snapshot_service import build_stand_snapshots

logger = logging.getLogger(__name__)


class JoinMode(str, enum.Enum):
    DIRECT = "direct"
    QUEUE = "queue"


# join_mode -> (初始狀態, 預設容量)
JOIN_MODE_PRESETS = {
    JoinMode.DIRECT: (EntryStatus.ACTIVE, 2),
    JoinMode.QUEUE: (EntryStatus.WAITING, 4),
}

EVENT_TYPES = {
    Operation.LEAVE: "ENTRY_LEFT",
    Operation.CANCEL: "ENTRY_CANCELLED",
    Operation.START: "ENTRY_STARTED",
    Operation.COMPLETE: "ENTRY_COMPLETED",
    Operation.UNCOMPLETE: "ENTRY_UNCOMPLETED",
}


@dataclass(frozen=True)
class CoordinatorConfig:
    default_capacity: int = 2
    initial_status: EntryStatus = EntryStatus.ACTIVE
    max_active_entries: int = 2
    max_stand_capacity: int = 4
    strict_participant_limit: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoordinatorConfig":
        initial_status, default_capacity = JOIN_MODE_PRESETS[JoinMode(settings.join_mode)]
        return cls(
            default_capacity=settings.stand_capacity or default_capacity,
            initial_status=initial_status,
            max_active_entries=settings.max_active_entries,
            max_stand_capacity=settings.max_stand_capacity,
            strict_participant_limit=settings.strict_participant_limit,
        )


def rejections_as_outcome(func):
    """
    把 QueueRejection 轉成 QueueOutcome.rejected()，成功時包成 accepted()

    StoreUnavailable 不處理，直接往上拋。
    """
    @wraps(func)
    def wrapper(self, db: Session, *args, **kwargs):
        try:
            return QueueOutcome.accepted(func(self, db, *args, **kwargs))
        except QueueRejection as e:
            logger.info(f"{func.__name__} rejected ({e.reason.value}): {e.message}")
            return QueueOutcome.rejected(Rejection.from_exception(e))

    return wrapper


class QueueCoordinator:
    """攤位排隊協調器"""

    def __init__(self, config: CoordinatorConfig, locks: Optional[KeyedLockRegistry] = None):
        self.config = config
        self._locks = locks or KeyedLockRegistry()

    # ============ 內部工具 ============

    @contextmanager
    def _store_errors(self, db: Session) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Entity store failure: {e}", exc_info=True)
            raise StoreUnavailable(str(e)) from e

    @contextmanager
    def _serialized(self, db: Session, stand_id: str, participant_id: Optional[str] = None) -> Iterator[None]:
        """
        取得攤位的序列化單位

        所有離開路徑（成功、拒絕、錯誤）都會釋放鎖；
        拒絕時先 rollback，確保資料庫的行級鎖也一起釋放。
        """
        keys = [stand_key(stand_id)]
        if participant_id is not None:
            keys.append(participant_key(participant_id))

        with self._locks.hold(*keys):
            with self._store_errors(db):
                try:
                    yield
                except QueueRejection:
                    db.rollback()
                    raise

    def _locked_state(self, db: Session, stand_id: str) -> StandState:
        """
        在鎖內重新讀取攤位，並用實際的 Waiting/Active 數量作為 occupancy
        """
        stand = with_stand_lock(stand_id, db).first()
        if stand is None:
            raise StandNotFound(stand_id)

        occupancy = store.count_active_entries(db, stand_id)
        if occupancy != stand.current_occupancy:
            logger.warning(
                f"Stand {stand_id} occupancy drifted: stored={stand.current_occupancy}, "
                f"actual={occupancy}; using actual"
            )

        return StandState(
            capacity=stand.capacity,
            status=derive_status(stand.status, occupancy, stand.capacity),
            current_occupancy=occupancy,
            total_processed=stand.total_processed,
        )

    @staticmethod
    def _raise_if_denied(decision: Decision) -> None:
        if isinstance(decision, Deny):
            raise rejection_for(decision.reason, decision.message)

    def _stand_defaults(self, capacity: Optional[int] = None) -> Dict[str, Any]:
        return {"capacity": capacity or self.config.default_capacity}

    def _operate_on_entry(
        self,
        db: Session,
        entry_id: str,
        op: Operation,
        owner_id: Optional[str] = None,
    ) -> QueueEntry:
        """
        start / complete / uncomplete / cancel 的共同流程

        1. 先讀 entry 找出所屬攤位（鎖外，記下看到的狀態）
        2. 取得攤位的鎖，重新讀取攤位與 entry
        3. CapacityPolicy 判斷（看到的狀態與鎖內狀態不同 -> CONFLICT）
        4. 原子寫入
        """
        with self._store_errors(db):
            entry = store.get_entry(db, entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        if owner_id is not None and entry.participant_id != owner_id:
            raise NotEntryOwner(f"Queue entry {entry_id} belongs to another participant")

        observed_status = entry.status
        stand_id = entry.stand_id
        participant_id = entry.participant_id

        # uncomplete 會讓參加者重新佔用名額，和 join 一樣要序列化 N_max 檢查
        participant_lock = None
        if op == Operation.UNCOMPLETE and self.config.strict_participant_limit:
            participant_lock = participant_id

        with self._serialized(db, stand_id, participant_lock):
            state = self._locked_state(db, stand_id)
            entry = with_entry_lock(entry_id, db).first()
            if entry is None:
                raise EntryNotFound(entry_id)

            active_count = 0
            already_joined = False
            if op == Operation.UNCOMPLETE:
                active = store.get_active_entries_for_participant(db, participant_id)
                active_count = len(active)
                # 完成後重新 join 同一攤位時，舊紀錄不能再打開
                already_joined = any(e.stand_id == stand_id and e.id != entry_id for e in active)

            decision = decide(
                state,
                op,
                active_count,
                max_active=self.config.max_active_entries,
                already_joined=already_joined,
                entry_status=entry.status,
                expected_status=observed_status,
            )
            self._raise_if_denied(decision)

            _, entry = store.apply_stand_and_entry_mutation(
                db,
                stand_id,
                EntryMutation.transition(entry_id, decision.entry_status),
                StandMutation.from_state(decision.stand),
                EVENT_TYPES[op],
                {"participant_id": participant_id},
            )
            logger.info(
                f"{op.value} entry {entry_id} on stand {stand_id}: "
                f"occupancy={decision.stand.current_occupancy}/{decision.stand.capacity}, "
                f"processed={decision.stand.total_processed}"
            )

        return entry

    # ============ 參加者操作 ============

    @rejections_as_outcome
    def join(self, db: Session, participant_id: str, enterprise_id: str) -> QueueEntry:
        """
        參加者加入企業攤位（攤位不存在時自動建立）

        前置條件（依序檢查）：
        1. 攤位不是 CLOSED
        2. 攤位未滿
        3. 參加者 Waiting/Active 的紀錄數 < N_max
        4. 參加者不在此攤位排隊中

        返回：
            QueueOutcome（成功時 value 為新的 QueueEntry）
        """
        with self._store_errors(db):
            stand, _ = store.get_or_create_stand(db, enterprise_id, self._stand_defaults())
            stand_id = stand.id

        participant_lock = participant_id if self.config.strict_participant_limit else None
        with self._serialized(db, stand_id, participant_lock):
            state = self._locked_state(db, stand_id)
            active = store.get_active_entries_for_participant(db, participant_id)

            decision = decide(
                state,
                Operation.JOIN,
                len(active),
                max_active=self.config.max_active_entries,
                already_joined=any(e.stand_id == stand_id for e in active),
                initial_status=self.config.initial_status,
            )
            self._raise_if_denied(decision)

            _, entry = store.apply_stand_and_entry_mutation(
                db,
                stand_id,
                EntryMutation.create(participant_id, decision.entry_status),
                StandMutation.from_state(decision.stand),
                "ENTRY_JOINED",
                {"participant_id": participant_id},
            )
            logger.info(
                f"Participant {participant_id} joined stand {stand_id} ({enterprise_id}): "
                f"occupancy={decision.stand.current_occupancy}/{decision.stand.capacity}"
            )

        return entry

    @rejections_as_outcome
    def leave(self, db: Session, participant_id: str, enterprise_id: str) -> QueueEntry:
        """
        參加者離開攤位

        只會找該參加者自己的 Waiting/Active 紀錄，所以不可能動到別人的紀錄。
        重複呼叫時第二次會得到 NOT_IN_QUEUE，occupancy 不會被扣兩次。
        """
        with self._store_errors(db):
            stand = store.get_stand_by_enterprise(db, enterprise_id)
            if stand is None:
                raise StandNotFound(enterprise_id)
            stand_id = stand.id

        with self._serialized(db, stand_id):
            state = self._locked_state(db, stand_id)
            entry = store.get_active_entry(db, participant_id, stand_id)
            if entry is None:
                raise NotInQueue(participant_id, enterprise_id)
            entry = with_entry_lock(entry.id, db).first()

            decision = decide(state, Operation.LEAVE, entry_status=entry.status)
            self._raise_if_denied(decision)

            _, entry = store.apply_stand_and_entry_mutation(
                db,
                stand_id,
                EntryMutation.transition(entry.id, decision.entry_status),
                StandMutation.from_state(decision.stand),
                EVENT_TYPES[Operation.LEAVE],
                {"participant_id": participant_id},
            )
            logger.info(
                f"Participant {participant_id} left stand {stand_id} ({enterprise_id}): "
                f"occupancy={decision.stand.current_occupancy}/{decision.stand.capacity}"
            )

        return entry

    # ============ 管理者操作 ============

    @rejections_as_outcome
    def start(self, db: Session, entry_id: str) -> QueueEntry:
        """Waiting -> Active（occupancy 不變）"""
        return self._operate_on_entry(db, entry_id, Operation.START)

    @rejections_as_outcome
    def complete(self, db: Session, entry_id: str) -> QueueEntry:
        """
        完成一筆紀錄：Waiting|Active -> Completed

        效果：
            occupancy - 1、total_processed + 1，攤位若原本 FULL 會重新 OPEN
        """
        return self._operate_on_entry(db, entry_id, Operation.COMPLETE)

    @rejections_as_outcome
    def uncomplete(self, db: Session, entry_id: str) -> QueueEntry:
        """
        撤銷完成：Completed -> Active

        效果：
            occupancy + 1（攤位沒有空位、或參加者已達 N_max 時拒絕）、
            total_processed - 1（最小為 0）

        參加者已重新 join 同一攤位時回傳 ALREADY_JOINED。
        """
        return self._operate_on_entry(db, entry_id, Operation.UNCOMPLETE)

    @rejections_as_outcome
    def cancel(self, db: Session, entry_id: str, owner_id: Optional[str] = None) -> QueueEntry:
        """
        取消一筆紀錄

        參數：
            owner_id: 由參加者本人呼叫時帶入；紀錄不屬於他時回傳 FORBIDDEN，
                      成功時紀錄為 LEFT。管理者呼叫時不帶，紀錄為 CANCELLED。
        """
        op = Operation.LEAVE if owner_id is not None else Operation.CANCEL
        return self._operate_on_entry(db, entry_id, op, owner_id=owner_id)

    @rejections_as_outcome
    def upsert_stand(
        self,
        db: Session,
        enterprise_id: str,
        status: Optional[StandStatus] = None,
        capacity: Optional[int] = None,
    ) -> Stand:
        """
        建立或修改攤位

        規則：
        - status=CLOSED：關閉攤位，不論佔用數
        - 其他 status：重新開放，OPEN/FULL 由佔用數決定
        - capacity 必須在 1..max_stand_capacity 之間（INVALID_ARGUMENT），
          且不能小於目前佔用數（CAPACITY_EXCEEDED）
        """
        if capacity is not None and not 1 <= capacity <= self.config.max_stand_capacity:
            raise InvalidStandSettings(
                f"Capacity must be between 1 and {self.config.max_stand_capacity}, got {capacity}"
            )

        with self._store_errors(db):
            stand, created = store.get_or_create_stand(db, enterprise_id, self._stand_defaults(capacity))
            stand_id = stand.id

        with self._serialized(db, stand_id):
            state = self._locked_state(db, stand_id)
            new_capacity = capacity if capacity is not None else state.capacity
            if new_capacity < state.current_occupancy:
                raise CapacityExceeded(
                    f"Capacity {new_capacity} is below current occupancy {state.current_occupancy}"
                )

            if status == StandStatus.CLOSED:
                new_status = StandStatus.CLOSED
            elif status is not None:
                new_status = derive_status(StandStatus.OPEN, state.current_occupancy, new_capacity)
            else:
                new_status = derive_status(state.status, state.current_occupancy, new_capacity)

            new_state = StandState(
                capacity=new_capacity,
                status=new_status,
                current_occupancy=state.current_occupancy,
                total_processed=state.total_processed,
            )
            stand, _ = store.apply_stand_and_entry_mutation(
                db,
                stand_id,
                None,
                StandMutation.from_state(new_state),
                "STAND_UPDATED",
                {"created": created, "capacity": new_capacity},
            )
            logger.info(
                f"Stand {stand_id} ({enterprise_id}) updated: status={new_status.value}, "
                f"capacity={new_capacity}"
            )

        return stand

    # ============ 查詢 ============

    @rejections_as_outcome
    def get_status(self, db: Session, stand_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        唯讀快照：所有攤位（或單一攤位）與其 Waiting/Active 紀錄

        不取得任何鎖，可能看到稍微過期的 occupancy。
        """
        with self._store_errors(db):
            stands = store.list_stands(db, stand_id)
            if stand_id is not None and not stands:
                raise StandNotFound(stand_id)
            entries = store.list_active_entries(db, [s.id for s in stands])
            return build_stand_snapshots(stands, entries)

    @rejections_as_outcome
    def get_enterprise_queue(self, db: Session, enterprise_id: str) -> Dict[str, Any]:
        """企業查詢自己攤位的排隊狀況"""
        with self._store_errors(db):
            stand = store.get_stand_by_enterprise(db, enterprise_id)
            if stand is None:
                raise StandNotFound(enterprise_id)
            entries = store.list_active_entries(db, [stand.id])
            return build_stand_snapshots([stand], entries)[0]

    @rejections_as_outcome
    def get_events(self, db: Session, stand_id: str) -> List[EventLog]:
        with self._store_errors(db):
            if store.get_stand(db, stand_id) is None:
                raise StandNotFound(stand_id)
            return store.list_events(db, stand_id)


@lru_cache()
def get_coordinator() -> QueueCoordinator:
    """FastAPI dependency：整個 process 共用一個 Coordinator（共用同一組鎖）"""
    return QueueCoordinator(CoordinatorConfig.from_settings(get_settings()))
