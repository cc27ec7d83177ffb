"""
Entity Store：Stand / QueueEntry 的讀寫

只有 QueueCoordinator 會呼叫 apply_stand_and_entry_mutation()；
其他函式都是唯讀查詢，或是本身就具有原子性的 get_or_create_stand()。
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import transactional
from models import (
    HOLDING_STATUSES,
    EntryStatus,
    EventLog,
    QueueEntry,
    Stand,
    StandStatus,
    utcnow,
)
from core.exceptions import EntryNotFound, StandNotFound
from core.state_machine import EntryStateMachine
from services.capacity_policy import StandState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StandMutation:
    """要寫回 Stand 的計數"""
    status: StandStatus
    current_occupancy: int
    total_processed: int
    capacity: int

    @classmethod
    def from_state(cls, state: StandState) -> "StandMutation":
        return cls(
            status=state.status,
            current_occupancy=state.current_occupancy,
            total_processed=state.total_processed,
            capacity=state.capacity,
        )


@dataclass(frozen=True)
class EntryMutation:
    """
    要套用在 QueueEntry 的變更

    entry_id 為 None 時代表建立新的紀錄（JOIN）。
    """
    target_status: EntryStatus
    entry_id: Optional[str] = None
    participant_id: Optional[str] = None

    @classmethod
    def create(cls, participant_id: str, initial_status: EntryStatus) -> "EntryMutation":
        return cls(target_status=initial_status, participant_id=participant_id)

    @classmethod
    def transition(cls, entry_id: str, target_status: EntryStatus) -> "EntryMutation":
        return cls(target_status=target_status, entry_id=entry_id)


# ============ 查詢 ============

def get_stand(db: Session, stand_id: str) -> Optional[Stand]:
    return db.query(Stand).filter(Stand.id == stand_id).first()


def get_stand_by_enterprise(db: Session, enterprise_id: str) -> Optional[Stand]:
    return db.query(Stand).filter(Stand.enterprise_id == enterprise_id).first()


def get_entry(db: Session, entry_id: str) -> Optional[QueueEntry]:
    return db.query(QueueEntry).filter(QueueEntry.id == entry_id).first()


def get_active_entries_for_participant(db: Session, participant_id: str) -> List[QueueEntry]:
    """參加者所有 Waiting/Active 的紀錄（跨攤位）"""
    return db.query(QueueEntry).filter(
        QueueEntry.participant_id == participant_id,
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).all()


def get_active_entry(db: Session, participant_id: str, stand_id: str) -> Optional[QueueEntry]:
    """參加者在某個攤位上唯一的 Waiting/Active 紀錄"""
    return db.query(QueueEntry).filter(
        QueueEntry.participant_id == participant_id,
        QueueEntry.stand_id == stand_id,
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).order_by(QueueEntry.joined_at).first()


def count_active_entries(db: Session, stand_id: str) -> int:
    return db.query(QueueEntry).filter(
        QueueEntry.stand_id == stand_id,
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).count()


def list_stands(db: Session, stand_id: Optional[str] = None) -> List[Stand]:
    query = db.query(Stand)
    if stand_id is not None:
        query = query.filter(Stand.id == stand_id)
    return query.order_by(Stand.created_at, Stand.enterprise_id).all()


def list_active_entries(db: Session, stand_ids: Sequence[str]) -> List[QueueEntry]:
    if not stand_ids:
        return []
    return db.query(QueueEntry).filter(
        QueueEntry.stand_id.in_(list(stand_ids)),
        QueueEntry.status.in_(HOLDING_STATUSES)
    ).order_by(QueueEntry.joined_at).all()


def list_events(db: Session, stand_id: str) -> List[EventLog]:
    return db.query(EventLog).filter(
        EventLog.stand_id == stand_id
    ).order_by(EventLog.id).all()


# ============ 寫入 ============

def get_or_create_stand(db: Session, enterprise_id: str, defaults: Dict[str, Any]) -> Tuple[Stand, bool]:
    """
    取得企業的攤位，不存在就建立（OPEN、佔用 0）

    enterprise_id 有 unique constraint：兩個請求同時建立時，
    輸的一方會拿到 IntegrityError，rollback 後改讀贏家建立的那一筆。

    返回：
        (Stand, created) tuple
    """
    stand = get_stand_by_enterprise(db, enterprise_id)
    if stand:
        return stand, False

    stand = Stand(
        enterprise_id=enterprise_id,
        status=StandStatus.OPEN,
        current_occupancy=0,
        total_processed=0,
        **defaults
    )
    db.add(stand)
    try:
        db.flush()
        db.add(EventLog(
            stand_id=stand.id,
            event_type="STAND_CREATED",
            data={"enterprise_id": enterprise_id, "capacity": stand.capacity}
        ))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Stand for enterprise {enterprise_id} created concurrently, reloading")
        stand = get_stand_by_enterprise(db, enterprise_id)
        if stand is None:
            raise
        return stand, False

    logger.info(f"Created stand {stand.id} for enterprise {enterprise_id}")
    return stand, True


@transactional
def apply_stand_and_entry_mutation(
    db: Session,
    stand_id: str,
    entry_mutation: Optional[EntryMutation],
    stand_mutation: StandMutation,
    event_type: str,
    event_data: Optional[Dict[str, Any]] = None,
) -> Tuple[Stand, Optional[QueueEntry]]:
    """
    在同一個 transaction 內更新 Stand 和 QueueEntry

    呼叫者必須已經持有 stand_id 的鎖。
    任何一步失敗都會 rollback，兩者都不會被寫入。

    返回：
        (Stand, QueueEntry) tuple；stand-only 的變更 QueueEntry 為 None
    """
    at = utcnow()

    stand = db.get(Stand, stand_id)
    if stand is None:
        raise StandNotFound(stand_id)

    entry = None
    if entry_mutation is not None:
        if entry_mutation.entry_id is None:
            entry = QueueEntry(
                participant_id=entry_mutation.participant_id,
                stand_id=stand_id,
                status=entry_mutation.target_status,
                joined_at=at,
                started_at=at if entry_mutation.target_status == EntryStatus.ACTIVE else None,
            )
            db.add(entry)
        else:
            entry = db.get(QueueEntry, entry_mutation.entry_id)
            if entry is None or entry.stand_id != stand_id:
                raise EntryNotFound(entry_mutation.entry_id)
            EntryStateMachine.transition(entry, entry_mutation.target_status, at)

    stand.capacity = stand_mutation.capacity
    stand.current_occupancy = stand_mutation.current_occupancy
    stand.total_processed = stand_mutation.total_processed
    stand.status = stand_mutation.status
    db.flush()

    data = dict(event_data or {})
    data.update({
        "occupancy": stand.current_occupancy,
        "total_processed": stand.total_processed,
        "status": stand.status.value,
    })
    db.add(EventLog(
        stand_id=stand_id,
        entry_id=entry.id if entry is not None else None,
        event_type=event_type,
        data=data
    ))

    return stand, entry
