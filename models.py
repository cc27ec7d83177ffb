"""
資料模型：Stand / QueueEntry / EventLog

- Stand：一個企業攤位，有固定容量
- QueueEntry：參加者在某個攤位上的排隊紀錄（只改狀態，不刪除）
- EventLog：所有變更的稽核紀錄
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import relationship

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StandStatus(str, enum.Enum):
    OPEN = "Open"
    FULL = "Full"
    CLOSED = "Closed"


class EntryStatus(str, enum.Enum):
    WAITING = "Waiting"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    LEFT = "Left"
    CANCELLED = "Cancelled"


# 佔用名額的狀態
HOLDING_STATUSES = (EntryStatus.WAITING, EntryStatus.ACTIVE)


class Stand(Base):
    __tablename__ = "stands"

    id = Column(String(36), primary_key=True, default=_new_id)
    enterprise_id = Column(String(255), unique=True, nullable=False, index=True)
    capacity = Column(Integer, nullable=False, default=2)
    status = Column(Enum(StandStatus), nullable=False, default=StandStatus.OPEN)
    current_occupancy = Column(Integer, nullable=False, default=0)
    total_processed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    entries = relationship("QueueEntry", back_populates="stand", lazy="select")

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="check_stand_capacity_positive"),
        CheckConstraint("current_occupancy >= 0", name="check_stand_occupancy_positive"),
        CheckConstraint("current_occupancy <= capacity", name="check_stand_occupancy_lte_capacity"),
        CheckConstraint("total_processed >= 0", name="check_stand_processed_positive"),
    )

    def __repr__(self):
        return f"<Stand {self.enterprise_id} {self.current_occupancy}/{self.capacity} {self.status.value}>"


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(String(36), primary_key=True, default=_new_id)
    participant_id = Column(String(255), nullable=False, index=True)
    stand_id = Column(String(36), ForeignKey("stands.id"), nullable=False, index=True)
    status = Column(Enum(EntryStatus), nullable=False, default=EntryStatus.WAITING, index=True)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    left_at = Column(DateTime(timezone=True))

    stand = relationship("Stand", back_populates="entries")

    def __repr__(self):
        return f"<QueueEntry {self.id} participant={self.participant_id} {self.status.value}>"


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stand_id = Column(String(36), ForeignKey("stands.id"), nullable=False, index=True)
    entry_id = Column(String(36), ForeignKey("queue_entries.id"))
    event_type = Column(String(50), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
