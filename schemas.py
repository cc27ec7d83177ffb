"""
API request / response schemas
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import EntryStatus, StandStatus


class EntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    participant_id: str
    stand_id: str
    status: EntryStatus
    joined_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    left_at: Optional[datetime] = None


class StandResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    enterprise_id: str
    capacity: int
    status: StandStatus
    current_occupancy: int
    total_processed: int


class StandStatusResponse(StandResponse):
    entries: List[EntryResponse] = []


class StandUpsert(BaseModel):
    status: Optional[StandStatus] = None
    capacity: Optional[int] = Field(default=None, ge=1)


class QueueActionResponse(BaseModel):
    success: bool = True
    message: str
    entry: Optional[EntryResponse] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stand_id: str
    entry_id: Optional[str] = None
    event_type: str
    data: Dict[str, Any]
    created_at: datetime
