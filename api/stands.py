"""
Stand API Endpoints

職責：
1. 參加者加入 / 離開攤位
2. 管理者建立或修改攤位
3. 查詢攤位狀態（全部、單一、企業自己的、稽核紀錄）
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    EntryResponse,
    EventResponse,
    QueueActionResponse,
    StandResponse,
    StandStatusResponse,
    StandUpsert,
)
from core.exceptions import StoreUnavailable
from core.queue_coordinator import QueueCoordinator, get_coordinator
from core.role_gate import OPERATOR_ROLES, Principal, Role
from api.dependencies import get_principal, raise_for_rejection, require_roles

router = APIRouter(prefix="/api/stands", tags=["stands"])
logger = logging.getLogger(__name__)

STORE_UNAVAILABLE_DETAIL = "Queue store temporarily unavailable, please retry"


@router.post("/{enterprise_id}/join", response_model=QueueActionResponse)
def join_stand(
    enterprise_id: str,
    principal: Principal = Depends(require_roles(Role.PARTICIPANT)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    加入攤位（參加者 endpoint）

    攤位不存在時會自動建立。

    錯誤：
        400: CLOSED / CAPACITY_EXCEEDED / PARTICIPANT_LIMIT_EXCEEDED / ALREADY_JOINED
    """
    try:
        outcome = coordinator.join(db, principal.id, enterprise_id)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)

        return QueueActionResponse(
            message="Successfully joined queue",
            entry=EntryResponse.model_validate(outcome.value)
        )

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to join stand {enterprise_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{enterprise_id}/leave", response_model=QueueActionResponse)
def leave_stand(
    enterprise_id: str,
    principal: Principal = Depends(require_roles(Role.PARTICIPANT)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    離開攤位（參加者 endpoint）

    錯誤：
        404: 攤位不存在，或參加者不在此攤位排隊中
    """
    try:
        outcome = coordinator.leave(db, principal.id, enterprise_id)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)

        return QueueActionResponse(
            message="Successfully left queue",
            entry=EntryResponse.model_validate(outcome.value)
        )

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to leave stand {enterprise_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{enterprise_id}", response_model=StandResponse)
def upsert_stand(
    enterprise_id: str,
    data: StandUpsert,
    principal: Principal = Depends(require_roles(*OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    建立或修改攤位（管理者 endpoint）

    - status=Closed 會關閉攤位
    - 其他 status 會重新開放攤位（Open/Full 由佔用數決定）
    - capacity 不能小於目前的佔用數
    """
    try:
        outcome = coordinator.upsert_stand(db, enterprise_id, data.status, data.capacity)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)

        logger.info(f"Stand {enterprise_id} updated by {principal.role.value} {principal.id}")
        return StandResponse.model_validate(outcome.value)

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to update stand {enterprise_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/status", response_model=List[StandStatusResponse])
def get_all_stands_status(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """所有攤位與其 Waiting/Active 紀錄"""
    try:
        outcome = coordinator.get_status(db)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)
        return outcome.value

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to get stands status: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/mine", response_model=StandStatusResponse)
def get_my_stand(
    principal: Principal = Depends(require_roles(Role.ENTERPRISE)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """企業查詢自己攤位的排隊狀況（principal.id 即 enterprise_id）"""
    try:
        outcome = coordinator.get_enterprise_queue(db, principal.id)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)
        return outcome.value

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to get queue for enterprise {principal.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{stand_id}/status", response_model=StandStatusResponse)
def get_stand_status(
    stand_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    try:
        outcome = coordinator.get_status(db, stand_id)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)
        return outcome.value[0]

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to get status of stand {stand_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{stand_id}/events", response_model=List[EventResponse])
def get_stand_events(
    stand_id: str,
    principal: Principal = Depends(require_roles(*OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """攤位的稽核紀錄（依發生順序）"""
    try:
        outcome = coordinator.get_events(db, stand_id)
        if not outcome.ok:
            raise_for_rejection(outcome.rejection)
        return [EventResponse.model_validate(event) for event in outcome.value]

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail=STORE_UNAVAILABLE_DETAIL)
    except Exception as e:
        logger.error(f"Failed to get events of stand {stand_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
