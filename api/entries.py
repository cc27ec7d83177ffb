"""
Queue Entry API Endpoints（攤位管理者）

職責：
1. start：Waiting -> Active
2. complete / uncomplete
3. cancel：管理者取消，或參加者取消自己的紀錄
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import EntryResponse, QueueActionResponse
from core.exceptions import RejectionReason, StoreUnavailable
from core.queue_coordinator import QueueCoordinator, get_coordinator
from core.role_gate import OPERATOR_ROLES, Principal, Role
from api.dependencies import raise_for_rejection, require_roles

router = APIRouter(prefix="/api/entries", tags=["entries"])
logger = logging.getLogger(__name__)

# uncomplete 時攤位沒有空位屬於狀態衝突
ENTRY_STATUS_OVERRIDES = {RejectionReason.CAPACITY_EXCEEDED: 409}


def _respond(outcome, message: str) -> QueueActionResponse:
    if not outcome.ok:
        raise_for_rejection(outcome.rejection, ENTRY_STATUS_OVERRIDES)
    return QueueActionResponse(message=message, entry=EntryResponse.model_validate(outcome.value))


@router.post("/{entry_id}/start", response_model=QueueActionResponse)
def start_entry(
    entry_id: str,
    principal: Principal = Depends(require_roles(*OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    try:
        return _respond(coordinator.start(db, entry_id), "Entry started")

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Queue store temporarily unavailable, please retry")
    except Exception as e:
        logger.error(f"Failed to start entry {entry_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{entry_id}/complete", response_model=QueueActionResponse)
def complete_entry(
    entry_id: str,
    principal: Principal = Depends(require_roles(*OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    完成一筆紀錄（管理者 endpoint）

    錯誤：
        404: 紀錄不存在
        409: 紀錄不是 Waiting/Active（例如已經 Completed）
    """
    try:
        return _respond(coordinator.complete(db, entry_id), "Entry completed")

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Queue store temporarily unavailable, please retry")
    except Exception as e:
        logger.error(f"Failed to complete entry {entry_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{entry_id}/uncomplete", response_model=QueueActionResponse)
def uncomplete_entry(
    entry_id: str,
    principal: Principal = Depends(require_roles(*OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    撤銷完成（管理者 endpoint）

    錯誤：
        404: 紀錄不存在
        409: 紀錄不是 Completed，或攤位已經沒有空位
    """
    try:
        return _respond(coordinator.uncomplete(db, entry_id), "Entry reopened")

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Queue store temporarily unavailable, please retry")
    except Exception as e:
        logger.error(f"Failed to uncomplete entry {entry_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{entry_id}/cancel", response_model=QueueActionResponse)
def cancel_entry(
    entry_id: str,
    principal: Principal = Depends(require_roles(Role.PARTICIPANT, *OPERATOR_ROLES)),
    db: Session = Depends(get_db),
    coordinator: QueueCoordinator = Depends(get_coordinator),
):
    """
    取消一筆紀錄

    參加者只能取消自己的紀錄（403），管理者可以取消任何紀錄。
    """
    try:
        owner_id = None if principal.is_operator else principal.id
        return _respond(coordinator.cancel(db, entry_id, owner_id=owner_id), "Entry cancelled")

    except HTTPException:
        raise
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Queue store temporarily unavailable, please retry")
    except Exception as e:
        logger.error(f"Failed to cancel entry {entry_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
