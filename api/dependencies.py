"""
API 共用的 dependency

- get_principal：從上游轉發的 header 建立 Principal
- require_roles：角色檢查
- raise_for_rejection：把 QueueOutcome 的拒絕轉成 HTTPException
"""
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException

from core.exceptions import RejectionReason
from core.outcome import Rejection
from core.role_gate import Principal, Role

REJECTION_STATUS_CODES: Dict[RejectionReason, int] = {
    RejectionReason.NOT_FOUND: 404,
    RejectionReason.NOT_IN_QUEUE: 404,
    RejectionReason.FORBIDDEN: 403,
    RejectionReason.INVALID_STATE: 409,
    RejectionReason.CONFLICT: 409,
    RejectionReason.CAPACITY_EXCEEDED: 400,
    RejectionReason.PARTICIPANT_LIMIT_EXCEEDED: 400,
    RejectionReason.CLOSED: 400,
    RejectionReason.ALREADY_JOINED: 400,
    RejectionReason.INVALID_ARGUMENT: 422,
}


def get_principal(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Principal:
    """
    上游驗證完成後會帶上 X-User-Id / X-User-Role
    """
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        role = Role(x_user_role)
    except ValueError:
        raise HTTPException(status_code=403, detail=f"Unknown role {x_user_role}")

    return Principal(id=x_user_id, role=role)


def require_roles(*roles: Role):
    """
    使用方式：
        principal: Principal = Depends(require_roles(Role.ADMIN, Role.ORGANIZER))
    """
    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(roles):
            raise HTTPException(
                status_code=403,
                detail=f"Forbidden: requires one of the following roles: "
                       f"{', '.join(r.value for r in roles)}"
            )
        return principal

    return dependency


def raise_for_rejection(rejection: Rejection, overrides: Optional[Dict[RejectionReason, int]] = None) -> None:
    status_code = (overrides or {}).get(rejection.reason, REJECTION_STATUS_CODES[rejection.reason])
    raise HTTPException(status_code=status_code, detail=rejection.as_dict())
