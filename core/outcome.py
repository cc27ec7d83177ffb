"""
QueueOutcome：Coordinator 對外的回傳型別

業務規則的拒絕不會以異常的形式離開 Coordinator，
而是包成 QueueOutcome.rejected(Rejection(reason, message))。
"""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from core.exceptions import QueueRejection, RejectionReason

T = TypeVar("T")


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    message: str

    @classmethod
    def from_exception(cls, exc: QueueRejection) -> "Rejection":
        return cls(reason=exc.reason, message=exc.message)

    def as_dict(self):
        return {"reason": self.reason.value, "message": self.message}


@dataclass(frozen=True)
class QueueOutcome(Generic[T]):
    value: Optional[T] = None
    rejection: Optional[Rejection] = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def accepted(cls, value: T) -> "QueueOutcome[T]":
        return cls(value=value)

    @classmethod
    def rejected(cls, rejection: Rejection) -> "QueueOutcome[T]":
        return cls(rejection=rejection)
