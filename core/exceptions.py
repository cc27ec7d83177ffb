"""
自定義異常類別

集中管理所有排隊業務異常。每個 QueueRejection 都帶有穩定的 reason 代碼，
Coordinator 會把它們轉成 QueueOutcome 回傳，API 層再對應到 HTTP 狀態碼。
"""
import enum


class RejectionReason(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_IN_QUEUE = "NOT_IN_QUEUE"
    INVALID_STATE = "INVALID_STATE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    PARTICIPANT_LIMIT_EXCEEDED = "PARTICIPANT_LIMIT_EXCEEDED"
    CLOSED = "CLOSED"
    ALREADY_JOINED = "ALREADY_JOINED"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"


class StandQueueException(Exception):
    """所有排隊異常的基類"""
    pass


class QueueRejection(StandQueueException):
    """業務規則拒絕（不是系統錯誤）"""
    reason = RejectionReason.INVALID_STATE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ============ 找不到 ============

class StandNotFound(QueueRejection):
    """攤位不存在"""
    reason = RejectionReason.NOT_FOUND

    def __init__(self, stand_ref):
        self.stand_ref = stand_ref
        super().__init__(f"Stand {stand_ref} not found")


class EntryNotFound(QueueRejection):
    """排隊紀錄不存在"""
    reason = RejectionReason.NOT_FOUND

    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Queue entry {entry_id} not found")


class NotInQueue(QueueRejection):
    """參加者在此攤位沒有 Waiting/Active 的紀錄"""
    reason = RejectionReason.NOT_IN_QUEUE

    def __init__(self, participant_id, stand_ref):
        self.participant_id = participant_id
        self.stand_ref = stand_ref
        super().__init__(f"Participant {participant_id} is not in the queue of stand {stand_ref}")


# ============ 狀態轉換 ============

class InvalidStateTransition(QueueRejection):
    """非法的狀態轉換"""
    reason = RejectionReason.INVALID_STATE


class StaleEntryState(QueueRejection):
    """紀錄在取得鎖之前已被其他請求修改"""
    reason = RejectionReason.CONFLICT


# ============ 容量 ============

class CapacityExceeded(QueueRejection):
    """攤位已滿"""
    reason = RejectionReason.CAPACITY_EXCEEDED


class ParticipantLimitExceeded(QueueRejection):
    """參加者同時排隊的攤位數已達上限"""
    reason = RejectionReason.PARTICIPANT_LIMIT_EXCEEDED


class StandClosed(QueueRejection):
    """攤位不接受新的參加者"""
    reason = RejectionReason.CLOSED


class AlreadyJoined(QueueRejection):
    """參加者已經在這個攤位排隊"""
    reason = RejectionReason.ALREADY_JOINED


class NotEntryOwner(QueueRejection):
    """參加者不能操作別人的紀錄"""
    reason = RejectionReason.FORBIDDEN


class InvalidStandSettings(QueueRejection):
    """攤位設定值超出允許範圍"""
    reason = RejectionReason.INVALID_ARGUMENT


# ============ 系統錯誤 ============

class StoreUnavailable(StandQueueException):
    """資料庫暫時無法使用（可以重試）"""
    pass


_REJECTIONS_BY_REASON = {
    RejectionReason.INVALID_STATE: InvalidStateTransition,
    RejectionReason.CONFLICT: StaleEntryState,
    RejectionReason.CAPACITY_EXCEEDED: CapacityExceeded,
    RejectionReason.PARTICIPANT_LIMIT_EXCEEDED: ParticipantLimitExceeded,
    RejectionReason.CLOSED: StandClosed,
    RejectionReason.ALREADY_JOINED: AlreadyJoined,
}


def rejection_for(reason: RejectionReason, message: str) -> QueueRejection:
    """把 CapacityPolicy 的 Deny 轉成對應的異常"""
    return _REJECTIONS_BY_REASON[reason](message)
