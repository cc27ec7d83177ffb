"""
Role Gate 的邊界

身分驗證由上游（登入服務 / gateway）負責，這裡只定義 Coordinator
需要的結果：一個已驗證的 Principal（id + role），以及角色檢查。
"""
import enum
from dataclasses import dataclass
from typing import Iterable


class Role(str, enum.Enum):
    ADMIN = "Admin"
    ORGANIZER = "Organizer"
    PARTICIPANT = "Participant"
    ENTERPRISE = "Enterprise"


OPERATOR_ROLES = (Role.ADMIN, Role.ORGANIZER)


@dataclass(frozen=True)
class Principal:
    """
    已驗證的呼叫者

    id 依角色代表不同的東西：Participant 的 participant_id、
    Enterprise 的 enterprise_id。
    """
    id: str
    role: Role

    def has_role(self, roles: Iterable[Role]) -> bool:
        return self.role in tuple(roles)

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES
