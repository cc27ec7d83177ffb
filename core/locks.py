"""
並發控制工具

兩層鎖：
1. Process 內的 keyed lock（每個 Stand / 每個參加者一把），SQLite 也有效
2. Database-level 的 SELECT ... FOR UPDATE（PostgreSQL 的行級鎖），跨 process 有效

同一個攤位上的所有寫入操作都必須在這兩層鎖內完成「讀取 -> 判斷 -> 寫入」。
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy.orm import Query, Session

from models import QueueEntry, Stand


def stand_key(stand_id: str) -> str:
    return f"stand:{stand_id}"


def participant_key(participant_id: str) -> str:
    return f"participant:{participant_id}"


class KeyedLockRegistry:
    """
    每個 key 一把 threading.Lock

    hold() 一律依 key 排序後取得鎖，所以 "participant:*" 永遠在 "stand:*" 之前，
    多把鎖同時持有也不會 deadlock。
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


def with_stand_lock(stand_id: str, db: Session) -> Query:
    """
    鎖定一個 Stand（行級鎖）

    使用場景：
    - 讀取 occupancy 之後要寫回時
    - 需要確保 Stand 在整個 transaction 期間不被其他請求修改

    範例：
        stand = with_stand_lock(stand_id, db).first()
        if not stand:
            raise StandNotFound(stand_id)

    注意：
        - populate_existing() 強制覆蓋 Session 內可能已過期的物件
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Stand).filter(
        Stand.id == stand_id
    ).with_for_update(nowait=False).populate_existing()


def with_entry_lock(entry_id: str, db: Session) -> Query:
    """
    鎖定一筆 QueueEntry（行級鎖）

    必須在已經持有所屬 Stand 的鎖之後才呼叫，順序固定為 Stand -> Entry。
    """
    return db.query(QueueEntry).filter(
        QueueEntry.id == entry_id
    ).with_for_update(nowait=False).populate_existing()
