from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./stand_queue.db"

    # "direct": 入場即 Active，預設容量 2
    # "queue":  先排隊 Waiting，預設容量 4
    join_mode: str = "direct"
    stand_capacity: Optional[int] = None
    max_stand_capacity: int = 4
    max_active_entries: int = 2
    strict_participant_limit: bool = True

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def _connect_args(url: str) -> dict:
    # 同一個 SQLite 連線會被 threadpool 裡不同的 worker 使用
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(settings.database_url),
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """每個請求一個 Session，回應送出後關閉"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _session_argument(args, kwargs) -> Optional[Session]:
    if args and isinstance(args[0], Session):
        return args[0]
    return kwargs.get("db")


def transactional(func):
    """
    把一次攤位 / 排隊紀錄的寫入包成單一 transaction

    被裝飾的函式只負責修改 ORM 物件與 flush；成功返回後 commit，
    任何異常都先 rollback 再往上拋，Stand、QueueEntry、EventLog
    三者要嘛一起寫入，要嘛都不寫入。

    異常：
        ValueError: 找不到 db: Session 參數（第一個位置參數或 db=）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _session_argument(args, kwargs)
        if db is None:
            raise ValueError(f"{func.__name__} is @transactional and needs a db: Session argument")

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
