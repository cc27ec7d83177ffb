from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from database import Base


def make_memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


def as_participant(participant_id):
    return {"X-User-Id": participant_id, "X-User-Role": "Participant"}


def as_organizer(organizer_id="org-1"):
    return {"X-User-Id": organizer_id, "X-User-Role": "Organizer"}


def as_enterprise(enterprise_id):
    return {"X-User-Id": enterprise_id, "X-User-Role": "Enterprise"}
