"""Shared fixtures: in-memory SQLite per test, coordinator, FastAPI client."""

import os

# 不要在測試時建立 ./stand_queue.db
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from database import get_db  # noqa: E402
from core.queue_coordinator import CoordinatorConfig, QueueCoordinator, get_coordinator  # noqa: E402
from main import app  # noqa: E402
from tests.util import make_memory_engine  # noqa: E402


@pytest.fixture
def engine():
    engine = make_memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config():
    return CoordinatorConfig()


@pytest.fixture
def coordinator(config):
    return QueueCoordinator(config)


@pytest.fixture
def client(session_factory, coordinator):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()
