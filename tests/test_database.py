"""@transactional commit / rollback behaviour."""

import pytest

from database import transactional
from models import Stand, StandStatus


@transactional
def create_stand(db, enterprise_id, fail=False):
    db.add(Stand(enterprise_id=enterprise_id, capacity=2, status=StandStatus.OPEN))
    db.flush()
    if fail:
        raise RuntimeError("boom")


def test_commits_on_success(db):
    create_stand(db, "acme")

    db.rollback()
    assert db.query(Stand).filter(Stand.enterprise_id == "acme").count() == 1


def test_rolls_back_and_reraises(db):
    with pytest.raises(RuntimeError):
        create_stand(db, "acme", fail=True)

    assert db.query(Stand).count() == 0


def test_session_passed_by_keyword(db):
    create_stand(db=db, enterprise_id="globex")

    assert db.query(Stand).filter(Stand.enterprise_id == "globex").count() == 1


def test_missing_session_is_rejected():
    with pytest.raises(ValueError):
        create_stand("not-a-session", "acme")
