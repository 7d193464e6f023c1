"""Shared fixtures: every test gets its own SQLite file database."""

import pytest

from rewards import store
from rewards.db import Database
from rewards.service import RewardService

BONUS_TO_REFERRER = 50
BONUS_TO_REFERRED = 10


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'rewards.db'}", echo=False)
    yield db
    db.dispose()


@pytest.fixture
def service(database) -> RewardService:
    svc = RewardService(
        database,
        bonus_to_referrer=BONUS_TO_REFERRER,
        bonus_to_referred=BONUS_TO_REFERRED,
    )
    svc.initialize()
    return svc


@pytest.fixture
def make_account(service):
    """Create an account directly in the store and return its id."""

    def _make(username: str, points: int = 0) -> int:
        with service.db.transaction() as session:
            return store.create_account(session, username, points).id

    return _make


@pytest.fixture
def points_of(service):
    def _points(user_id: int) -> int:
        with service.db.session() as session:
            return store.get_account(session, user_id).points

    return _points
