from datetime import datetime

import pytest

from src.repositories.scan_batch_repo import ScanBatchRepository
from src.repositories.scan_task_repo import ScanTaskRepository


@pytest.fixture
def now():
    """A fixed 'current time' so schedule comparisons are deterministic."""
    return datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def task_repo(db_session):
    return ScanTaskRepository(db_session)


@pytest.fixture
def batch(db_session, make_profile):
    """A profile with one open batch; returns (profile_id, batch_id)."""
    profile = make_profile()
    created = ScanBatchRepository(db_session).create_batch(profile.id)
    return profile.id, created.id
