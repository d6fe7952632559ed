"""
Shared test fixtures for signal-scan.

Provides:
- db_session: In-memory SQLite session with all tables created
- client: FastAPI TestClient with DB dependency override
- make_profile: factory for SearchProfile rows
"""

import os

# Force sqlite for tests; must be set before any src imports.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SEARCH_API_KEY"] = "default-test-key"
os.environ.pop("API_KEY", None)

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.entities.base import Base
from src.repositories.search_profile_repo import SearchProfileRepository

# Import ALL entity modules so Base.metadata.create_all() registers them.
import src.entities.api_credential  # noqa: F401
import src.entities.rate_budget  # noqa: F401
import src.entities.scan_batch  # noqa: F401
import src.entities.scan_task  # noqa: F401
import src.entities.search_profile  # noqa: F401


@pytest.fixture
def db_session():
    """In-memory SQLite for unit tests. Never hits production DB."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)

    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def make_profile(db_session: Session):
    """Create a SearchProfile owned by ``owner-1`` unless told otherwise."""
    repo = SearchProfileRepository(db_session)

    def _make(owner_id: str = "owner-1", name: str = "Construction PMs", **kwargs):
        return repo.create_profile(owner_id, name, **kwargs)

    return _make


@pytest.fixture
def client(db_session: Session):
    """FastAPI TestClient with DB dependency overridden to use in-memory SQLite."""
    from fastapi.testclient import TestClient
    from src.core.database import get_db
    from src.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()
