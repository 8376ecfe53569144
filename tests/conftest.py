"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from main import app
from src.api.dependencies import get_price_engine
from src.database.db import build_engine
from src.database.models import Base
from src.services.observation_store import ObservationStore
from src.services.price_engine import build_price_engine
from src.services.snapshot_store import SnapshotStore
from src.utils.config import Config
from src.utils.event_store import EventStore


class FakeClock:
    """Manually advanced clock for time-dependent tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def test_db():
    """Create a file-based test database."""
    # Create a temporary file for the database
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    engine.dispose()
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def session_factory(test_db):
    """Session factory bound to the test database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db)


@pytest.fixture
def observation_store(session_factory):
    return ObservationStore(session_factory)


@pytest.fixture
def snapshot_store(session_factory):
    return SnapshotStore(session_factory)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def test_config(monkeypatch):
    """Configuration with no upstream URLs and a small worker pool."""
    for name in ("RATES_API_URL", "LIVE_FEED_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REFERENCE_CURRENCY", "USD")
    monkeypatch.setenv("SECONDARY_CURRENCIES", "EUR,TRY")
    monkeypatch.setenv("AGGREGATION_WORKERS", "2")
    return Config()


@pytest.fixture
def price_engine(test_config, session_factory, fake_clock):
    """Price engine wired to the test database and a fake clock."""
    return build_price_engine(test_config, session_factory, event_store=EventStore(), clock=fake_clock)


@pytest.fixture
def test_client(price_engine):
    """Create a test client with the test price engine."""
    app.dependency_overrides[get_price_engine] = lambda: price_engine

    from fastapi.testclient import TestClient

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()
