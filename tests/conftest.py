"""Shared pytest fixtures for Happenings."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from happenings import api, database, storage
from happenings.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.create_db_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    session_factory = database.create_session_factory(engine)
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def make_event(**fields) -> SimpleNamespace:
    """An in-memory event definition with every scheduling field present."""
    values = {
        "id": "evt-1",
        "title": "Open Mic",
        "status": "active",
        "venue_id": None,
        "event_date": None,
        "day_of_week": None,
        "recurrence_rule": None,
        "is_recurring": None,
        "custom_dates": None,
        "max_occurrences": None,
        "start_time": "19:00",
        "end_time": None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


@pytest.fixture()
def event_factory():
    return make_event
