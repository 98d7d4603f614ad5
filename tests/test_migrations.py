from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from happenings import storage, database
from happenings.models import Base


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except Exception:
            return None


def test_upgrade_database_stamps_existing_db(monkeypatch, tmp_path):
    db_path = tmp_path / "existing.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(bind=engine)  # existing schema without Alembic tracking
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    assert inspector.has_table("venues")
    assert inspector.has_table("events")
    assert inspector.has_table("occurrence_overrides")
    unique_names = {
        constraint["name"]
        for constraint in inspector.get_unique_constraints("occurrence_overrides")
    }
    assert "uq_occurrence_overrides_event_date" in unique_names


def test_upgrade_database_is_repeatable_and_backs_up(monkeypatch, tmp_path):
    db_path = tmp_path / "repeat.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    storage.upgrade_database(make_backup=False)
    actions = storage.upgrade_database(make_backup=True)

    assert "Applied Alembic migrations to head" in actions
    assert any(action.startswith("Backup created at") for action in actions)
    assert (tmp_path / "repeat.sqlite.bak").exists()
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_accepts_percent_in_url(monkeypatch, tmp_path):
    db_path = tmp_path / "happenings%20data.sqlite"
    engine = database.create_db_engine(f"sqlite:///{db_path}")
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"


def test_upgrade_database_on_in_memory_engine(monkeypatch, tmp_path):
    engine = database.create_db_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    _patch_db(monkeypatch, engine, tmp_path / "unused.sqlite")

    storage.upgrade_database(make_backup=False)
    actions = storage.upgrade_database(make_backup=False)

    assert actions == ["Applied Alembic migrations to head"]
    assert inspect(engine).has_table("occurrence_overrides")
