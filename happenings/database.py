"""Engine and session plumbing for the Happenings store.

The module-level ``engine`` and ``SessionLocal`` are bound to the configured
SQLite file at import time; tests rebind both to an in-memory database built
with the same factories.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings


def build_database_url(path: str | Path) -> str:
    """``~/data/happenings.sqlite`` -> ``sqlite:////home/me/data/happenings.sqlite``."""
    return f"sqlite:///{Path(path).expanduser()}"


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless this is set on every connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite engines share connections across threads."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    db_engine = create_engine(url, future=True, **kwargs)
    if db_engine.dialect.name == "sqlite":
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
    return db_engine


def create_session_factory(bind: Engine) -> scoped_session:
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


def alembic_url(bind: Engine) -> str:
    """The engine URL escaped for ``alembic.config.Config.set_main_option``.

    Alembic stores options in a ConfigParser, which reads ``%`` as the start of
    an interpolation; a URL-quoted path such as ``%3Amemory%3A`` must be doubled.
    """
    return bind.url.render_as_string(hide_password=False).replace("%", "%%")


DATABASE_URL = build_database_url(settings.database_path)
engine = create_db_engine(DATABASE_URL)
SessionLocal = create_session_factory(engine)


@contextmanager
def get_session():
    """Context manager returning a SQLAlchemy session."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
