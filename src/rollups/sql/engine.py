from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .constants import DATABASE_URL_ENVS, DB_PATH_ENV, SQLITE_BUSY_TIMEOUT_MS

Base = declarative_base()


def resolve_database_url(url: Optional[str] = None) -> str:
    """Resolve the database URL.

    Resolution order:
    - explicit ``url`` arg
    - env ``ROLLUPS_DATABASE_URL``
    - env ``DATABASE_URL``
    - env ``ROLLUPS_DB_PATH`` (SQLite file path)
    """
    if url:
        return url
    for name in DATABASE_URL_ENVS:
        value = os.getenv(name)
        if value:
            return value
    path = os.getenv(DB_PATH_ENV)
    if path:
        return f"sqlite:///{path}"
    raise RuntimeError(
        "No database URL provided. Set ROLLUPS_DATABASE_URL or DATABASE_URL, "
        f"or point {DB_PATH_ENV} at a SQLite file."
    )


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    # WAL lets readers keep a consistent snapshot while a rollup is replaced
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_engine(url: Optional[str] = None, *, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for the backing store.

    SQLite connections are configured with WAL journaling and a busy timeout
    so lock contention waits instead of failing immediately.
    """
    database_url = resolve_database_url(url)
    engine = _sa_create_engine(database_url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _configure_sqlite)
    return engine


def create_session_factory(engine: Engine):
    """Return a configured sessionmaker bound to the engine."""
    return sessionmaker(
        bind=engine, autoflush=False, autocommit=False, future=True
    )


def create_all(engine: Engine) -> None:
    """Create raw, rollup and telemetry tables (idempotent)."""
    from . import models  # noqa: F401 - ensure models are imported

    Base.metadata.create_all(engine)
