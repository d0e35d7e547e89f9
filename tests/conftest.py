"""Shared fixtures: a file-backed SQLite store per test and a fixed clock."""

from datetime import datetime, timedelta
from itertools import count

import pytest
from sqlalchemy import insert, select

from rollups.core.time import Clock
from rollups.jobs.leases import LeaseCoordinator
from rollups.sql import create_all, create_engine
from rollups.sql import models as M

# Wednesday; the ISO week started on Monday 2025-07-14
NOW = datetime(2025, 7, 16, 12, 0)

_session_ids = count(1)


def session_row(
    player: str,
    start: datetime,
    *,
    minutes: float = 30,
    score: int = 10,
    kills: int = 1,
    deaths: int = 1,
    server: str = "srv-1",
    map_name: str | None = "wake",
    round_id: str | None = "auto",
    is_deleted: bool = False,
    is_active: bool = False,
) -> dict:
    session_id = next(_session_ids)
    return {
        "session_id": session_id,
        "player_name": player,
        "server_guid": server,
        "map_name": map_name,
        "round_id": f"r-{session_id}" if round_id == "auto" else round_id,
        "start_time": start,
        "last_seen_time": start + timedelta(minutes=minutes),
        "total_score": score,
        "total_kills": kills,
        "total_deaths": deaths,
        "average_ping": 50.0,
        "is_active": is_active,
        "is_deleted": is_deleted,
    }


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'rollups.db'}")
    create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def clock() -> Clock:
    return Clock(fixed_now=NOW)


@pytest.fixture
def leases() -> LeaseCoordinator:
    return LeaseCoordinator()


@pytest.fixture
def make_session():
    return session_row


@pytest.fixture
def seed(engine):
    """Insert row dicts into a mapped table."""

    def _seed(model, rows):
        rows = list(rows)
        if rows:
            with engine.begin() as conn:
                # Rows may carry differing key sets; insert one at a time so
                # omitted columns fall back to their defaults / NULL.
                for row in rows:
                    conn.execute(insert(model.__table__), row)
        return rows

    return _seed


@pytest.fixture
def fetch(engine):
    """All rows of a mapped table as dicts, ordered by primary key."""

    def _fetch(model, *where):
        table = model.__table__
        stmt = select(table).order_by(*table.primary_key.columns)
        if where:
            stmt = stmt.where(*where)
        with engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    return _fetch


@pytest.fixture
def models():
    return M
