"""SQL utilities for the rollup engine.

This package defines:
- SQLAlchemy models for the raw participation log, the rollup tables and
  the ``rollup_runs`` telemetry table
- Engine/session helpers (SQLite with WAL and a busy timeout)
- The batched upsert builder used by every recomputation routine
- Loaders that return Polars DataFrames for the routines and for readers

Environment variables:
- ROLLUPS_DATABASE_URL or DATABASE_URL: SQLAlchemy URL for the DB engine
- ROLLUPS_DB_PATH: SQLite file path, used when no URL is set
"""

from __future__ import annotations

from rollups.sql import models
from rollups.sql.engine import (
    Base,
    create_all,
    create_engine,
    create_session_factory,
    resolve_database_url,
)
from rollups.sql.load import (
    load_last_activity_df,
    load_participation_df,
    load_player_lifetime_totals,
    load_player_monthly_df,
)
from rollups.sql.query import upsert_rows

__all__ = [
    "Base",
    "create_all",
    "create_engine",
    "create_session_factory",
    "load_last_activity_df",
    "load_participation_df",
    "load_player_lifetime_totals",
    "load_player_monthly_df",
    "models",
    "resolve_database_url",
    "upsert_rows",
]
