"""Subject period totals and subject dimension totals.

- ``player_stats_monthly``: (player, year, month)
- ``player_server_stats``: (player, server, ISO year, ISO week)
- ``player_map_stats``: (player, map, server scope, year, month), where the
  ``GLOBAL_SCOPE`` server scope holds the cross-server row

Each bucket sums only the records that started inside it, so summing every
bucket of a player reproduces the lifetime totals. A trailing window is
floored to the start of its bucket before anything is deleted; the replaced
buckets are therefore always recomputed from complete data.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import polars as pl
from sqlalchemy.engine import Connection

from rollups.core.constants import GLOBAL_SCOPE
from rollups.core.ratios import kd_ratio_expr, rate_expr
from rollups.core.results import RoutineOutput
from rollups.core.time import iso_week_bucket, iso_week_start, month_bucket, month_start
from rollups.routines.base import RecomputeScope, clean_participation
from rollups.sql import models as M
from rollups.sql.load import load_participation_df
from rollups.sql.query import bucket_at_or_after, delete_rows, upsert_rows

MINUTES_DIGITS = 3

_COUNTERS = [
    pl.col("round_key").n_unique().alias("total_rounds"),
    pl.col("total_kills").sum().alias("total_kills"),
    pl.col("total_deaths").sum().alias("total_deaths"),
    pl.col("total_score").sum().alias("total_score"),
    pl.col("minutes").sum().round(MINUTES_DIGITS).alias("total_play_time_minutes"),
]


def _load_clean(
    conn: Connection, scope: RecomputeScope, since: Optional[datetime]
) -> tuple[pl.DataFrame, int]:
    raw = load_participation_df(conn, subjects=scope.subjects, since=since)
    return clean_participation(raw)


def aggregate_monthly(sessions: pl.DataFrame) -> pl.DataFrame:
    """Group clean sessions into (player, year, month) totals."""
    grouped = (
        sessions.with_columns(
            pl.col("start_time").dt.year().alias("year"),
            pl.col("start_time").dt.month().alias("month"),
        )
        .group_by(["player_name", "year", "month"])
        .agg(
            *_COUNTERS,
            pl.col("start_time").min().alias("first_round_time"),
            pl.col("last_seen_time").max().alias("last_round_time"),
        )
    )
    return grouped.with_columns(
        pl.when(pl.col("total_rounds") > 0)
        .then((pl.col("total_score") / pl.col("total_rounds")).round(3))
        .otherwise(0.0)
        .alias("avg_score_per_round"),
        kd_ratio_expr().alias("kd_ratio"),
        rate_expr("total_kills", "total_play_time_minutes").alias("kill_rate"),
    ).sort(["player_name", "year", "month"])


def aggregate_server_weekly(sessions: pl.DataFrame) -> pl.DataFrame:
    """Group clean sessions into (player, server, ISO year, ISO week) totals."""
    return (
        sessions.with_columns(
            pl.col("start_time").dt.iso_year().alias("year"),
            pl.col("start_time").dt.week().alias("week"),
        )
        .group_by(["player_name", "server_guid", "year", "week"])
        .agg(*_COUNTERS)
        .sort(["player_name", "server_guid", "year", "week"])
    )


def aggregate_map_monthly(sessions: pl.DataFrame) -> pl.DataFrame:
    """Per-server and cross-server (player, map, year, month) totals."""
    with_map = sessions.filter(
        pl.col("map_name").is_not_null() & (pl.col("map_name") != "")
    ).with_columns(
        pl.col("start_time").dt.year().alias("year"),
        pl.col("start_time").dt.month().alias("month"),
    )
    keys = ["player_name", "map_name", "server_guid", "year", "month"]
    per_server = with_map.group_by(keys).agg(*_COUNTERS)
    global_rows = (
        with_map.group_by(["player_name", "map_name", "year", "month"])
        .agg(*_COUNTERS)
        .with_columns(pl.lit(GLOBAL_SCOPE).alias("server_guid"))
    )
    return pl.concat(
        [per_server, global_rows.select(per_server.columns)], how="vertical"
    ).sort(keys)


def _with_updated_at(frame: pl.DataFrame, now: datetime) -> list[dict]:
    return frame.with_columns(pl.lit(now).alias("updated_at")).to_dicts()


def recompute_monthly(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.PlayerStatsMonthly.__table__
    floor = month_start(scope.since) if scope.since is not None else None
    conditions = []
    if floor is not None:
        conditions.append(bucket_at_or_after(table.c.year, table.c.month, month_bucket(floor)))
    deleted = delete_rows(conn, table, *conditions, subjects=scope.subjects)

    sessions, skipped = _load_clean(conn, scope, floor)
    rows = _with_updated_at(aggregate_monthly(sessions), scope.now)
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted, skipped_records=skipped)


def recompute_server_weekly(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.PlayerServerStats.__table__
    floor = iso_week_start(scope.since) if scope.since is not None else None
    conditions = []
    if floor is not None:
        conditions.append(bucket_at_or_after(table.c.year, table.c.week, iso_week_bucket(floor)))
    deleted = delete_rows(conn, table, *conditions, subjects=scope.subjects)

    sessions, skipped = _load_clean(conn, scope, floor)
    rows = _with_updated_at(aggregate_server_weekly(sessions), scope.now)
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted, skipped_records=skipped)


def recompute_map_monthly(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.PlayerMapStats.__table__
    floor = month_start(scope.since) if scope.since is not None else None
    conditions = []
    if floor is not None:
        conditions.append(bucket_at_or_after(table.c.year, table.c.month, month_bucket(floor)))
    deleted = delete_rows(conn, table, *conditions, subjects=scope.subjects)

    sessions, skipped = _load_clean(conn, scope, floor)
    rows = _with_updated_at(aggregate_map_monthly(sessions), scope.now)
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted, skipped_records=skipped)
