"""Map statistics derived from finished rounds and from player map totals.

- ``server_map_stats``: (server, map, year, month) rounds, play time,
  concurrent players and team victories
- ``map_server_hourly_patterns``: (server, map, game, day-of-week, hour)
  how often and how full a map is played in each slot
- ``map_global_averages``: per-map kill and score rates from the cross-server
  rows of ``player_map_stats``
"""

from __future__ import annotations

from datetime import datetime

import polars as pl
from sqlalchemy import and_, func, select
from sqlalchemy.engine import Connection

from rollups.core.constants import GLOBAL_SCOPE, TRACKED_GAMES
from rollups.core.ratios import rate_expr
from rollups.core.results import RoutineOutput
from rollups.core.time import month_bucket, month_start
from rollups.routines.base import RecomputeScope
from rollups.sql import models as M
from rollups.sql.load import load_rounds_df
from rollups.sql.query import bucket_at_or_after, delete_rows, upsert_rows


def build_server_map_stats(rounds: pl.DataFrame) -> pl.DataFrame:
    """Monthly per-server, per-map round statistics.

    A team wins a round when both ticket counts are known and its count is
    strictly higher. Labels keep the greatest non-null label seen.
    """
    both_known = pl.col("tickets1").is_not_null() & pl.col("tickets2").is_not_null()
    return (
        rounds.with_columns(
            pl.col("start_time").dt.year().alias("year"),
            pl.col("start_time").dt.month().alias("month"),
            pl.col("participant_count").fill_null(0).alias("participants"),
        )
        .group_by(["server_guid", "map_name", "year", "month"])
        .agg(
            pl.len().alias("total_rounds"),
            pl.col("duration_minutes").fill_null(0).sum().alias("total_play_time_minutes"),
            pl.col("participants").mean().round(2).alias("avg_concurrent_players"),
            pl.col("participants").max().alias("peak_concurrent_players"),
            (both_known & (pl.col("tickets1") > pl.col("tickets2")))
            .sum()
            .alias("team1_victories"),
            (both_known & (pl.col("tickets2") > pl.col("tickets1")))
            .sum()
            .alias("team2_victories"),
            pl.col("team1_label").max().alias("team1_label"),
            pl.col("team2_label").max().alias("team2_label"),
        )
        .sort(["server_guid", "map_name", "year", "month"])
    )


def build_map_server_hourly_patterns(rounds: pl.DataFrame) -> pl.DataFrame:
    tracked = rounds.filter(pl.col("game").is_in(list(TRACKED_GAMES)))
    return (
        tracked.with_columns(
            (pl.col("start_time").dt.weekday() % 7).cast(pl.Int64).alias("day_of_week"),
            pl.col("start_time").dt.hour().cast(pl.Int64).alias("hour_of_day"),
            pl.col("start_time").dt.date().alias("date_key"),
            pl.col("participant_count").fill_null(0).alias("participants"),
        )
        .group_by(["server_guid", "map_name", "game", "day_of_week", "hour_of_day"])
        .agg(
            pl.col("participants").mean().round(2).alias("avg_players"),
            pl.len().alias("times_played"),
            pl.col("date_key").n_unique().alias("data_points"),
        )
        .sort(["server_guid", "map_name", "game", "day_of_week", "hour_of_day"])
    )


def _stamp(frame: pl.DataFrame, now: datetime) -> list[dict]:
    return frame.with_columns(pl.lit(now).alias("updated_at")).to_dicts()


def recompute_server_map_stats(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.ServerMapStats.__table__
    floor = month_start(scope.since) if scope.since is not None else None
    conditions = []
    if floor is not None:
        conditions.append(bucket_at_or_after(table.c.year, table.c.month, month_bucket(floor)))
    deleted = delete_rows(conn, table, *conditions)
    rounds = load_rounds_df(conn, since=floor)
    written = upsert_rows(conn, table, _stamp(build_server_map_stats(rounds), scope.now))
    return RoutineOutput(rows_written=written, rows_deleted=deleted)


def refresh_server_map_period(
    conn: Connection,
    server_guid: str,
    map_name: str,
    year: int,
    month: int,
    now: datetime,
) -> RoutineOutput:
    """Recompute a single (server, map, month) bucket after a round edit.

    The bucket is removed when no qualifying round remains.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    table = M.ServerMapStats.__table__
    deleted = delete_rows(
        conn,
        table,
        table.c.server_guid == server_guid,
        table.c.map_name == map_name,
        table.c.year == year,
        table.c.month == month,
    )
    start = datetime(year, month, 1)
    end = datetime(year + month // 12, month % 12 + 1, 1)
    rounds = load_rounds_df(
        conn, since=start, until=end, server_guid=server_guid, map_name=map_name
    )
    written = upsert_rows(conn, table, _stamp(build_server_map_stats(rounds), now))
    return RoutineOutput(rows_written=written, rows_deleted=deleted)


def recompute_map_server_hourly_patterns(
    conn: Connection, scope: RecomputeScope
) -> RoutineOutput:
    table = M.MapServerHourlyPattern.__table__
    deleted = delete_rows(conn, table)
    rounds = load_rounds_df(conn, since=scope.since, games=TRACKED_GAMES)
    frame = build_map_server_hourly_patterns(rounds)
    written = upsert_rows(conn, table, _stamp(frame, scope.now))
    return RoutineOutput(rows_written=written, rows_deleted=deleted)


def recompute_map_global_averages(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    """Per-map kill/score rates over every cross-server player map bucket."""
    pms = M.PlayerMapStats.__table__
    table = M.MapGlobalAverage.__table__
    deleted = delete_rows(conn, table)
    stmt = (
        select(
            pms.c.map_name,
            func.sum(pms.c.total_kills).label("kills"),
            func.sum(pms.c.total_score).label("score"),
            func.sum(pms.c.total_play_time_minutes).label("minutes"),
            func.count().label("sample_count"),
        )
        .where(
            and_(
                pms.c.server_guid == GLOBAL_SCOPE,
                pms.c.total_play_time_minutes > 0,
            )
        )
        .group_by(pms.c.map_name)
        .order_by(pms.c.map_name)
    )
    records = [dict(r) for r in conn.execute(stmt).mappings()]
    if not records:
        return RoutineOutput(rows_deleted=deleted)
    frame = pl.DataFrame(
        records,
        schema={
            "map_name": pl.Utf8,
            "kills": pl.Int64,
            "score": pl.Int64,
            "minutes": pl.Float64,
            "sample_count": pl.Int64,
        },
    ).select(
        "map_name",
        pl.lit(GLOBAL_SCOPE).alias("server_guid"),
        rate_expr("kills", "minutes").alias("avg_kill_rate"),
        rate_expr("score", "minutes").alias("avg_score_rate"),
        "sample_count",
    )
    written = upsert_rows(conn, table, _stamp(frame, scope.now))
    return RoutineOutput(rows_written=written, rows_deleted=deleted)
