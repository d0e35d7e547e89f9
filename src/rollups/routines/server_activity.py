"""Hourly activity distributions derived from raw observations.

- ``server_hourly_patterns``: per (server, day-of-week, hour) average, min,
  max and p25/p50/p75/p90 of the hourly player counts in the window
- ``hourly_player_predictions``: per (game, day-of-week, hour) the average
  over days of the summed player count across servers
- ``hourly_activity_patterns``: per (game, day-of-week, hour) daily unique
  players, rounds and round duration averaged over days

Day-of-week uses the 0=Sunday convention. These profiles describe the whole
window, so each recomputation replaces the table.
"""

from __future__ import annotations

import logging

import polars as pl
from sqlalchemy.engine import Connection

from rollups.core.constants import TRACKED_GAMES
from rollups.core.percentiles import estimate_percentiles
from rollups.core.results import RoutineOutput
from rollups.routines.base import RecomputeScope
from rollups.sql import models as M
from rollups.sql.load import load_activity_sessions_df, load_online_counts_df
from rollups.sql.query import delete_rows, upsert_rows

logger = logging.getLogger(__name__)

VALUE_DIGITS = 3


def _slot_columns(ts: str) -> list[pl.Expr]:
    return [
        (pl.col(ts).dt.weekday() % 7).cast(pl.Int64).alias("day_of_week"),
        pl.col(ts).dt.hour().cast(pl.Int64).alias("hour_of_day"),
    ]


def build_server_hourly_patterns(counts: pl.DataFrame) -> list[dict]:
    """Group observations per slot and attach percentile profiles."""
    if counts.is_empty():
        return []
    grouped = (
        counts.drop_nulls(["hour_timestamp", "avg_players"])
        .with_columns(_slot_columns("hour_timestamp"))
        .group_by(["server_guid", "day_of_week", "hour_of_day"])
        .agg(
            pl.col("avg_players").mean().alias("avg_players"),
            pl.col("avg_players").alias("samples"),
        )
        .sort(["server_guid", "day_of_week", "hour_of_day"])
    )
    rows = []
    for rec in grouped.iter_rows(named=True):
        profile = estimate_percentiles(rec["samples"])
        rows.append(
            {
                "server_guid": rec["server_guid"],
                "day_of_week": rec["day_of_week"],
                "hour_of_day": rec["hour_of_day"],
                "avg_players": round(rec["avg_players"], VALUE_DIGITS),
                "min_players": profile.min,
                "q25_players": round(profile.p25, VALUE_DIGITS),
                "median_players": round(profile.p50, VALUE_DIGITS),
                "q75_players": round(profile.p75, VALUE_DIGITS),
                "q90_players": round(profile.p90, VALUE_DIGITS),
                "max_players": profile.max,
                "data_points": profile.sample_count,
            }
        )
    return rows


def build_hourly_predictions(counts: pl.DataFrame) -> pl.DataFrame:
    """Average over days of the per-game summed hourly player counts."""
    tracked = counts.filter(pl.col("game").is_in(list(TRACKED_GAMES))).drop_nulls(
        ["hour_timestamp", "avg_players"]
    )
    daily = (
        tracked.with_columns(
            *_slot_columns("hour_timestamp"),
            pl.col("hour_timestamp").dt.date().alias("date_key"),
        )
        .group_by(["game", "date_key", "day_of_week", "hour_of_day"])
        .agg(pl.col("avg_players").sum().alias("hourly_total"))
    )
    return (
        daily.group_by(["game", "day_of_week", "hour_of_day"])
        .agg(
            pl.col("hourly_total").mean().round(VALUE_DIGITS).alias("predicted_players"),
            pl.len().alias("data_points"),
        )
        .sort(["game", "day_of_week", "hour_of_day"])
    )


def build_activity_patterns(sessions: pl.DataFrame) -> pl.DataFrame:
    """Typical unique players, rounds and round length per game and slot."""
    usable = sessions.filter(
        pl.col("game").is_in(list(TRACKED_GAMES))
        & pl.col("start_time").is_not_null()
        & pl.col("last_seen_time").is_not_null()
        & (pl.col("last_seen_time") >= pl.col("start_time"))
    )
    daily = (
        usable.with_columns(
            *_slot_columns("start_time"),
            pl.col("start_time").dt.date().alias("date_key"),
            (
                (pl.col("last_seen_time") - pl.col("start_time")).dt.total_seconds()
                / 60.0
            ).alias("minutes"),
        )
        .group_by(["game", "date_key", "day_of_week", "hour_of_day"])
        .agg(
            pl.col("player_name").n_unique().alias("unique_players"),
            pl.col("round_id").drop_nulls().n_unique().alias("rounds"),
            pl.col("minutes").mean().alias("avg_duration"),
        )
    )
    return (
        daily.group_by(["game", "day_of_week", "hour_of_day"])
        .agg(
            pl.col("unique_players").mean().round(VALUE_DIGITS).alias("unique_players_avg"),
            pl.col("rounds").mean().round(VALUE_DIGITS).alias("total_rounds_avg"),
            pl.col("avg_duration").mean().round(VALUE_DIGITS).alias("avg_round_duration"),
        )
        .with_columns(
            pl.when(pl.col("day_of_week").is_in([0, 6]))
            .then(pl.lit("Weekend"))
            .otherwise(pl.lit("Weekday"))
            .alias("period_type")
        )
        .sort(["game", "day_of_week", "hour_of_day"])
    )


def recompute_server_hourly_patterns(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.ServerHourlyPattern.__table__
    deleted = delete_rows(conn, table)
    counts = load_online_counts_df(conn, since=scope.since)
    rows = build_server_hourly_patterns(counts)
    if not rows:
        logger.info("No server online count data found for hourly patterns")
    for row in rows:
        row["updated_at"] = scope.now
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted)


def recompute_hourly_predictions(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.HourlyPlayerPrediction.__table__
    deleted = delete_rows(conn, table)
    counts = load_online_counts_df(conn, since=scope.since, games=TRACKED_GAMES)
    frame = build_hourly_predictions(counts)
    rows = frame.with_columns(pl.lit(scope.now).alias("updated_at")).to_dicts()
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted)


def recompute_activity_patterns(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    table = M.HourlyActivityPattern.__table__
    deleted = delete_rows(conn, table)
    sessions = load_activity_sessions_df(conn, since=scope.since, games=TRACKED_GAMES)
    frame = build_activity_patterns(sessions)
    rows = frame.with_columns(pl.lit(scope.now).alias("updated_at")).to_dicts()
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted)
