from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence, Union

import pandas as pd
import polars as pl
from sqlalchemy import DateTime, and_, case, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import Select

from rollups.core.constants import GLOBAL_SCOPE, SQLITE_MAX_VARIABLES
from rollups.sql import models as M
from rollups.sql.query import bucket_at_or_after, chunked

Bind = Union[Engine, Connection]

PARTICIPATION_SCHEMA: dict[str, Any] = {
    "session_id": pl.Int64,
    "player_name": pl.Utf8,
    "server_guid": pl.Utf8,
    "map_name": pl.Utf8,
    "round_id": pl.Utf8,
    "start_time": pl.Datetime("us"),
    "last_seen_time": pl.Datetime("us"),
    "total_score": pl.Int64,
    "total_kills": pl.Int64,
    "total_deaths": pl.Int64,
    "average_ping": pl.Float64,
    "is_deleted": pl.Boolean,
}

LAST_ACTIVITY_SCHEMA: dict[str, Any] = {
    "player_name": pl.Utf8,
    "last_activity": pl.Datetime("us"),
}

ROUNDS_SCHEMA: dict[str, Any] = {
    "round_id": pl.Utf8,
    "server_guid": pl.Utf8,
    "map_name": pl.Utf8,
    "game": pl.Utf8,
    "start_time": pl.Datetime("us"),
    "duration_minutes": pl.Int64,
    "participant_count": pl.Int64,
    "tickets1": pl.Int64,
    "tickets2": pl.Int64,
    "team1_label": pl.Utf8,
    "team2_label": pl.Utf8,
}

ONLINE_COUNTS_SCHEMA: dict[str, Any] = {
    "server_guid": pl.Utf8,
    "hour_timestamp": pl.Datetime("us"),
    "avg_players": pl.Float64,
    "game": pl.Utf8,
}

ACTIVITY_SCHEMA: dict[str, Any] = {
    "player_name": pl.Utf8,
    "round_id": pl.Utf8,
    "game": pl.Utf8,
    "start_time": pl.Datetime("us"),
    "last_seen_time": pl.Datetime("us"),
}


def _read_sql(
    bind: Bind, stmt: Select, schema: Optional[dict[str, Any]] = None
) -> pl.DataFrame:
    """Read a Core select into a Polars DataFrame via pandas.

    When ``schema`` is given the frame is cast to it, and an empty result
    still carries the expected columns.
    """
    if schema:
        parse_dates = [c for c, t in schema.items() if isinstance(t, pl.Datetime)]
    else:
        parse_dates = [
            c.name for c in stmt.selected_columns if isinstance(c.type, DateTime)
        ]
    if isinstance(bind, Engine):
        with bind.connect() as conn:
            pdf = pd.read_sql_query(stmt, conn, parse_dates=parse_dates)
    else:
        pdf = pd.read_sql_query(stmt, bind, parse_dates=parse_dates)
    if pdf.empty:
        return pl.DataFrame(schema=schema) if schema else pl.DataFrame([])
    df = pl.from_pandas(pdf)
    if schema:
        df = df.with_columns(
            [
                pl.col(c).cast(t, strict=False)
                for c, t in schema.items()
                if c in df.columns
            ]
        )
    return df


def _read_chunked(
    bind: Bind,
    build: Any,
    subjects: Optional[Sequence[str]],
    schema: dict[str, Any],
) -> pl.DataFrame:
    """Run ``build(subject_chunk)`` per chunk of subjects and concatenate."""
    if subjects is None:
        return _read_sql(bind, build(None), schema)
    frames = [
        _read_sql(bind, build(list(chunk)), schema)
        for chunk in chunked(list(subjects), SQLITE_MAX_VARIABLES - 10)
    ]
    frames = [f for f in frames if not f.is_empty()]
    if not frames:
        return pl.DataFrame(schema=schema)
    return pl.concat(frames, how="vertical")


# ---------------------------------------------------------------------------
# Raw log
# ---------------------------------------------------------------------------


def load_participation_df(
    bind: Bind,
    *,
    subjects: Optional[Sequence[str]] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    server_guid: Optional[str] = None,
    map_name: Optional[str] = None,
    include_deleted: bool = False,
) -> pl.DataFrame:
    """Load completed participation records.

    Soft-deleted records are excluded unless ``include_deleted`` is set, in
    which case the ``is_deleted`` column tells them apart. Records of rounds
    still in progress (``is_active``) are never returned.

    Columns: see ``PARTICIPATION_SCHEMA``.
    """
    ps = M.PlayerSession.__table__

    def build(chunk: Optional[list[str]]) -> Select:
        where = [ps.c.is_active.is_(False)]
        if not include_deleted:
            where.append(ps.c.is_deleted.is_(False))
        if chunk is not None:
            where.append(ps.c.player_name.in_(chunk))
        if since is not None:
            where.append(ps.c.start_time >= since)
        if until is not None:
            where.append(ps.c.start_time < until)
        if server_guid is not None:
            where.append(ps.c.server_guid == server_guid)
        if map_name is not None:
            where.append(ps.c.map_name == map_name)
        return (
            select(*[ps.c[name] for name in PARTICIPATION_SCHEMA])
            .where(and_(*where))
            .order_by(ps.c.player_name, ps.c.start_time, ps.c.session_id)
        )

    return _read_chunked(bind, build, subjects, PARTICIPATION_SCHEMA)


def load_last_activity_df(
    bind: Bind, *, subjects: Optional[Sequence[str]] = None
) -> pl.DataFrame:
    """Most recent live activity per subject.

    Subjects whose records are all soft-deleted are returned with a null
    ``last_activity`` so their rollups can still be cleared.
    """
    ps = M.PlayerSession.__table__
    live_time = case(
        (ps.c.is_deleted.is_(False), func.coalesce(ps.c.last_seen_time, ps.c.start_time)),
        else_=None,
    )

    def build(chunk: Optional[list[str]]) -> Select:
        stmt = select(
            ps.c.player_name,
            func.max(live_time).label("last_activity"),
        ).where(ps.c.is_active.is_(False))
        if chunk is not None:
            stmt = stmt.where(ps.c.player_name.in_(chunk))
        return stmt.group_by(ps.c.player_name).order_by(ps.c.player_name)

    return _read_chunked(bind, build, subjects, LAST_ACTIVITY_SCHEMA)


def load_rounds_df(
    bind: Bind,
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    server_guid: Optional[str] = None,
    map_name: Optional[str] = None,
    games: Optional[Sequence[str]] = None,
) -> pl.DataFrame:
    """Load finished, non-deleted rounds with a map name.

    ``game`` comes from the owning server and is null for unknown servers.
    """
    r = M.Round.__table__
    s = M.Server.__table__
    stmt = select(
        r.c.round_id,
        r.c.server_guid,
        r.c.map_name,
        s.c.game,
        r.c.start_time,
        r.c.duration_minutes,
        r.c.participant_count,
        r.c.tickets1,
        r.c.tickets2,
        r.c.team1_label,
        r.c.team2_label,
    ).select_from(r.outerjoin(s, s.c.guid == r.c.server_guid))
    where = [
        r.c.is_active.is_(False),
        r.c.is_deleted.is_(False),
        r.c.map_name.is_not(None),
        r.c.map_name != "",
    ]
    if since is not None:
        where.append(r.c.start_time >= since)
    if until is not None:
        where.append(r.c.start_time < until)
    if server_guid is not None:
        where.append(r.c.server_guid == server_guid)
    if map_name is not None:
        where.append(r.c.map_name == map_name)
    if games is not None:
        where.append(s.c.game.in_(list(games)))
    stmt = stmt.where(and_(*where)).order_by(r.c.start_time, r.c.round_id)
    return _read_sql(bind, stmt, ROUNDS_SCHEMA)


def load_online_counts_df(
    bind: Bind,
    *,
    since: Optional[datetime] = None,
    games: Optional[Sequence[str]] = None,
) -> pl.DataFrame:
    """Load raw hourly player-count observations."""
    oc = M.ServerOnlineCount.__table__
    stmt = select(*[oc.c[name] for name in ONLINE_COUNTS_SCHEMA])
    if since is not None:
        stmt = stmt.where(oc.c.hour_timestamp >= since)
    if games is not None:
        stmt = stmt.where(oc.c.game.in_(list(games)))
    stmt = stmt.order_by(oc.c.server_guid, oc.c.hour_timestamp)
    return _read_sql(bind, stmt, ONLINE_COUNTS_SCHEMA)


def load_activity_sessions_df(
    bind: Bind,
    *,
    since: Optional[datetime] = None,
    games: Optional[Sequence[str]] = None,
) -> pl.DataFrame:
    """Load live participation rows joined with their server's game."""
    ps = M.PlayerSession.__table__
    s = M.Server.__table__
    stmt = select(
        ps.c.player_name,
        ps.c.round_id,
        s.c.game,
        ps.c.start_time,
        ps.c.last_seen_time,
    ).select_from(ps.join(s, s.c.guid == ps.c.server_guid))
    where = [
        ps.c.is_active.is_(False),
        ps.c.is_deleted.is_(False),
        ps.c.start_time.is_not(None),
    ]
    if since is not None:
        where.append(ps.c.start_time >= since)
    if games is not None:
        where.append(s.c.game.in_(list(games)))
    stmt = stmt.where(and_(*where))
    return _read_sql(bind, stmt, ACTIVITY_SCHEMA)


# ---------------------------------------------------------------------------
# Rollup readers (read-only surface for the API layer)
# ---------------------------------------------------------------------------


def _rollup_select(table, where: list, order_by: Sequence[str]) -> Select:
    stmt = select(table)
    if where:
        stmt = stmt.where(and_(*where))
    return stmt.order_by(*[table.c[c] for c in order_by])


def _bucket_range(
    where: list,
    major,
    minor,
    since_bucket: Optional[tuple[int, int]],
    until_bucket: Optional[tuple[int, int]],
) -> None:
    if since_bucket is not None:
        where.append(bucket_at_or_after(major, minor, since_bucket))
    if until_bucket is not None:
        # inclusive upper bound
        year, minor_value = until_bucket
        where.append(~bucket_at_or_after(major, minor, (year, minor_value + 1)))


def load_player_monthly_df(
    bind: Bind,
    player_name: str,
    *,
    since_bucket: Optional[tuple[int, int]] = None,
    until_bucket: Optional[tuple[int, int]] = None,
) -> pl.DataFrame:
    """Monthly totals for one player, optionally within [since, until] (year, month)."""
    t = M.PlayerStatsMonthly.__table__
    where = [t.c.player_name == player_name]
    _bucket_range(where, t.c.year, t.c.month, since_bucket, until_bucket)
    return _read_sql(bind, _rollup_select(t, where, ["year", "month"]))


def load_player_lifetime_totals(bind: Bind, player_name: str) -> dict[str, float]:
    """Lifetime counters for a player, summed from the monthly buckets."""
    t = M.PlayerStatsMonthly.__table__
    stmt = select(
        func.coalesce(func.sum(t.c.total_rounds), 0).label("total_rounds"),
        func.coalesce(func.sum(t.c.total_kills), 0).label("total_kills"),
        func.coalesce(func.sum(t.c.total_deaths), 0).label("total_deaths"),
        func.coalesce(func.sum(t.c.total_score), 0).label("total_score"),
        func.coalesce(func.sum(t.c.total_play_time_minutes), 0.0).label(
            "total_play_time_minutes"
        ),
    ).where(t.c.player_name == player_name)
    if isinstance(bind, Engine):
        with bind.connect() as conn:
            row = conn.execute(stmt).mappings().one()
    else:
        row = bind.execute(stmt).mappings().one()
    return dict(row)


def load_player_server_stats_df(
    bind: Bind,
    *,
    player_name: Optional[str] = None,
    server_guid: Optional[str] = None,
    since_bucket: Optional[tuple[int, int]] = None,
    until_bucket: Optional[tuple[int, int]] = None,
) -> pl.DataFrame:
    """Weekly per-server totals; buckets are (ISO year, ISO week)."""
    t = M.PlayerServerStats.__table__
    where: list = []
    if player_name is not None:
        where.append(t.c.player_name == player_name)
    if server_guid is not None:
        where.append(t.c.server_guid == server_guid)
    _bucket_range(where, t.c.year, t.c.week, since_bucket, until_bucket)
    return _read_sql(
        bind, _rollup_select(t, where, ["player_name", "server_guid", "year", "week"])
    )


def load_player_map_stats_df(
    bind: Bind,
    *,
    player_name: Optional[str] = None,
    map_name: Optional[str] = None,
    server_guid: str = GLOBAL_SCOPE,
    since_bucket: Optional[tuple[int, int]] = None,
    until_bucket: Optional[tuple[int, int]] = None,
) -> pl.DataFrame:
    """Monthly per-map totals for one server scope (global by default)."""
    t = M.PlayerMapStats.__table__
    where = [t.c.server_guid == server_guid]
    if player_name is not None:
        where.append(t.c.player_name == player_name)
    if map_name is not None:
        where.append(t.c.map_name == map_name)
    _bucket_range(where, t.c.year, t.c.month, since_bucket, until_bucket)
    return _read_sql(
        bind, _rollup_select(t, where, ["player_name", "map_name", "year", "month"])
    )


def load_best_scores_df(
    bind: Bind, player_name: str, *, period: Optional[str] = None
) -> pl.DataFrame:
    t = M.PlayerBestScore.__table__
    where = [t.c.player_name == player_name]
    if period is not None:
        where.append(t.c.period == period)
    return _read_sql(bind, _rollup_select(t, where, ["period", "rank"]))


def load_server_high_scores_df(
    bind: Bind,
    *,
    server_guid: Optional[str] = None,
    player_name: Optional[str] = None,
) -> pl.DataFrame:
    t = M.PlayerServerHighScore.__table__
    where: list = []
    if server_guid is not None:
        where.append(t.c.server_guid == server_guid)
    if player_name is not None:
        where.append(t.c.player_name == player_name)
    stmt = select(t)
    if where:
        stmt = stmt.where(and_(*where))
    stmt = stmt.order_by(t.c.max_score.desc(), t.c.player_name)
    return _read_sql(bind, stmt)


def load_server_hourly_patterns_df(
    bind: Bind, server_guid: str, *, min_samples: int = 0
) -> pl.DataFrame:
    """Hourly distribution rows for a server with at least ``min_samples`` points."""
    t = M.ServerHourlyPattern.__table__
    where = [t.c.server_guid == server_guid]
    if min_samples > 0:
        where.append(t.c.data_points >= min_samples)
    return _read_sql(bind, _rollup_select(t, where, ["day_of_week", "hour_of_day"]))


def load_hourly_predictions_df(
    bind: Bind, game: str, *, min_samples: int = 0
) -> pl.DataFrame:
    t = M.HourlyPlayerPrediction.__table__
    where = [t.c.game == game]
    if min_samples > 0:
        where.append(t.c.data_points >= min_samples)
    return _read_sql(bind, _rollup_select(t, where, ["day_of_week", "hour_of_day"]))


def load_hourly_activity_patterns_df(bind: Bind, game: str) -> pl.DataFrame:
    t = M.HourlyActivityPattern.__table__
    return _read_sql(
        bind, _rollup_select(t, [t.c.game == game], ["day_of_week", "hour_of_day"])
    )


def load_server_map_stats_df(
    bind: Bind,
    server_guid: str,
    *,
    since_bucket: Optional[tuple[int, int]] = None,
    until_bucket: Optional[tuple[int, int]] = None,
) -> pl.DataFrame:
    t = M.ServerMapStats.__table__
    where = [t.c.server_guid == server_guid]
    _bucket_range(where, t.c.year, t.c.month, since_bucket, until_bucket)
    return _read_sql(bind, _rollup_select(t, where, ["map_name", "year", "month"]))


def load_map_server_hourly_patterns_df(
    bind: Bind, map_name: str, *, server_guid: Optional[str] = None
) -> pl.DataFrame:
    t = M.MapServerHourlyPattern.__table__
    where = [t.c.map_name == map_name]
    if server_guid is not None:
        where.append(t.c.server_guid == server_guid)
    return _read_sql(
        bind,
        _rollup_select(t, where, ["server_guid", "day_of_week", "hour_of_day"]),
    )


def load_map_global_averages_df(bind: Bind) -> pl.DataFrame:
    t = M.MapGlobalAverage.__table__
    return _read_sql(bind, _rollup_select(t, [], ["map_name"]))


def load_rollup_runs_df(
    bind: Bind, *, job: Optional[str] = None, limit: int = 100
) -> pl.DataFrame:
    """Most recent telemetry records, newest first."""
    t = M.RollupRun.__table__
    stmt = select(t)
    if job is not None:
        stmt = stmt.where(t.c.job == job)
    stmt = stmt.order_by(t.c.started_at.desc(), t.c.run_id.desc()).limit(limit)
    return _read_sql(bind, stmt)
