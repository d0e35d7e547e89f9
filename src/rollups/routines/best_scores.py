"""Top-3 best single-round scores per player and rolling period.

For every subject in scope and every period the existing entries are deleted
and the subject's best three qualifying records inside the period window are
inserted with ranks 1..3. Both phases run in the caller's transaction, so a
reader sees either the old set or the new set.

Period windows are evaluated on the round end time:

- ``all_time``: no bound
- ``last_30_days``: the trailing 30 days
- ``this_week``: since Monday 00:00 UTC of the current ISO week

Only records with a positive score qualify. Ties on score go to the most
recent round, then to the round id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

import polars as pl
from sqlalchemy import and_, func, or_, select
from sqlalchemy.engine import Connection

from rollups.core.constants import (
    BEST_SCORE_PERIODS,
    LAST_30_DAYS,
    PERIOD_ALL_TIME,
    PERIOD_LAST_30_DAYS,
    PERIOD_THIS_WEEK,
    TOP_K,
)
from rollups.core.errors import TopKInvariantError
from rollups.core.results import RoutineOutput
from rollups.core.time import iso_week_start
from rollups.routines.base import RecomputeScope, clean_participation
from rollups.sql import models as M
from rollups.sql.load import load_participation_df
from rollups.sql.query import chunked, delete_rows, upsert_rows

logger = logging.getLogger(__name__)


def period_cutoff(period: str, now: datetime) -> Optional[datetime]:
    """Earliest round end time that still belongs to ``period``."""
    if period == PERIOD_ALL_TIME:
        return None
    if period == PERIOD_LAST_30_DAYS:
        return now - timedelta(days=LAST_30_DAYS)
    if period == PERIOD_THIS_WEEK:
        return iso_week_start(now)
    raise ValueError(f"Unknown best-score period {period!r}")


def rank_top_k(sessions: pl.DataFrame, period: str, now: datetime) -> list[dict]:
    """Pick each player's best ``TOP_K`` records for ``period``.

    Args:
        sessions: Clean participation records.
        period: Period label.
        now: Reference time.

    Returns:
        Row dicts for ``player_best_scores`` (without ``updated_at``).
    """
    candidates = sessions.filter(pl.col("total_score") > 0)
    cutoff = period_cutoff(period, now)
    if cutoff is not None:
        candidates = candidates.filter(pl.col("last_seen_time") >= cutoff)
    if candidates.is_empty():
        return []

    ordered = candidates.sort(
        ["player_name", "total_score", "last_seen_time", "round_key"],
        descending=[False, True, True, False],
    )
    top = ordered.group_by("player_name", maintain_order=True).head(TOP_K)

    rows: list[dict] = []
    current_player = None
    rank = 0
    for rec in top.iter_rows(named=True):
        if rec["player_name"] != current_player:
            current_player = rec["player_name"]
            rank = 0
        rank += 1
        rows.append(
            {
                "player_name": rec["player_name"],
                "period": period,
                "rank": rank,
                "final_score": int(rec["total_score"]),
                "final_kills": int(rec["total_kills"]),
                "final_deaths": int(rec["total_deaths"]),
                "map_name": rec["map_name"],
                "server_guid": rec["server_guid"],
                "round_end_time": rec["last_seen_time"],
                "round_id": rec["round_id"],
            }
        )
    return rows


def verify_top_k(conn: Connection, subjects: Optional[Sequence[str]]) -> None:
    """Check the persisted top-K invariant for ``subjects`` (all when None).

    Raises:
        TopKInvariantError: more than ``TOP_K`` rows, ranks that are not a
            contiguous 1..n prefix, or scores out of rank order.
    """
    t = M.PlayerBestScore.__table__
    stmt = select(
        t.c.player_name,
        t.c.period,
        func.count().label("n"),
        func.max(t.c.rank).label("max_rank"),
    ).group_by(t.c.player_name, t.c.period)
    if subjects is not None:
        violations = []
        for chunk in chunked(list(subjects), 900):
            violations.extend(
                conn.execute(
                    stmt.where(t.c.player_name.in_(list(chunk))).having(
                        or_(func.count() > TOP_K, func.max(t.c.rank) != func.count())
                    )
                ).all()
            )
    else:
        violations = conn.execute(
            stmt.having(or_(func.count() > TOP_K, func.max(t.c.rank) != func.count()))
        ).all()
    if violations:
        player, period, count, max_rank = violations[0]
        raise TopKInvariantError(
            f"{len(violations)} top-K key(s) broken, e.g. {player!r}/{period}: "
            f"{count} rows, max rank {max_rank}"
        )

    a = t.alias("a")
    b = t.alias("b")
    order_check = select(a.c.player_name, a.c.period).where(
        and_(
            a.c.player_name == b.c.player_name,
            a.c.period == b.c.period,
            a.c.rank < b.c.rank,
            a.c.final_score < b.c.final_score,
        )
    )
    if subjects is not None:
        rows = []
        for chunk in chunked(list(subjects), 900):
            rows.extend(conn.execute(order_check.where(a.c.player_name.in_(list(chunk)))).all())
    else:
        rows = conn.execute(order_check).all()
    if rows:
        player, period = rows[0]
        raise TopKInvariantError(f"Scores out of rank order for {player!r}/{period}")


def _recently_affected_subjects(conn: Connection, since: datetime, now: datetime) -> list[str]:
    """Subjects whose top-K sets may have changed since ``since``.

    That is everyone with a record ending inside the window (deleted ones
    included), plus holders of period entries that have aged out.
    """
    ps = M.PlayerSession.__table__
    t = M.PlayerBestScore.__table__
    recent = select(ps.c.player_name).where(ps.c.last_seen_time >= since).distinct()
    aged = select(t.c.player_name).where(
        or_(
            and_(
                t.c.period == PERIOD_LAST_30_DAYS,
                t.c.round_end_time < period_cutoff(PERIOD_LAST_30_DAYS, now),
            ),
            and_(
                t.c.period == PERIOD_THIS_WEEK,
                t.c.round_end_time < period_cutoff(PERIOD_THIS_WEEK, now),
            ),
        )
    ).distinct()
    names = {row[0] for row in conn.execute(recent)}
    names.update(row[0] for row in conn.execute(aged))
    return sorted(n for n in names if n)


def recompute_best_scores(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    """Replace the top-K sets of the subjects in scope.

    With a trailing window and no explicit subjects, only subjects affected
    inside the window are recomputed. Each recomputed subject is rebuilt from
    its full history so ``all_time`` stays exact.
    """
    table = M.PlayerBestScore.__table__
    subjects: Optional[Sequence[str]] = scope.subjects
    if subjects is None and scope.since is not None:
        subjects = _recently_affected_subjects(conn, scope.since, scope.now)
        logger.debug("Top-K refresh touches %d subjects", len(subjects))
        if not subjects:
            return RoutineOutput()

    deleted = delete_rows(conn, table, subjects=subjects)
    raw = load_participation_df(conn, subjects=subjects)
    sessions, skipped = clean_participation(raw)

    rows: list[dict] = []
    for period in BEST_SCORE_PERIODS:
        rows.extend(rank_top_k(sessions, period, scope.now))
    for row in rows:
        row["updated_at"] = scope.now
    written = upsert_rows(conn, table, rows)
    verify_top_k(conn, subjects)
    return RoutineOutput(rows_written=written, rows_deleted=deleted, skipped_records=skipped)


def prune_stale_this_week(conn: Connection, now: datetime) -> int:
    """Delete ``this_week`` entries whose round ended before this ISO week."""
    t = M.PlayerBestScore.__table__
    result = conn.execute(
        t.delete().where(
            and_(
                t.c.period == PERIOD_THIS_WEEK,
                t.c.round_end_time < iso_week_start(now),
            )
        )
    )
    return result.rowcount or 0
