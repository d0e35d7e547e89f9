"""Highest single-round score per (player, server) with its source round."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import polars as pl
from sqlalchemy import select
from sqlalchemy.engine import Connection

from rollups.core.results import RoutineOutput
from rollups.routines.base import RecomputeScope, clean_participation
from rollups.sql import models as M
from rollups.sql.load import load_participation_df
from rollups.sql.query import delete_rows, upsert_rows


def pick_high_scores(sessions: pl.DataFrame) -> pl.DataFrame:
    """Argmax of ``total_score`` per (player, server); ties go to the latest round."""
    candidates = sessions.filter(pl.col("total_score") > 0)
    if candidates.is_empty():
        return pl.DataFrame(
            schema={
                "player_name": pl.Utf8,
                "server_guid": pl.Utf8,
                "max_score": pl.Int64,
                "round_id": pl.Utf8,
                "map_name": pl.Utf8,
                "achieved_at": pl.Datetime("us"),
            }
        )
    return (
        candidates.sort(
            ["player_name", "server_guid", "total_score", "last_seen_time", "round_key"],
            descending=[False, False, True, True, False],
        )
        .group_by(["player_name", "server_guid"], maintain_order=True)
        .first()
        .select(
            "player_name",
            "server_guid",
            pl.col("total_score").alias("max_score"),
            "round_id",
            "map_name",
            pl.col("last_seen_time").alias("achieved_at"),
        )
    )


def _subjects_since(conn: Connection, since: datetime) -> list[str]:
    ps = M.PlayerSession.__table__
    stmt = select(ps.c.player_name).where(ps.c.last_seen_time >= since).distinct()
    return sorted(row[0] for row in conn.execute(stmt) if row[0])


def recompute_high_scores(conn: Connection, scope: RecomputeScope) -> RoutineOutput:
    """Replace the per-server high scores of the subjects in scope.

    A trailing window only narrows which subjects are recomputed; their
    high scores are always rebuilt from full history.
    """
    table = M.PlayerServerHighScore.__table__
    subjects: Optional[Sequence[str]] = scope.subjects
    if subjects is None and scope.since is not None:
        subjects = _subjects_since(conn, scope.since)
        if not subjects:
            return RoutineOutput()

    deleted = delete_rows(conn, table, subjects=subjects)
    sessions, skipped = clean_participation(
        load_participation_df(conn, subjects=subjects)
    )
    rows = pick_high_scores(sessions).with_columns(
        pl.lit(scope.now).alias("updated_at")
    ).to_dicts()
    written = upsert_rows(conn, table, rows)
    return RoutineOutput(rows_written=written, rows_deleted=deleted, skipped_records=skipped)
