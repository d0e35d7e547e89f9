"""Routine contract and the lease-wrapped runner shared by every job.

A routine recomputes one rollup shape for a ``RecomputeScope`` inside a
single transaction: phase one deletes the key set being replaced, phase two
inserts the freshly derived rows. The runner holds the routine's lease for
the whole transaction, so a concurrent job touching the same rollup category
waits until the replacement has committed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Sequence

import polars as pl
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from rollups.core.errors import InvariantViolation, LeaseError, RollupFailure
from rollups.core.results import RoutineOutput, RoutineResult

if TYPE_CHECKING:
    from rollups.jobs.leases import LeaseCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecomputeScope:
    """What a routine should recompute.

    Attributes:
        now: Reference time for period windows and ``updated_at``.
        since: Trailing-window lower bound; ``None`` means full history.
        subjects: Subject batch; ``None`` means every subject.
    """

    now: datetime
    since: Optional[datetime] = None
    subjects: Optional[tuple[str, ...]] = None

    @classmethod
    def for_subjects(
        cls, subjects: Sequence[str], now: datetime, since: Optional[datetime] = None
    ) -> RecomputeScope:
        return cls(now=now, since=since, subjects=tuple(subjects))

    def with_since(self, since: Optional[datetime]) -> RecomputeScope:
        return replace(self, since=since)


@dataclass(frozen=True)
class Routine:
    """One rollup shape's recomputation.

    Attributes:
        shape: Rollup shape identifier (table name).
        lease: Coarse lease guarding the shape's rollup category.
        recompute: ``(conn, scope) -> RoutineOutput``.
        subject_scoped: Whether the routine can be restricted to a subject
            batch. Partition routines (per server or map) always recompute
            their whole window.
    """

    shape: str
    lease: str
    recompute: Callable[[Connection, RecomputeScope], RoutineOutput]
    subject_scoped: bool = True


def run_routine(
    engine: Engine,
    leases: LeaseCoordinator,
    routine: Routine,
    scope: RecomputeScope,
) -> RoutineResult:
    """Run one routine under its lease and convert store errors into results.

    Invariant violations and lease misuse are programming errors and are
    re-raised; every other exception becomes a typed ``RollupFailure``.
    """
    start = time.perf_counter()
    try:
        with leases.lease(routine.lease):
            with engine.begin() as conn:
                output = routine.recompute(conn, scope)
    except (InvariantViolation, LeaseError):
        raise
    except SQLAlchemyError as exc:
        failure = RollupFailure.from_exception(exc)
        logger.error(
            "Routine %s failed (%s): %s", routine.shape, failure.kind, exc, exc_info=True
        )
        return RoutineResult(
            shape=routine.shape,
            duration_seconds=time.perf_counter() - start,
            failure=failure,
        )
    except Exception as exc:
        failure = RollupFailure.from_exception(exc)
        logger.error(
            "Routine %s raised unexpectedly: %s", routine.shape, exc, exc_info=True
        )
        return RoutineResult(
            shape=routine.shape,
            duration_seconds=time.perf_counter() - start,
            failure=failure,
        )

    elapsed = time.perf_counter() - start
    logger.debug(
        "Routine %s wrote %d rows (deleted %d, skipped %d) in %.2fs",
        routine.shape,
        output.rows_written,
        output.rows_deleted,
        output.skipped_records,
        elapsed,
    )
    return RoutineResult(
        shape=routine.shape,
        rows_written=output.rows_written,
        rows_deleted=output.rows_deleted,
        skipped_records=output.skipped_records,
        duration_seconds=elapsed,
    )


def clean_participation(df: pl.DataFrame) -> tuple[pl.DataFrame, int]:
    """Drop malformed participation records and derive ``minutes``.

    A record is malformed when it has no player name, no start or end time,
    an end before its start, or a missing score/kill/death counter.

    Returns:
        (clean frame, number of skipped records)
    """
    if df.is_empty():
        return (
            df.with_columns(
                pl.lit(0.0).alias("minutes"), pl.col("round_id").alias("round_key")
            ),
            0,
        )
    valid = (
        pl.col("player_name").is_not_null()
        & (pl.col("player_name").str.strip_chars() != "")
        & pl.col("start_time").is_not_null()
        & pl.col("last_seen_time").is_not_null()
        & (pl.col("last_seen_time") >= pl.col("start_time"))
        & pl.col("total_score").is_not_null()
        & pl.col("total_kills").is_not_null()
        & pl.col("total_deaths").is_not_null()
    )
    clean = df.filter(valid)
    skipped = df.height - clean.height
    clean = clean.with_columns(
        (
            (pl.col("last_seen_time") - pl.col("start_time")).dt.total_seconds()
            / 60.0
        ).alias("minutes"),
        # Sessions without a round id count as their own round
        pl.coalesce(
            pl.col("round_id"),
            pl.lit("session:") + pl.col("session_id").cast(pl.Utf8),
        ).alias("round_key"),
    )
    return clean, skipped

