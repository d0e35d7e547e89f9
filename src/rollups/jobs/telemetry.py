"""Per-run completion records for operational dashboards."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rollups.core.results import RoutineResult, RunSummary
from rollups.sql import models as M

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


def _merge_by_shape(summary: RunSummary) -> list[RoutineResult]:
    """One result per shape; batch results of the same shape are summed."""
    merged: dict[str, RoutineResult] = {}
    for result in summary.all_results():
        acc = merged.get(result.shape)
        if acc is None:
            merged[result.shape] = RoutineResult(
                shape=result.shape,
                rows_written=result.rows_written,
                rows_deleted=result.rows_deleted,
                skipped_records=result.skipped_records,
                duration_seconds=result.duration_seconds,
                failure=result.failure,
            )
            continue
        acc.rows_written += result.rows_written
        acc.rows_deleted += result.rows_deleted
        acc.skipped_records += result.skipped_records
        acc.duration_seconds += result.duration_seconds
        if acc.failure is None:
            acc.failure = result.failure
    return list(merged.values())


def summary_records(summary: RunSummary, tier: Optional[int] = None) -> list[dict]:
    """Telemetry rows for ``summary``: one per shape (rows written include pruned rows)."""
    records = []
    for result in _merge_by_shape(summary):
        if result.failure is not None:
            status = STATUS_FAILED
        elif summary.cancelled:
            status = STATUS_CANCELLED
        else:
            status = STATUS_OK
        records.append(
            {
                "job": summary.job,
                "shape": result.shape,
                "rows_written": result.rows_written or result.rows_deleted,
                "skipped_records": result.skipped_records,
                "duration_ms": int(round(result.duration_seconds * 1000)),
                "subject_count": summary.subject_count or None,
                "tier": tier,
                "status": status,
                "error": result.failure.message if result.failure else None,
                "started_at": summary.started_at,
            }
        )
    return records


def record_run(engine: Engine, summary: RunSummary, tier: Optional[int] = None) -> int:
    """Persist and log the completion records of one run.

    Persisting telemetry must not fail the job, so store errors are logged
    and 0 is returned.
    """
    records = summary_records(summary, tier)
    for rec in records:
        logger.info(
            "run job=%s shape=%s rows=%d skipped=%d duration_ms=%d status=%s",
            rec["job"],
            rec["shape"],
            rec["rows_written"],
            rec["skipped_records"],
            rec["duration_ms"],
            rec["status"],
        )
    if not records:
        return 0
    try:
        with engine.begin() as conn:
            conn.execute(insert(M.RollupRun.__table__), records)
    except SQLAlchemyError as exc:
        logger.warning("Could not persist telemetry for %s run: %s", summary.job, exc)
        return 0
    return len(records)


__all__ = ["record_run", "summary_records"]
