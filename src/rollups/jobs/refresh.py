"""Daily incremental refresh over trailing windows."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy.engine import Engine

from rollups.core.config import RefreshWindows
from rollups.core.results import RunSummary
from rollups.core.time import Clock
from rollups.jobs.leases import LeaseCoordinator
from rollups.routines import ROUTINES, RecomputeScope, run_routine
from rollups.routines.base import Routine

logger = logging.getLogger(__name__)

JOB_DAILY = "daily"


class IncrementalRefresher:
    """Runs every routine once, scoped to its configured trailing window.

    A failing shape is recorded in the summary and the refresh moves on to
    the next shape; shapes are independently eventually consistent.
    """

    def __init__(
        self,
        engine: Engine,
        leases: LeaseCoordinator,
        *,
        windows: Optional[RefreshWindows] = None,
        clock: Optional[Clock] = None,
        routines: Sequence[Routine] = ROUTINES,
    ) -> None:
        self.engine = engine
        self.leases = leases
        self.windows = windows or RefreshWindows()
        self.clock = clock or Clock()
        self.routines = tuple(routines)

    def scope_for(self, routine: Routine) -> RecomputeScope:
        now = self.clock.now
        days = self.windows.for_shape(routine.shape)
        since = now - timedelta(days=days) if days is not None else None
        return RecomputeScope(now=now, since=since)

    def run_daily(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        started = self.clock.now
        start = time.perf_counter()
        summary = RunSummary(job=JOB_DAILY, started_at=started)
        logger.info("Starting daily aggregate refresh (%d shapes)", len(self.routines))
        for routine in self.routines:
            if cancel is not None and cancel.is_set():
                logger.warning("Daily refresh cancelled before %s", routine.shape)
                summary.cancelled = True
                break
            scope = self.scope_for(routine)
            result = run_routine(self.engine, self.leases, routine, scope)
            summary.results.append(result)
            if result.ok:
                logger.info(
                    "Refreshed %d %s rows (window since %s) in %.0fms",
                    result.rows_written,
                    routine.shape,
                    scope.since.isoformat() if scope.since else "full history",
                    result.duration_seconds * 1000,
                )
        summary.duration_seconds = time.perf_counter() - start
        if summary.failures:
            logger.error(
                "Daily refresh finished with %d failed shape(s): %s",
                len(summary.failures),
                ", ".join(r.shape for r in summary.failures),
            )
        else:
            logger.info(
                "Daily aggregate refresh completed: %d rows in %.2fs",
                summary.total_rows,
                summary.duration_seconds,
            )
        return summary


__all__ = ["IncrementalRefresher", "JOB_DAILY"]
