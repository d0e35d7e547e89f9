"""Weekly retention: stale ``this_week`` entries and old hourly observations."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Connection, Engine

from rollups.core.config import RetentionConfig
from rollups.core.constants import (
    LEASE_PLAYER_AGGREGATES,
    LEASE_SERVER_ACTIVITY,
    SHAPE_PLAYER_BEST_SCORES,
)
from rollups.core.results import RoutineOutput, RoutineResult, RunSummary
from rollups.core.time import Clock
from rollups.jobs.leases import LeaseCoordinator
from rollups.routines import RecomputeScope, Routine, run_routine
from rollups.routines.best_scores import prune_stale_this_week
from rollups.sql import models as M

logger = logging.getLogger(__name__)

JOB_WEEKLY = "weekly"
SHAPE_ONLINE_COUNTS = "server_online_counts"


def delete_online_counts_batch(conn: Connection, cutoff, batch_size: int) -> int:
    """Delete at most ``batch_size`` observations older than ``cutoff``."""
    t = M.ServerOnlineCount.__table__
    victims = (
        select(t.c.id)
        .where(t.c.hour_timestamp < cutoff)
        .order_by(t.c.id)
        .limit(batch_size)
    )
    result = conn.execute(delete(t).where(t.c.id.in_(victims.scalar_subquery())))
    return result.rowcount or 0


class RetentionPruner:
    """Age-based pruning in short, separately committed batches."""

    def __init__(
        self,
        engine: Engine,
        leases: LeaseCoordinator,
        *,
        config: Optional[RetentionConfig] = None,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.leases = leases
        self.config = config or RetentionConfig()
        self.clock = clock or Clock()
        self.sleep = sleep
        if self.config.batch_size < 1:
            raise ValueError("batch_size must be positive")

    def prune_this_week(self) -> RoutineResult:
        routine = Routine(
            SHAPE_PLAYER_BEST_SCORES,
            LEASE_PLAYER_AGGREGATES,
            lambda conn, scope: RoutineOutput(
                rows_deleted=prune_stale_this_week(conn, scope.now)
            ),
        )
        result = run_routine(
            self.engine, self.leases, routine, RecomputeScope(now=self.clock.now)
        )
        if result.ok:
            logger.info("Pruned %d stale this_week best-score entries", result.rows_deleted)
        return result

    def prune_online_counts(self, cancel: Optional[threading.Event] = None) -> RoutineResult:
        """Delete observations older than the horizon until a batch deletes nothing."""
        now = self.clock.now
        cutoff = now - timedelta(days=self.config.horizon_days)
        batch_size = self.config.batch_size
        routine = Routine(
            SHAPE_ONLINE_COUNTS,
            LEASE_SERVER_ACTIVITY,
            lambda conn, scope: RoutineOutput(
                rows_deleted=delete_online_counts_batch(conn, cutoff, batch_size)
            ),
            subject_scoped=False,
        )
        total = RoutineResult(shape=SHAPE_ONLINE_COUNTS)
        batches = 0
        while True:
            if cancel is not None and cancel.is_set():
                logger.warning("Online count pruning cancelled after %d batches", batches)
                break
            result = run_routine(self.engine, self.leases, routine, RecomputeScope(now=now))
            total.duration_seconds += result.duration_seconds
            if not result.ok:
                total.failure = result.failure
                break
            batches += 1
            total.rows_deleted += result.rows_deleted
            if result.rows_deleted == 0:
                break
            logger.debug(
                "Deleted %d online counts older than %s (batch %d)",
                result.rows_deleted,
                cutoff.isoformat(),
                batches,
            )
            if result.rows_deleted >= batch_size and self.config.pause_seconds > 0:
                self.sleep(self.config.pause_seconds)
        logger.info(
            "Pruned %d online counts older than %d days in %d batches",
            total.rows_deleted,
            self.config.horizon_days,
            batches,
        )
        return total

    def run_weekly(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        started = self.clock.now
        start = time.perf_counter()
        summary = RunSummary(job=JOB_WEEKLY, started_at=started)
        summary.results.append(self.prune_this_week())
        if cancel is not None and cancel.is_set():
            summary.cancelled = True
        else:
            summary.results.append(self.prune_online_counts(cancel))
            summary.cancelled = cancel is not None and cancel.is_set()
        summary.duration_seconds = time.perf_counter() - start
        return summary


__all__ = ["JOB_WEEKLY", "RetentionPruner", "delete_online_counts_batch"]
