"""Administrative entry point wiring the jobs to one engine.

``RollupService`` owns the lease coordinator shared by every job it runs, so
a backfill triggered from an admin call and the scheduled refresh never
write the same rollup shape at once. Every trigger persists its telemetry.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Sequence

from sqlalchemy.engine import Engine

from rollups.core.config import RollupConfig
from rollups.core.constants import LEASE_MAP_STATISTICS, SHAPE_SERVER_MAP_STATS
from rollups.core.logging import log_timing
from rollups.core.results import RunSummary
from rollups.core.tiers import parse_tier
from rollups.core.time import Clock
from rollups.jobs.backfill import JOB_BACKFILL, BackfillOrchestrator
from rollups.jobs.leases import LeaseCoordinator
from rollups.jobs.refresh import JOB_DAILY, IncrementalRefresher
from rollups.jobs.retention import JOB_WEEKLY, RetentionPruner
from rollups.jobs.scheduler import (
    DailyAt,
    JobSchedule,
    RollupScheduler,
    ScheduledJob,
    WeeklyAt,
)
from rollups.jobs.telemetry import record_run
from rollups.routines import RecomputeScope, Routine, refresh_server_map_period, run_routine

logger = logging.getLogger(__name__)

JOB_PARTITION = "partition"


class RollupService:
    def __init__(
        self,
        engine: Engine,
        config: Optional[RollupConfig] = None,
        *,
        clock: Optional[Clock] = None,
        leases: Optional[LeaseCoordinator] = None,
        sleep=time.sleep,
    ) -> None:
        self.engine = engine
        self.config = config or RollupConfig()
        self.clock = clock or Clock()
        self.leases = leases or LeaseCoordinator()
        self.backfill = BackfillOrchestrator(
            engine, self.leases, config=self.config.backfill, clock=self.clock
        )
        self.refresher = IncrementalRefresher(
            engine, self.leases, windows=self.config.refresh, clock=self.clock
        )
        self.pruner = RetentionPruner(
            engine, self.leases, config=self.config.retention, clock=self.clock, sleep=sleep
        )

    def _record(self, summary: RunSummary, tier: Optional[int] = None) -> RunSummary:
        record_run(self.engine, summary, tier)
        return summary

    def backfill_full(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        with log_timing(logger, "full backfill"):
            summary = self.backfill.run_full(cancel)
        return self._record(summary)

    def backfill_tier(
        self, tier: int, cancel: Optional[threading.Event] = None
    ) -> RunSummary:
        """Backfill one recency tier (1-4); ``ValueError`` for other values."""
        recency = parse_tier(tier)
        started = self.clock.now
        start = time.perf_counter()
        tier_result = self.backfill.run_tier(recency, cancel)
        summary = RunSummary(
            job=JOB_BACKFILL,
            started_at=started,
            duration_seconds=time.perf_counter() - start,
            tiers=[tier_result],
            subject_count=tier_result.subject_count,
            cancelled=tier_result.cancelled,
        )
        return self._record(summary, int(recency))

    def refresh_now(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        return self._record(self.refresher.run_daily(cancel))

    def run_weekly(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        with log_timing(logger, "weekly retention"):
            summary = self.pruner.run_weekly(cancel)
        return self._record(summary)

    def run_for_subjects(
        self, subjects: Sequence[str], cancel: Optional[threading.Event] = None
    ) -> RunSummary:
        return self._record(self.backfill.run_for_subjects(subjects, cancel))

    def refresh_server_map_period(
        self, server_guid: str, map_name: str, year: int, month: int
    ) -> RunSummary:
        """Rebuild a single ``server_map_stats`` bucket after a round edit."""
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be 1-12, got {month}")
        routine = Routine(
            SHAPE_SERVER_MAP_STATS,
            LEASE_MAP_STATISTICS,
            lambda conn, scope: refresh_server_map_period(
                conn, server_guid, map_name, year, month, scope.now
            ),
            subject_scoped=False,
        )
        started = self.clock.now
        result = run_routine(self.engine, self.leases, routine, RecomputeScope(now=started))
        summary = RunSummary(
            job=JOB_PARTITION,
            started_at=started,
            duration_seconds=result.duration_seconds,
            results=[result],
        )
        return self._record(summary)

    def build_scheduler(self, cancel: Optional[threading.Event] = None) -> RollupScheduler:
        """Scheduler firing the daily refresh and the weekly retention."""
        schedule = self.config.schedule
        now = self.clock.now
        jobs = [
            ScheduledJob(
                JobSchedule.starting(JOB_DAILY, DailyAt(schedule.daily_hour), now),
                self.refresh_now,
            ),
            ScheduledJob(
                JobSchedule.starting(
                    JOB_WEEKLY, WeeklyAt(schedule.weekly_weekday, schedule.weekly_hour), now
                ),
                self.run_weekly,
            ),
        ]
        return RollupScheduler(jobs, config=schedule, clock=self.clock, cancel=cancel)


__all__ = ["JOB_PARTITION", "RollupService"]
