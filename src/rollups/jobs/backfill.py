"""Tiered historical recomputation.

``run_full`` recomputes every rollup from full history: subject-scoped
routines tier by tier (most recently active subjects first) in fixed-size
batches, then the partition routines once. Each batch commits per routine,
so an interrupted backfill keeps every completed batch and can simply be
re-run.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Sequence

from sqlalchemy.engine import Engine

from rollups.core.config import BackfillConfig
from rollups.core.logging import ProgressLogger
from rollups.core.results import BatchOutcome, RoutineResult, RunSummary, TierResult
from rollups.core.tiers import RecencyTier, TIER_BOUNDS, subjects_for_tier
from rollups.core.time import Clock
from rollups.jobs.leases import LeaseCoordinator
from rollups.routines import PARTITION_ROUTINES, SUBJECT_ROUTINES, RecomputeScope, run_routine
from rollups.routines.base import Routine
from rollups.sql.load import load_last_activity_df
from rollups.sql.query import chunked

logger = logging.getLogger(__name__)

JOB_BACKFILL = "backfill"
JOB_SUBJECTS = "subjects"


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


class BackfillOrchestrator:
    """Drives full, per-tier and targeted recomputation."""

    def __init__(
        self,
        engine: Engine,
        leases: LeaseCoordinator,
        *,
        config: Optional[BackfillConfig] = None,
        clock: Optional[Clock] = None,
        routines: Sequence[Routine] = SUBJECT_ROUTINES,
        partition_routines: Sequence[Routine] = PARTITION_ROUTINES,
    ) -> None:
        self.engine = engine
        self.leases = leases
        self.config = config or BackfillConfig()
        self.clock = clock or Clock()
        self.routines = tuple(routines)
        self.partition_routines = tuple(partition_routines)
        if self.config.batch_size < 1:
            raise ValueError("batch_size must be positive")

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def run_batch(self, index: int, subjects: Sequence[str], scope: RecomputeScope) -> BatchOutcome:
        """Run every subject routine for one batch.

        The batch stops at the first failing routine; later routines would
        only widen the inconsistency for this batch.
        """
        start = time.perf_counter()
        outcome = BatchOutcome(index=index, subjects=list(subjects))
        for routine in self.routines:
            result = run_routine(self.engine, self.leases, routine, scope)
            outcome.results.append(result)
            if not result.ok:
                break
        outcome.duration_seconds = time.perf_counter() - start
        return outcome

    def _run_subjects(
        self,
        subjects: Sequence[str],
        tier: Optional[RecencyTier],
        label: str,
        cancel: Optional[threading.Event],
    ) -> TierResult:
        result = TierResult(tier=tier, subject_count=len(subjects))
        batches = list(chunked(list(subjects), self.config.batch_size))
        if not batches:
            logger.info("%s: no subjects", label)
            return result

        now = self.clock.now
        processed = 0
        with ProgressLogger(logger, label, total=len(batches)) as progress:
            for index, batch in enumerate(batches, 1):
                if _cancelled(cancel):
                    logger.warning(
                        "%s cancelled before batch %d/%d", label, index, len(batches)
                    )
                    result.cancelled = True
                    break
                scope = RecomputeScope.for_subjects(batch, now=now)
                outcome = self.run_batch(index, batch, scope)
                result.batches.append(outcome)
                processed += len(batch)
                progress.update(
                    index,
                    f"subjects={processed}/{len(subjects)} rows={outcome.rows_written} "
                    f"batch_elapsed={outcome.duration_seconds:.2f}s",
                )
                if not outcome.ok:
                    failure = outcome.failure
                    logger.error(
                        "%s: batch %d/%d failed (%s: %s); aborting remaining batches",
                        label,
                        index,
                        len(batches),
                        failure.kind,
                        failure.message,
                    )
                    result.aborted_at_batch = index
                    break
        return result

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def run_tier(
        self, tier: RecencyTier | int, cancel: Optional[threading.Event] = None
    ) -> TierResult:
        """Recompute every subject whose last activity falls in ``tier``."""
        tier = RecencyTier(int(tier))
        with self.engine.connect() as conn:
            activity = load_last_activity_df(conn)
        subjects = subjects_for_tier(activity, tier, self.clock.now)
        logger.info(
            "Tier %d (%s): %d subjects", int(tier), TIER_BOUNDS[tier].description, len(subjects)
        )
        return self._run_subjects(subjects, tier, f"tier {int(tier)} backfill", cancel)

    def run_for_subjects(
        self, subjects: Sequence[str], cancel: Optional[threading.Event] = None
    ) -> RunSummary:
        """Recompute specific subjects after a retroactive raw-log change.

        Deleted records are excluded as usual, so a subject whose records
        were all soft-deleted ends up with no rollup rows.
        """
        started = self.clock.now
        start = time.perf_counter()
        unique = sorted({s for s in subjects if s})
        tier_result = self._run_subjects(unique, None, "targeted recompute", cancel)
        return RunSummary(
            job=JOB_SUBJECTS,
            started_at=started,
            duration_seconds=time.perf_counter() - start,
            tiers=[tier_result],
            subject_count=len(unique),
            cancelled=tier_result.cancelled,
        )

    def run_partitions(
        self, cancel: Optional[threading.Event] = None
    ) -> list[RoutineResult]:
        """Full-history pass over the partition routines."""
        now = self.clock.now
        results = []
        for routine in self.partition_routines:
            if _cancelled(cancel):
                break
            results.append(
                run_routine(self.engine, self.leases, routine, RecomputeScope(now=now))
            )
        return results

    def run_full(self, cancel: Optional[threading.Event] = None) -> RunSummary:
        """Recompute everything: tiers 1 through 4, then partition routines.

        Stops after the first tier that fails or is cancelled; the tiers
        already completed stay committed.
        """
        started = self.clock.now
        start = time.perf_counter()
        summary = RunSummary(job=JOB_BACKFILL, started_at=started)
        for tier in RecencyTier:
            tier_result = self.run_tier(tier, cancel)
            summary.tiers.append(tier_result)
            summary.subject_count += tier_result.subject_count
            if tier_result.cancelled:
                summary.cancelled = True
                break
            if not tier_result.ok:
                logger.error("Full backfill stopped after tier %d failed", int(tier))
                break
        else:
            if _cancelled(cancel):
                summary.cancelled = True
            else:
                summary.results.extend(self.run_partitions(cancel))
                summary.cancelled = _cancelled(cancel)
        summary.duration_seconds = time.perf_counter() - start
        logger.info(
            "Full backfill finished: %d subjects, %d rows, %d failures in %.2fs",
            summary.subject_count,
            summary.total_rows,
            len(summary.failures),
            summary.duration_seconds,
        )
        return summary


__all__ = ["BackfillOrchestrator", "JOB_BACKFILL", "JOB_SUBJECTS"]
