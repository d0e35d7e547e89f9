"""Result values returned by routines, batches, tiers and whole runs.

Failures travel as data (``RollupFailure``) so orchestrators can decide
between continuing and aborting without catching exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from rollups.core.errors import RollupFailure
from rollups.core.tiers import RecencyTier


@dataclass
class RoutineOutput:
    """What a recomputation wrote during one call."""

    rows_written: int = 0
    rows_deleted: int = 0
    skipped_records: int = 0


@dataclass
class RoutineResult:
    """Outcome of one routine invocation under its lease."""

    shape: str
    rows_written: int = 0
    rows_deleted: int = 0
    skipped_records: int = 0
    duration_seconds: float = 0.0
    failure: Optional[RollupFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class BatchOutcome:
    """Outcome of running every subject routine for one subject batch."""

    index: int
    subjects: list[str]
    results: list[RoutineResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def rows_written(self) -> int:
        return sum(r.rows_written for r in self.results)

    @property
    def skipped_records(self) -> int:
        return sum(r.skipped_records for r in self.results)

    @property
    def failure(self) -> Optional[RollupFailure]:
        for result in self.results:
            if result.failure is not None:
                return result.failure
        return None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class TierResult:
    """Outcome of one backfill tier."""

    tier: Optional[RecencyTier]
    subject_count: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)
    cancelled: bool = False
    aborted_at_batch: Optional[int] = None

    @property
    def rows_written(self) -> int:
        return sum(b.rows_written for b in self.batches)

    @property
    def failure(self) -> Optional[RollupFailure]:
        for batch in self.batches:
            if batch.failure is not None:
                return batch.failure
        return None

    @property
    def ok(self) -> bool:
        return self.failure is None and not self.cancelled

    @property
    def completed(self) -> bool:
        """All batches ran and none failed."""
        return self.ok and self.aborted_at_batch is None


@dataclass
class RunSummary:
    """Completion record for one job run (daily, weekly, backfill)."""

    job: str
    started_at: datetime
    duration_seconds: float = 0.0
    results: list[RoutineResult] = field(default_factory=list)
    tiers: list[TierResult] = field(default_factory=list)
    subject_count: int = 0
    cancelled: bool = False

    def all_results(self) -> list[RoutineResult]:
        out = list(self.results)
        for tier in self.tiers:
            for batch in tier.batches:
                out.extend(batch.results)
        return out

    @property
    def total_rows(self) -> int:
        return sum(r.rows_written for r in self.all_results())

    @property
    def failures(self) -> list[RoutineResult]:
        return [r for r in self.all_results() if r.failure is not None]

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    @property
    def retryable(self) -> bool:
        """Every failure was transient, so re-running the job may succeed."""
        failures = self.failures
        return bool(failures) and all(r.failure.retryable for r in failures)

    def rows_by_shape(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for result in self.all_results():
            totals[result.shape] = totals.get(result.shape, 0) + result.rows_written
        return totals


__all__ = [
    "BatchOutcome",
    "RoutineOutput",
    "RoutineResult",
    "RunSummary",
    "TierResult",
]
