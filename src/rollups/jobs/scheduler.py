"""Background scheduling of the daily refresh and the weekly retention.

Schedule state is an explicit ``JobSchedule`` value per job, advanced by the
pure ``advance`` function; the loop owns the values and nothing is global.
Jobs run sequentially in one thread, so a job never overlaps itself.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Union

from rollups.core.config import ScheduleConfig
from rollups.core.errors import InvariantViolation
from rollups.core.results import RunSummary
from rollups.core.time import Clock

logger = logging.getLogger(__name__)

JobAction = Callable[[threading.Event], RunSummary]


@dataclass(frozen=True)
class DailyAt:
    """Once a day at ``hour:minute`` UTC."""

    hour: int
    minute: int = 0

    def next_after(self, moment: datetime) -> datetime:
        candidate = moment.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= moment:
            candidate += timedelta(days=1)
        return candidate


@dataclass(frozen=True)
class WeeklyAt:
    """Once a week on ``weekday`` (0=Monday) at ``hour:minute`` UTC."""

    weekday: int
    hour: int
    minute: int = 0

    def next_after(self, moment: datetime) -> datetime:
        days_ahead = (self.weekday - moment.weekday()) % 7
        candidate = (moment + timedelta(days=days_ahead)).replace(
            hour=self.hour, minute=self.minute, second=0, microsecond=0
        )
        if candidate <= moment:
            candidate += timedelta(days=7)
        return candidate


IntervalPolicy = Union[DailyAt, WeeklyAt]


@dataclass(frozen=True)
class JobSchedule:
    name: str
    policy: IntervalPolicy
    next_run_at: datetime
    last_run_at: Optional[datetime] = None

    @classmethod
    def starting(cls, name: str, policy: IntervalPolicy, now: datetime) -> JobSchedule:
        return cls(name=name, policy=policy, next_run_at=policy.next_after(now))

    def is_due(self, now: datetime) -> bool:
        return now >= self.next_run_at


def advance(schedule: JobSchedule, now: datetime) -> JobSchedule:
    """Record a run at ``now`` and move to the first occurrence after it.

    Occurrences missed while the process was busy or down collapse into the
    run that just happened.
    """
    return replace(
        schedule,
        last_run_at=now,
        next_run_at=schedule.policy.next_after(max(now, schedule.next_run_at)),
    )


def backoff_delay(attempt: int, config: ScheduleConfig) -> float:
    """Exponential backoff for retry ``attempt`` (1-based), capped."""
    return min(config.backoff_seconds * (2 ** (attempt - 1)), config.max_backoff_seconds)


@dataclass
class ScheduledJob:
    schedule: JobSchedule
    action: JobAction


class RollupScheduler:
    """Single-threaded loop firing each job at most once per occurrence."""

    def __init__(
        self,
        jobs: Sequence[ScheduledJob],
        *,
        config: Optional[ScheduleConfig] = None,
        clock: Optional[Clock] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.jobs = list(jobs)
        self.config = config or ScheduleConfig()
        self.clock = clock or Clock()
        self.cancel = cancel or threading.Event()

    def _wait(self, seconds: float) -> bool:
        """Sleep unless cancelled; True when cancellation was requested."""
        return self.cancel.wait(timeout=max(0.0, seconds))

    def run_with_retry(self, name: str, action: JobAction) -> Optional[RunSummary]:
        """Run ``action`` with bounded retries on exceptions or transient failures."""
        summary: Optional[RunSummary] = None
        for attempt in range(1, self.config.max_attempts + 1):
            if self.cancel.is_set():
                return summary
            try:
                summary = action(self.cancel)
            except InvariantViolation:
                logger.critical("Job %s hit an invariant violation", name, exc_info=True)
                raise
            except Exception as exc:
                logger.error(
                    "Job %s attempt %d/%d raised: %s",
                    name,
                    attempt,
                    self.config.max_attempts,
                    exc,
                    exc_info=True,
                )
            else:
                if summary.ok or summary.cancelled or not summary.retryable:
                    return summary
                logger.warning(
                    "Job %s attempt %d/%d had transient failures: %s",
                    name,
                    attempt,
                    self.config.max_attempts,
                    ", ".join(r.shape for r in summary.failures),
                )
            if attempt < self.config.max_attempts:
                delay = backoff_delay(attempt, self.config)
                logger.info("Retrying %s in %.0fs", name, delay)
                if self._wait(delay):
                    return summary
        logger.error("Job %s gave up after %d attempts", name, self.config.max_attempts)
        return summary

    def run_pending(self) -> list[RunSummary]:
        """Run every due job once and advance its schedule."""
        summaries = []
        for job in self.jobs:
            now = self.clock.now
            if not job.schedule.is_due(now):
                continue
            logger.info(
                "Running %s (due %s)", job.schedule.name, job.schedule.next_run_at.isoformat()
            )
            summary = self.run_with_retry(job.schedule.name, job.action)
            if summary is not None:
                summaries.append(summary)
            job.schedule = advance(job.schedule, now)
            logger.info(
                "Next %s run at %s", job.schedule.name, job.schedule.next_run_at.isoformat()
            )
        return summaries

    def seconds_until_next(self) -> float:
        if not self.jobs:
            return self.config.poll_seconds
        now = self.clock.now
        soonest = min(job.schedule.next_run_at for job in self.jobs)
        return min(max(0.0, (soonest - now).total_seconds()), self.config.poll_seconds)

    def run_forever(self, max_cycles: Optional[int] = None) -> int:
        """Loop until cancelled (or ``max_cycles`` polls); returns cycles run."""
        logger.info(
            "Scheduler started: %s",
            ", ".join(f"{j.schedule.name}@{j.schedule.next_run_at.isoformat()}" for j in self.jobs),
        )
        cycles = 0
        while not self.cancel.is_set() and (max_cycles is None or cycles < max_cycles):
            cycle_start = time.perf_counter()
            self.run_pending()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            wait = self.seconds_until_next()
            logger.debug(
                "Cycle %d took %.1fs; sleeping %.0fs",
                cycles,
                time.perf_counter() - cycle_start,
                wait,
            )
            if self._wait(wait):
                break
        logger.info("Scheduler stopped after %d cycles", cycles)
        return cycles


__all__ = [
    "DailyAt",
    "JobSchedule",
    "RollupScheduler",
    "ScheduledJob",
    "WeeklyAt",
    "advance",
    "backoff_delay",
]
