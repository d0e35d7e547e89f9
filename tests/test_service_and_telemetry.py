"""Tests for the admin trigger surface and the per-run telemetry records."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine as sa_create_engine

from rollups.core.errors import RollupFailure
from rollups.core.results import BatchOutcome, RoutineResult, RunSummary, TierResult
from rollups.core.tiers import RecencyTier
from rollups.jobs.telemetry import record_run, summary_records
from rollups.service import RollupService
from rollups.sql import models as M
from rollups.sql.load import load_rollup_runs_df

from conftest import NOW


@pytest.fixture
def service(engine, clock, leases):
    return RollupService(engine, clock=clock, leases=leases, sleep=lambda s: None)


@pytest.fixture
def activity(seed, make_session):
    return seed(
        M.PlayerSession,
        [
            make_session("alpha", NOW - timedelta(days=1), score=40),
            make_session("bravo", NOW - timedelta(days=45), score=20),
        ],
    )


class TestSummaryRecords:
    def test_batches_are_merged_per_shape(self):
        def batch(i, rows):
            result = RoutineResult(
                shape="player_stats_monthly", rows_written=rows, duration_seconds=0.5
            )
            return BatchOutcome(index=i, subjects=["x"], results=[result])

        summary = RunSummary(
            job="backfill",
            started_at=NOW,
            tiers=[TierResult(tier=RecencyTier.ACTIVE_WEEK, subject_count=4, batches=[batch(1, 3), batch(2, 5)])],
            subject_count=4,
        )
        [record] = summary_records(summary, tier=1)
        assert record["rows_written"] == 8
        assert record["duration_ms"] == 1000
        assert record["status"] == "ok"
        assert record["tier"] == 1
        assert record["subject_count"] == 4

    def test_failed_and_pruned_results(self):
        summary = RunSummary(
            job="weekly",
            started_at=NOW,
            results=[
                RoutineResult(shape="server_online_counts", rows_deleted=12),
                RoutineResult(
                    shape="player_best_scores",
                    failure=RollupFailure("transient", "OperationalError: database is locked"),
                ),
            ],
        )
        records = {r["shape"]: r for r in summary_records(summary)}
        assert records["server_online_counts"]["rows_written"] == 12
        assert records["player_best_scores"]["status"] == "failed"
        assert "locked" in records["player_best_scores"]["error"]
        assert records["server_online_counts"]["subject_count"] is None


def test_record_run_persists(engine):
    summary = RunSummary(
        job="daily",
        started_at=NOW,
        results=[RoutineResult(shape="player_stats_monthly", rows_written=3)],
    )
    assert record_run(engine, summary) == 1
    runs = load_rollup_runs_df(engine, job="daily")
    assert runs["shape"].to_list() == ["player_stats_monthly"]
    assert runs["started_at"].to_list() == [NOW]


def test_record_run_store_error_does_not_raise(tmp_path):
    # No tables created
    bare = sa_create_engine(f"sqlite:///{tmp_path / 'bare.db'}")
    summary = RunSummary(
        job="daily", started_at=NOW, results=[RoutineResult(shape="player_stats_monthly")]
    )
    assert record_run(bare, summary) == 0
    bare.dispose()


class TestRollupService:
    def test_backfill_full_records_telemetry(self, engine, service, activity):
        summary = service.backfill_full()
        assert summary.ok, summary.failures
        assert summary.subject_count == 2
        runs = load_rollup_runs_df(engine, job="backfill", limit=50)
        assert "player_stats_monthly" in runs["shape"].to_list()
        assert set(runs["status"].to_list()) == {"ok"}

    def test_backfill_tier(self, engine, service, activity, fetch):
        summary = service.backfill_tier(1)
        assert summary.ok
        assert summary.subject_count == 1
        assert {r["player_name"] for r in fetch(M.PlayerStatsMonthly)} == {"alpha"}
        assert set(load_rollup_runs_df(engine, job="backfill")["tier"].to_list()) == {1}

    def test_backfill_tier_rejects_bad_tier(self, service):
        with pytest.raises(ValueError):
            service.backfill_tier(0)

    def test_refresh_and_weekly(self, engine, service, activity):
        assert service.refresh_now().ok
        assert service.run_weekly().ok
        jobs = set(load_rollup_runs_df(engine, limit=100)["job"].to_list())
        assert {"daily", "weekly"} <= jobs

    def test_run_for_subjects(self, service, activity, fetch):
        summary = service.run_for_subjects(["bravo"])
        assert summary.ok
        assert {r["player_name"] for r in fetch(M.PlayerBestScore)} == {"bravo"}

    def test_build_scheduler(self, service):
        scheduler = service.build_scheduler()
        schedules = {job.schedule.name: job.schedule for job in scheduler.jobs}
        assert schedules["daily"].next_run_at == datetime(2025, 7, 17, 4)
        assert schedules["weekly"].next_run_at == datetime(2025, 7, 21, 3)
