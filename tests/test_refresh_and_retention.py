"""Tests for the daily refresh and the weekly retention jobs."""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from rollups.core.config import RefreshWindows, RetentionConfig
from rollups.core.constants import LEASE_PLAYER_AGGREGATES, LEASE_SERVER_ACTIVITY
from rollups.core.errors import FAILURE_TRANSIENT
from rollups.core.results import RoutineOutput
from rollups.jobs.refresh import JOB_DAILY, IncrementalRefresher
from rollups.jobs.retention import JOB_WEEKLY, RetentionPruner, SHAPE_ONLINE_COUNTS
from rollups.routines import Routine
from rollups.sql import models as M

from conftest import NOW


def _locked(conn, scope):
    raise OperationalError("DELETE FROM player_stats_monthly", {}, Exception("database is locked"))


class TestIncrementalRefresher:
    def test_scope_uses_shape_window(self, engine, leases, clock):
        refresher = IncrementalRefresher(engine, leases, clock=clock)
        scope = refresher.scope_for(
            Routine("player_best_scores", LEASE_PLAYER_AGGREGATES, _locked)
        )
        assert scope.since == NOW - timedelta(days=7)
        assert scope.subjects is None
        full = refresher.scope_for(
            Routine("map_global_averages", LEASE_PLAYER_AGGREGATES, _locked)
        )
        assert full.since is None

    def test_unknown_shape_has_no_window(self, engine, leases, clock):
        refresher = IncrementalRefresher(engine, leases, clock=clock)
        with pytest.raises(KeyError):
            refresher.scope_for(Routine("mystery", LEASE_PLAYER_AGGREGATES, _locked))

    def test_failed_shape_does_not_stop_the_others(self, engine, leases, clock):
        seen = []

        def ok(conn, scope):
            seen.append(scope.since)
            return RoutineOutput(rows_written=4)

        refresher = IncrementalRefresher(
            engine,
            leases,
            windows=RefreshWindows(player_stats_monthly=35, server_hourly_patterns=60),
            clock=clock,
            routines=[
                Routine("player_stats_monthly", LEASE_PLAYER_AGGREGATES, _locked),
                Routine("server_hourly_patterns", LEASE_SERVER_ACTIVITY, ok, subject_scoped=False),
            ],
        )
        summary = refresher.run_daily()
        assert summary.job == JOB_DAILY
        assert [r.shape for r in summary.results] == [
            "player_stats_monthly",
            "server_hourly_patterns",
        ]
        [failed] = summary.failures
        assert failed.failure.kind == FAILURE_TRANSIENT
        assert summary.retryable
        assert summary.rows_by_shape()["server_hourly_patterns"] == 4
        assert seen == [NOW - timedelta(days=60)]

    def test_cancel_stops_before_next_shape(self, engine, leases, clock):
        cancel = threading.Event()

        def cancel_after(conn, scope):
            cancel.set()
            return RoutineOutput()

        refresher = IncrementalRefresher(
            engine,
            leases,
            clock=clock,
            routines=[
                Routine("player_stats_monthly", LEASE_PLAYER_AGGREGATES, cancel_after),
                Routine("player_server_stats", LEASE_PLAYER_AGGREGATES, _locked),
            ],
        )
        summary = refresher.run_daily(cancel)
        assert summary.cancelled
        assert len(summary.results) == 1

    def test_full_daily_refresh_on_real_data(self, engine, leases, clock, seed, make_session):
        seed(M.Server, [{"guid": "srv-1", "name": "One", "game": "bf1942"}])
        seed(
            M.PlayerSession,
            [make_session("alpha", NOW - timedelta(days=d), score=10 * d) for d in range(1, 6)],
        )
        summary = IncrementalRefresher(engine, leases, clock=clock).run_daily()
        assert summary.ok, summary.failures
        assert len(summary.results) == 11
        assert summary.rows_by_shape()["player_best_scores"] > 0


def _online_rows(start: datetime, hours: int, server: str = "srv-1") -> list[dict]:
    return [
        {
            "server_guid": server,
            "hour_timestamp": start + timedelta(hours=h),
            "avg_players": 10.0,
            "peak_players": 12,
            "game": "bf1942",
        }
        for h in range(hours)
    ]


class TestRetentionPruner:
    def test_prunes_old_counts_in_batches(self, engine, leases, clock, seed, fetch):
        seed(M.ServerOnlineCount, _online_rows(NOW - timedelta(days=200), 25))
        seed(M.ServerOnlineCount, _online_rows(NOW - timedelta(days=2), 5))
        sleeps: list[float] = []
        pruner = RetentionPruner(
            engine,
            leases,
            config=RetentionConfig(horizon_days=180, batch_size=10, pause_seconds=0.5),
            clock=clock,
            sleep=sleeps.append,
        )
        result = pruner.prune_online_counts()
        assert result.ok
        assert result.shape == SHAPE_ONLINE_COUNTS
        assert result.rows_deleted == 25
        # Pause only after full batches (10, 10); the partial batch ends the loop
        assert sleeps == [0.5, 0.5]
        assert len(fetch(M.ServerOnlineCount)) == 5

    def test_nothing_to_prune(self, engine, leases, clock):
        sleeps: list[float] = []
        pruner = RetentionPruner(engine, leases, clock=clock, sleep=sleeps.append)
        result = pruner.prune_online_counts()
        assert result.ok
        assert result.rows_deleted == 0
        assert sleeps == []

    def test_weekly_summary(self, engine, leases, clock, seed):
        seed(M.ServerOnlineCount, _online_rows(NOW - timedelta(days=365), 3))
        pruner = RetentionPruner(engine, leases, clock=clock, sleep=lambda s: None)
        summary = pruner.run_weekly()
        assert summary.job == JOB_WEEKLY
        assert summary.ok
        assert [r.shape for r in summary.results] == ["player_best_scores", SHAPE_ONLINE_COUNTS]
        assert summary.results[1].rows_deleted == 3

    def test_cancelled_before_pruning(self, engine, leases, clock, seed, fetch):
        seed(M.ServerOnlineCount, _online_rows(NOW - timedelta(days=365), 3))
        cancel = threading.Event()
        cancel.set()
        pruner = RetentionPruner(engine, leases, clock=clock, sleep=lambda s: None)
        summary = pruner.run_weekly(cancel)
        assert summary.cancelled
        assert len(fetch(M.ServerOnlineCount)) == 3

    def test_invalid_batch_size(self, engine, leases):
        with pytest.raises(ValueError):
            RetentionPruner(engine, leases, config=RetentionConfig(batch_size=0))
