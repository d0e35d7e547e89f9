"""Tests for the hourly distribution and map statistics rollups."""

from datetime import datetime, timedelta

import polars as pl
import pytest

from rollups.core.constants import (
    GLOBAL_SCOPE,
    SHAPE_HOURLY_ACTIVITY_PATTERNS,
    SHAPE_HOURLY_PLAYER_PREDICTIONS,
    SHAPE_MAP_GLOBAL_AVERAGES,
    SHAPE_MAP_SERVER_HOURLY_PATTERNS,
    SHAPE_PLAYER_MAP_MONTHLY,
    SHAPE_SERVER_HOURLY_PATTERNS,
    SHAPE_SERVER_MAP_STATS,
)
from rollups.routines import RecomputeScope, get_routine, run_routine
from rollups.routines.map_statistics import build_server_map_stats
from rollups.routines.server_activity import build_activity_patterns
from rollups.service import RollupService
from rollups.sql import models as M
from rollups.sql.load import (
    load_hourly_predictions_df,
    load_map_global_averages_df,
    load_server_hourly_patterns_df,
    load_server_map_stats_df,
)

from conftest import NOW

# Sundays at 20:00 UTC
SUNDAYS = [datetime(2025, 6, 22, 20), datetime(2025, 6, 29, 20), datetime(2025, 7, 6, 20)]


def _run(engine, leases, shape, **scope_kwargs):
    return run_routine(engine, leases, get_routine(shape), RecomputeScope(now=NOW, **scope_kwargs))


@pytest.fixture
def servers(seed):
    return seed(
        M.Server,
        [
            {"guid": "srv-1", "name": "One", "game": "bf1942"},
            {"guid": "srv-2", "name": "Two", "game": "fh2"},
            {"guid": "srv-3", "name": "Other", "game": "unknown-game"},
        ],
    )


@pytest.fixture
def online_counts(seed, servers):
    rows = []
    for i, ts in enumerate(SUNDAYS):
        rows.append({"server_guid": "srv-1", "hour_timestamp": ts, "avg_players": 10.0 * (i + 1), "game": "bf1942"})
        rows.append({"server_guid": "srv-2", "hour_timestamp": ts, "avg_players": 4.0, "game": "fh2"})
        rows.append({"server_guid": "srv-3", "hour_timestamp": ts, "avg_players": 99.0, "game": "unknown-game"})
    return seed(M.ServerOnlineCount, rows)


@pytest.fixture
def rounds(seed, servers):
    base = {
        "duration_minutes": 30,
        "team1_label": "Axis",
        "team2_label": "Allies",
        "is_active": False,
        "is_deleted": False,
    }
    return seed(
        M.Round,
        [
            {**base, "round_id": "a", "server_guid": "srv-1", "map_name": "wake", "start_time": SUNDAYS[0], "participant_count": 20, "tickets1": 100, "tickets2": 0},
            {**base, "round_id": "b", "server_guid": "srv-1", "map_name": "wake", "start_time": SUNDAYS[1], "participant_count": 30, "tickets1": 0, "tickets2": 50},
            {**base, "round_id": "c", "server_guid": "srv-1", "map_name": "wake", "start_time": SUNDAYS[2], "participant_count": 40, "tickets1": 10, "tickets2": None},
            {**base, "round_id": "d", "server_guid": "srv-1", "map_name": "wake", "start_time": SUNDAYS[2] + timedelta(hours=1), "participant_count": 50, "is_deleted": True},
            {**base, "round_id": "e", "server_guid": "srv-1", "map_name": "", "start_time": SUNDAYS[2]},
            {**base, "round_id": "f", "server_guid": "srv-1", "map_name": "wake", "start_time": NOW, "is_active": True},
        ],
    )


def test_server_hourly_patterns(engine, leases, online_counts):
    result = _run(engine, leases, SHAPE_SERVER_HOURLY_PATTERNS)
    assert result.ok
    [row] = load_server_hourly_patterns_df(engine, "srv-1").to_dicts()
    assert (row["day_of_week"], row["hour_of_day"]) == (0, 20)
    assert row["avg_players"] == pytest.approx(20.0)
    assert row["median_players"] == pytest.approx(20.0)
    assert row["q25_players"] == pytest.approx(15.0)
    assert row["q90_players"] == pytest.approx(28.0)
    assert (row["min_players"], row["max_players"]) == (10.0, 30.0)
    assert row["data_points"] == 3
    assert load_server_hourly_patterns_df(engine, "srv-1", min_samples=4).is_empty()


def test_hourly_predictions_only_tracked_games(engine, leases, online_counts):
    assert _run(engine, leases, SHAPE_HOURLY_PLAYER_PREDICTIONS).ok
    [row] = load_hourly_predictions_df(engine, "bf1942").to_dicts()
    assert row["predicted_players"] == pytest.approx(20.0)
    assert row["data_points"] == 3
    assert load_hourly_predictions_df(engine, "fh2")["predicted_players"].to_list() == [4.0]
    assert load_hourly_predictions_df(engine, "unknown-game").is_empty()


def test_activity_patterns_weekend_flag():
    sessions = pl.DataFrame(
        {
            "player_name": ["a", "b", "a"],
            "round_id": ["r1", "r1", "r2"],
            "game": ["bf1942"] * 3,
            "start_time": [SUNDAYS[0], SUNDAYS[0], datetime(2025, 6, 24, 20)],
            "last_seen_time": [
                SUNDAYS[0] + timedelta(minutes=30),
                SUNDAYS[0] + timedelta(minutes=10),
                datetime(2025, 6, 24, 20, 20),
            ],
        }
    )
    frame = build_activity_patterns(sessions)
    rows = {r["day_of_week"]: r for r in frame.to_dicts()}
    assert rows[0]["period_type"] == "Weekend"
    assert rows[0]["unique_players_avg"] == 2.0
    assert rows[0]["avg_round_duration"] == pytest.approx(20.0)
    assert rows[2]["period_type"] == "Weekday"


def test_activity_patterns_routine(engine, leases, servers, seed, make_session):
    seed(M.PlayerSession, [make_session("alpha", SUNDAYS[0]), make_session("bravo", SUNDAYS[0])])
    assert _run(engine, leases, SHAPE_HOURLY_ACTIVITY_PATTERNS).ok


def test_server_map_stats(engine, leases, rounds):
    assert _run(engine, leases, SHAPE_SERVER_MAP_STATS).ok
    rows = {(r["year"], r["month"]): r for r in load_server_map_stats_df(engine, "srv-1").to_dicts()}
    june = rows[(2025, 6)]
    assert june["total_rounds"] == 2
    assert june["total_play_time_minutes"] == 60
    assert june["avg_concurrent_players"] == pytest.approx(25.0)
    assert june["peak_concurrent_players"] == 30
    assert (june["team1_victories"], june["team2_victories"]) == (1, 1)
    july = rows[(2025, 7)]
    # Unknown tickets decide nothing; deleted, active and unnamed rounds are excluded
    assert july["total_rounds"] == 1
    assert (july["team1_victories"], july["team2_victories"]) == (0, 0)


def test_server_map_period_refresh(engine, leases, clock, rounds, fetch):
    service = RollupService(engine, clock=clock, leases=leases)
    summary = service.refresh_server_map_period("srv-1", "wake", 2025, 7)
    assert summary.ok
    assert [(r["year"], r["month"]) for r in fetch(M.ServerMapStats)] == [(2025, 7)]
    with pytest.raises(ValueError):
        service.refresh_server_map_period("srv-1", "wake", 2025, 13)


def test_build_server_map_stats_empty():
    empty = pl.DataFrame(
        schema={
            "server_guid": pl.Utf8,
            "map_name": pl.Utf8,
            "start_time": pl.Datetime("us"),
            "duration_minutes": pl.Int64,
            "participant_count": pl.Int64,
            "tickets1": pl.Int64,
            "tickets2": pl.Int64,
            "team1_label": pl.Utf8,
            "team2_label": pl.Utf8,
        }
    )
    assert build_server_map_stats(empty).is_empty()


def test_map_server_hourly_patterns(engine, leases, rounds, fetch):
    assert _run(engine, leases, SHAPE_MAP_SERVER_HOURLY_PATTERNS).ok
    [row] = fetch(M.MapServerHourlyPattern)
    assert (row["server_guid"], row["map_name"], row["game"]) == ("srv-1", "wake", "bf1942")
    assert (row["day_of_week"], row["hour_of_day"]) == (0, 20)
    assert row["times_played"] == 3
    assert row["data_points"] == 3
    assert row["avg_players"] == pytest.approx(30.0)


def test_map_global_averages(engine, leases, seed, make_session):
    seed(
        M.PlayerSession,
        [
            make_session("alpha", datetime(2025, 7, 1, 10), minutes=30, kills=15, score=60, server="srv-1"),
            make_session("bravo", datetime(2025, 7, 1, 10), minutes=10, kills=5, score=20, server="srv-2"),
        ],
    )
    assert _run(engine, leases, SHAPE_PLAYER_MAP_MONTHLY).ok
    assert _run(engine, leases, SHAPE_MAP_GLOBAL_AVERAGES).ok
    [row] = load_map_global_averages_df(engine).to_dicts()
    assert row["map_name"] == "wake"
    assert row["server_guid"] == GLOBAL_SCOPE
    assert row["avg_kill_rate"] == pytest.approx(0.5)
    assert row["avg_score_rate"] == pytest.approx(2.0)
    assert row["sample_count"] == 2
