"""Tests for the subject period and dimension totals."""

from datetime import datetime

import pytest
from sqlalchemy import update

from rollups.core.config import RefreshWindows
from rollups.core.constants import (
    GLOBAL_SCOPE,
    SHAPE_PLAYER_MAP_MONTHLY,
    SHAPE_PLAYER_MONTHLY,
    SHAPE_PLAYER_SERVER_WEEKLY,
)
from rollups.jobs.backfill import BackfillOrchestrator
from rollups.jobs.refresh import IncrementalRefresher
from rollups.routines import ROUTINES, RecomputeScope, get_routine, run_routine
from rollups.sql import models as M
from rollups.sql.load import load_player_lifetime_totals, load_player_monthly_df

from conftest import NOW


@pytest.fixture
def history(seed, make_session):
    rows = [
        make_session("alpha", datetime(2025, 6, 10, 10), minutes=30, score=100, kills=10, deaths=5),
        make_session(
            "alpha", datetime(2025, 6, 20, 10), minutes=60, score=50, kills=4, deaths=2,
            server="srv-2",
        ),
        make_session(
            "alpha", datetime(2025, 7, 2, 10), minutes=30, score=80, kills=8, deaths=0,
            map_name="kursk",
        ),
        make_session("alpha", datetime(2025, 7, 3, 10), score=999, kills=99, is_deleted=True),
        make_session("alpha", datetime(2025, 7, 16, 11), score=500, is_active=True),
        make_session("bravo", datetime(2025, 7, 10, 20), minutes=45, score=30, kills=3, deaths=3),
    ]
    return seed(M.PlayerSession, rows)


def _run(engine, leases, shape, **scope_kwargs):
    return run_routine(
        engine, leases, get_routine(shape), RecomputeScope(now=NOW, **scope_kwargs)
    )


def test_monthly_totals(engine, leases, history, fetch):
    result = _run(engine, leases, SHAPE_PLAYER_MONTHLY)
    assert result.ok
    assert result.rows_written == 3

    rows = {(r["player_name"], r["year"], r["month"]): r for r in fetch(M.PlayerStatsMonthly)}
    june = rows[("alpha", 2025, 6)]
    assert june["total_rounds"] == 2
    assert (june["total_kills"], june["total_deaths"], june["total_score"]) == (14, 7, 150)
    assert june["total_play_time_minutes"] == pytest.approx(90.0)
    assert june["avg_score_per_round"] == pytest.approx(75.0)
    assert june["kd_ratio"] == pytest.approx(2.0)
    assert june["kill_rate"] == pytest.approx(0.156)
    assert june["first_round_time"] == datetime(2025, 6, 10, 10)
    assert june["last_round_time"] == datetime(2025, 6, 20, 11)

    july = rows[("alpha", 2025, 7)]
    # Deleted and in-progress records are excluded
    assert july["total_score"] == 80
    assert july["kd_ratio"] == pytest.approx(8.0)
    assert ("bravo", 2025, 7) in rows


def test_recompute_is_idempotent(engine, leases, history, fetch):
    for shape in (SHAPE_PLAYER_MONTHLY, SHAPE_PLAYER_SERVER_WEEKLY, SHAPE_PLAYER_MAP_MONTHLY):
        _run(engine, leases, shape)
    first = [fetch(M.PlayerStatsMonthly), fetch(M.PlayerServerStats), fetch(M.PlayerMapStats)]
    for shape in (SHAPE_PLAYER_MONTHLY, SHAPE_PLAYER_SERVER_WEEKLY, SHAPE_PLAYER_MAP_MONTHLY):
        _run(engine, leases, shape)
    second = [fetch(M.PlayerStatsMonthly), fetch(M.PlayerServerStats), fetch(M.PlayerMapStats)]
    assert first == second


def test_buckets_conserve_lifetime_totals(engine, leases, history, fetch):
    for shape in (SHAPE_PLAYER_MONTHLY, SHAPE_PLAYER_SERVER_WEEKLY, SHAPE_PLAYER_MAP_MONTHLY):
        _run(engine, leases, shape)

    lifetime = load_player_lifetime_totals(engine, "alpha")
    assert lifetime["total_rounds"] == 3
    assert lifetime["total_kills"] == 22
    assert lifetime["total_deaths"] == 7
    assert lifetime["total_score"] == 230
    assert lifetime["total_play_time_minutes"] == pytest.approx(120.0)

    weekly = [r for r in fetch(M.PlayerServerStats) if r["player_name"] == "alpha"]
    assert sum(r["total_kills"] for r in weekly) == 22
    assert sum(r["total_score"] for r in weekly) == 230

    maps = [r for r in fetch(M.PlayerMapStats) if r["player_name"] == "alpha"]
    global_rows = [r for r in maps if r["server_guid"] == GLOBAL_SCOPE]
    server_rows = [r for r in maps if r["server_guid"] != GLOBAL_SCOPE]
    assert sum(r["total_score"] for r in global_rows) == 230
    assert sum(r["total_score"] for r in server_rows) == 230


def test_map_monthly_has_server_and_global_rows(engine, leases, history, fetch):
    _run(engine, leases, SHAPE_PLAYER_MAP_MONTHLY)
    keys = {
        (r["player_name"], r["map_name"], r["server_guid"], r["month"])
        for r in fetch(M.PlayerMapStats)
    }
    assert keys == {
        ("alpha", "wake", "srv-1", 6),
        ("alpha", "wake", "srv-2", 6),
        ("alpha", "wake", GLOBAL_SCOPE, 6),
        ("alpha", "kursk", "srv-1", 7),
        ("alpha", "kursk", GLOBAL_SCOPE, 7),
        ("bravo", "wake", "srv-1", 7),
        ("bravo", "wake", GLOBAL_SCOPE, 7),
    }


def test_server_weekly_uses_iso_weeks(engine, leases, history, fetch):
    _run(engine, leases, SHAPE_PLAYER_SERVER_WEEKLY)
    keys = {(r["player_name"], r["server_guid"], r["year"], r["week"]) for r in fetch(M.PlayerServerStats)}
    assert ("alpha", "srv-1", 2025, 24) in keys
    assert ("alpha", "srv-2", 2025, 25) in keys
    assert ("bravo", "srv-1", 2025, 28) in keys


def test_malformed_records_are_skipped_and_counted(engine, leases, seed, make_session, fetch):
    seed(
        M.PlayerSession,
        [
            make_session("charlie", datetime(2025, 7, 1, 10), minutes=-5),
            make_session("charlie", datetime(2025, 7, 1, 12), score=40),
        ],
    )
    result = _run(engine, leases, SHAPE_PLAYER_MONTHLY)
    assert result.ok
    assert result.skipped_records == 1
    [row] = fetch(M.PlayerStatsMonthly)
    assert row["total_rounds"] == 1
    assert row["total_score"] == 40


def test_retroactive_soft_delete_of_a_month(engine, leases, clock, history, fetch):
    backfill = BackfillOrchestrator(engine, leases, clock=clock)
    assert backfill.run_for_subjects(["alpha"]).ok
    assert {r["month"] for r in fetch(M.PlayerStatsMonthly) if r["player_name"] == "alpha"} == {6, 7}

    ps = M.PlayerSession.__table__
    with engine.begin() as conn:
        conn.execute(
            update(ps)
            .where(ps.c.player_name == "alpha", ps.c.start_time < datetime(2025, 7, 1))
            .values(is_deleted=True)
        )

    summary = backfill.run_for_subjects(["alpha"])
    assert summary.ok
    monthly = load_player_monthly_df(engine, "alpha")
    assert monthly["month"].to_list() == [7]
    assert not any(
        r["month"] == 6 for r in fetch(M.PlayerMapStats) if r["player_name"] == "alpha"
    )
    lifetime = load_player_lifetime_totals(engine, "alpha")
    assert lifetime["total_score"] == 80


def test_windowed_refresh_leaves_older_buckets(engine, leases, clock, history, seed, fetch):
    seed(
        M.PlayerStatsMonthly,
        [
            {
                "player_name": "alpha",
                "year": 2025,
                "month": 3,
                "total_rounds": 4,
                "total_kills": 4,
                "total_deaths": 4,
                "total_score": 400,
                "total_play_time_minutes": 120.0,
                "avg_score_per_round": 100.0,
                "kd_ratio": 1.0,
                "kill_rate": 0.033,
            }
        ],
    )
    refresher = IncrementalRefresher(
        engine,
        leases,
        windows=RefreshWindows(),
        clock=clock,
        routines=[r for r in ROUTINES if r.shape == SHAPE_PLAYER_MONTHLY],
    )
    summary = refresher.run_daily()
    assert summary.ok
    months = sorted(
        (r["month"], r["total_score"])
        for r in fetch(M.PlayerStatsMonthly)
        if r["player_name"] == "alpha"
    )
    # The 35-day window floors to June 1st; March is outside it
    assert months == [(3, 400), (6, 150), (7, 80)]


def test_monthly_reader_bucket_range(engine, leases, history):
    _run(engine, leases, SHAPE_PLAYER_MONTHLY)
    only_june = load_player_monthly_df(
        engine, "alpha", since_bucket=(2025, 6), until_bucket=(2025, 6)
    )
    assert only_june["month"].to_list() == [6]
    assert load_player_monthly_df(engine, "nobody").is_empty()
