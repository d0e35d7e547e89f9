"""Recomputation routines, one per rollup shape.

``ROUTINES`` lists them in dependency order: ``map_global_averages`` reads
the cross-server rows of ``player_map_stats`` and therefore runs after it.
"""

from __future__ import annotations

from rollups.core.constants import (
    LEASE_MAP_STATISTICS,
    LEASE_PLAYER_AGGREGATES,
    LEASE_SERVER_ACTIVITY,
    SHAPE_HOURLY_ACTIVITY_PATTERNS,
    SHAPE_HOURLY_PLAYER_PREDICTIONS,
    SHAPE_MAP_GLOBAL_AVERAGES,
    SHAPE_MAP_SERVER_HOURLY_PATTERNS,
    SHAPE_PLAYER_BEST_SCORES,
    SHAPE_PLAYER_MAP_MONTHLY,
    SHAPE_PLAYER_MONTHLY,
    SHAPE_PLAYER_SERVER_HIGH_SCORES,
    SHAPE_PLAYER_SERVER_WEEKLY,
    SHAPE_SERVER_HOURLY_PATTERNS,
    SHAPE_SERVER_MAP_STATS,
)
from rollups.routines.base import RecomputeScope, Routine, run_routine
from rollups.routines.best_scores import recompute_best_scores
from rollups.routines.high_scores import recompute_high_scores
from rollups.routines.map_statistics import (
    recompute_map_global_averages,
    recompute_map_server_hourly_patterns,
    recompute_server_map_stats,
    refresh_server_map_period,
)
from rollups.routines.player_aggregates import (
    recompute_map_monthly,
    recompute_monthly,
    recompute_server_weekly,
)
from rollups.routines.server_activity import (
    recompute_activity_patterns,
    recompute_hourly_predictions,
    recompute_server_hourly_patterns,
)

ROUTINES: tuple[Routine, ...] = (
    Routine(SHAPE_PLAYER_MONTHLY, LEASE_PLAYER_AGGREGATES, recompute_monthly),
    Routine(SHAPE_PLAYER_SERVER_WEEKLY, LEASE_PLAYER_AGGREGATES, recompute_server_weekly),
    Routine(SHAPE_PLAYER_MAP_MONTHLY, LEASE_PLAYER_AGGREGATES, recompute_map_monthly),
    Routine(SHAPE_PLAYER_BEST_SCORES, LEASE_PLAYER_AGGREGATES, recompute_best_scores),
    Routine(
        SHAPE_PLAYER_SERVER_HIGH_SCORES, LEASE_PLAYER_AGGREGATES, recompute_high_scores
    ),
    Routine(
        SHAPE_SERVER_HOURLY_PATTERNS,
        LEASE_SERVER_ACTIVITY,
        recompute_server_hourly_patterns,
        subject_scoped=False,
    ),
    Routine(
        SHAPE_HOURLY_PLAYER_PREDICTIONS,
        LEASE_SERVER_ACTIVITY,
        recompute_hourly_predictions,
        subject_scoped=False,
    ),
    Routine(
        SHAPE_HOURLY_ACTIVITY_PATTERNS,
        LEASE_SERVER_ACTIVITY,
        recompute_activity_patterns,
        subject_scoped=False,
    ),
    Routine(
        SHAPE_SERVER_MAP_STATS,
        LEASE_MAP_STATISTICS,
        recompute_server_map_stats,
        subject_scoped=False,
    ),
    Routine(
        SHAPE_MAP_SERVER_HOURLY_PATTERNS,
        LEASE_MAP_STATISTICS,
        recompute_map_server_hourly_patterns,
        subject_scoped=False,
    ),
    Routine(
        SHAPE_MAP_GLOBAL_AVERAGES,
        LEASE_MAP_STATISTICS,
        recompute_map_global_averages,
        subject_scoped=False,
    ),
)

SUBJECT_ROUTINES: tuple[Routine, ...] = tuple(r for r in ROUTINES if r.subject_scoped)
PARTITION_ROUTINES: tuple[Routine, ...] = tuple(
    r for r in ROUTINES if not r.subject_scoped
)


def get_routine(shape: str) -> Routine:
    for routine in ROUTINES:
        if routine.shape == shape:
            return routine
    raise KeyError(f"Unknown rollup shape {shape!r}")


__all__ = [
    "PARTITION_ROUTINES",
    "ROUTINES",
    "RecomputeScope",
    "Routine",
    "SUBJECT_ROUTINES",
    "get_routine",
    "refresh_server_map_period",
    "run_routine",
]
