"""Recency tiers used to order backfill work.

A subject's tier is derived from its most recent non-deleted activity:

- tier 1: active within the last 7 days
- tier 2: last active 8-30 days ago
- tier 3: last active 31-90 days ago
- tier 4: last active more than 90 days ago, or no live activity at all

Tiers are never persisted; they only decide which subjects are recomputed
first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum

import polars as pl


class RecencyTier(IntEnum):
    ACTIVE_WEEK = 1
    ACTIVE_MONTH = 2
    ACTIVE_QUARTER = 3
    DORMANT = 4


@dataclass(frozen=True)
class TierBounds:
    """Half-open age window ``(min_days, max_days]`` for one tier."""

    tier: RecencyTier
    min_days: int | None
    max_days: int | None
    description: str


TIER_BOUNDS: dict[RecencyTier, TierBounds] = {
    RecencyTier.ACTIVE_WEEK: TierBounds(
        RecencyTier.ACTIVE_WEEK, None, 7, "active within 7 days"
    ),
    RecencyTier.ACTIVE_MONTH: TierBounds(
        RecencyTier.ACTIVE_MONTH, 7, 30, "active within 30 days"
    ),
    RecencyTier.ACTIVE_QUARTER: TierBounds(
        RecencyTier.ACTIVE_QUARTER, 30, 90, "active within 90 days"
    ),
    RecencyTier.DORMANT: TierBounds(
        RecencyTier.DORMANT, 90, None, "all remaining subjects"
    ),
}


def parse_tier(value: int) -> RecencyTier:
    """Validate a tier number coming from a CLI or admin trigger."""
    try:
        return RecencyTier(int(value))
    except ValueError:
        raise ValueError(f"Tier must be between 1 and 4, got {value!r}") from None


def classify(last_activity: datetime | None, now: datetime) -> RecencyTier:
    """Bucket one subject by its most recent activity timestamp."""
    if last_activity is None:
        return RecencyTier.DORMANT
    if last_activity >= now - timedelta(days=7):
        return RecencyTier.ACTIVE_WEEK
    if last_activity >= now - timedelta(days=30):
        return RecencyTier.ACTIVE_MONTH
    if last_activity >= now - timedelta(days=90):
        return RecencyTier.ACTIVE_QUARTER
    return RecencyTier.DORMANT


def _tier_filter(tier: RecencyTier, now: datetime) -> pl.Expr:
    bounds = TIER_BOUNDS[tier]
    last = pl.col("last_activity")
    expr = pl.lit(True)
    if bounds.max_days is not None:
        expr = expr & (last >= now - timedelta(days=bounds.max_days))
    if bounds.min_days is not None:
        older = last < now - timedelta(days=bounds.min_days)
        if tier is RecencyTier.DORMANT:
            # Subjects with no live activity still need their rollups cleared
            older = older | last.is_null()
        expr = expr & older
    return expr


def subjects_for_tier(
    last_activity: pl.DataFrame, tier: RecencyTier, now: datetime
) -> list[str]:
    """Select subjects whose most recent activity falls in ``tier``.

    Args:
        last_activity: Frame with ``player_name`` and ``last_activity``
            columns (see ``rollups.sql.load.load_last_activity_df``).
        tier: Tier to select.
        now: Reference time.

    Returns:
        Sorted list of subject names.
    """
    if last_activity.is_empty():
        return []
    selected = last_activity.filter(_tier_filter(tier, now))
    return sorted(selected["player_name"].to_list())


__all__ = [
    "RecencyTier",
    "TIER_BOUNDS",
    "TierBounds",
    "classify",
    "parse_tier",
    "subjects_for_tier",
]
