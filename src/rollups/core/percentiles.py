"""Empirical percentile profiles for hourly distribution rollups."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

import numpy as np


@dataclass(frozen=True)
class PercentileProfile:
    """Quantile summary of one (partition, day-of-week, hour) sample set."""

    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    min: float = 0.0
    max: float = 0.0
    sample_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def percentile(sorted_values: np.ndarray, q: float) -> float:
    """Linear interpolation between order statistics.

    The fractional index is ``q * (n - 1)``; the result blends the floor and
    ceiling order statistics by the fractional part.

    Args:
        sorted_values: Ascending samples.
        q: Quantile in [0, 1].

    Returns:
        The interpolated quantile, or 0.0 for an empty sample.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    if n == 1:
        return float(sorted_values[0])
    index = q * (n - 1)
    lower = int(np.floor(index))
    upper = int(np.ceil(index))
    if upper >= n:
        return float(sorted_values[-1])
    weight = index - lower
    return float(
        sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight
    )


def estimate_percentiles(samples: Iterable[float]) -> PercentileProfile:
    """Compute the p25/p50/p75/p90 profile of an unordered sample.

    Args:
        samples: Numeric observations in any order. ``None`` entries are
            ignored.

    Returns:
        PercentileProfile; all zeros when there are no samples.
    """
    values = np.sort(
        np.asarray([float(v) for v in samples if v is not None], dtype=float)
    )
    if values.size == 0:
        return PercentileProfile()
    return PercentileProfile(
        p25=percentile(values, 0.25),
        p50=percentile(values, 0.5),
        p75=percentile(values, 0.75),
        p90=percentile(values, 0.9),
        min=float(values[0]),
        max=float(values[-1]),
        sample_count=int(values.size),
    )


__all__ = ["PercentileProfile", "estimate_percentiles", "percentile"]
