"""Tests for rollups.core.percentiles."""

import numpy as np
import pytest

from rollups.core.percentiles import PercentileProfile, estimate_percentiles, percentile


class TestEstimatePercentiles:
    def test_empty_sample_is_all_zero(self):
        assert estimate_percentiles([]) == PercentileProfile()

    def test_single_sample_collapses(self):
        profile = estimate_percentiles([7.0])
        assert profile.p25 == profile.p50 == profile.p75 == profile.p90 == 7.0
        assert profile.min == profile.max == 7.0
        assert profile.sample_count == 1

    def test_linear_interpolation(self):
        profile = estimate_percentiles([4, 1, 3, 2])
        assert profile.p25 == pytest.approx(1.75)
        assert profile.p50 == pytest.approx(2.5)
        assert profile.p75 == pytest.approx(3.25)
        assert profile.p90 == pytest.approx(3.7)
        assert (profile.min, profile.max) == (1.0, 4.0)
        assert profile.sample_count == 4

    def test_none_values_are_ignored(self):
        profile = estimate_percentiles([None, 5, None, 5])
        assert profile.sample_count == 2
        assert profile.p50 == 5.0

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_profile_is_monotone(self, seed):
        rng = np.random.default_rng(seed)
        samples = rng.integers(0, 64, size=rng.integers(2, 200)).tolist()
        p = estimate_percentiles(samples)
        assert p.min <= p.p25 <= p.p50 <= p.p75 <= p.p90 <= p.max

    def test_order_of_input_does_not_matter(self):
        values = [9, 3, 27, 1, 14, 6]
        assert estimate_percentiles(values) == estimate_percentiles(sorted(values))

    def test_to_dict(self):
        d = estimate_percentiles([1, 2]).to_dict()
        assert set(d) == {"p25", "p50", "p75", "p90", "min", "max", "sample_count"}


def test_percentile_bounds():
    values = np.array([1.0, 2.0, 3.0])
    assert percentile(values, 0.0) == 1.0
    assert percentile(values, 1.0) == 3.0
    assert percentile(np.array([]), 0.5) == 0.0
