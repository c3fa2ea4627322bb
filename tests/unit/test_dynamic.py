"""
Unit tests for dynamic.py module.

Tests the discretized backward recursion: bucket mapping, curve
invariants (monotone, capped at one, last bucket ruined), closed-form
one-period results and the failure modes.
"""

import numpy as np
import pytest
from scipy import stats

from glideopt.densities import DensitySelector
from glideopt.dynamic import DynamicProgram, RuinCurve
from glideopt.exceptions import (
    ConfigurationError,
    DiscretizationError,
    MonotonicityError,
    SelectorError,
)


@pytest.fixture
def dp(model) -> DynamicProgram:
    return DynamicProgram(model, precision=100, rf_max=4.0, workers=2)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    """Tests for DynamicProgram setup."""

    def test_bucket_count(self, dp):
        assert dp.n_buckets == 400
        assert "B=400" in repr(dp)

    def test_from_config(self, model, dp_config):
        dp = DynamicProgram.from_config(model, dp_config.dp, workers=3)
        assert dp.n_buckets == dp_config.dp.n_buckets
        assert dp.workers == 3

    def test_more_workers_than_buckets(self, model):
        with pytest.raises(ConfigurationError, match="More workers"):
            DynamicProgram(model, precision=1, rf_max=2.0, workers=4)

    def test_no_buckets(self, model):
        with pytest.raises(ConfigurationError, match="no buckets"):
            DynamicProgram(model, precision=1, rf_max=0.5, workers=1)

    @pytest.mark.parametrize("rf0,bucket", [(0.27, 27), (0.054, 5), (0.056, 6), (4.0, 400)])
    def test_start_bucket_rounds_to_nearest(self, dp, rf0, bucket):
        assert dp.start_bucket(rf0) == bucket

    @pytest.mark.parametrize("rf0", [0.001, 4.5])
    def test_start_bucket_out_of_range(self, dp, rf0):
        with pytest.raises(ConfigurationError, match="outside"):
            dp.start_bucket(rf0)


# ---------------------------------------------------------------------------
# Curves
# ---------------------------------------------------------------------------

class TestCurves:
    """Invariants of the per time-point ruin curves."""

    def test_terminal_curve(self):
        curve = RuinCurve.terminal(5, 10)
        assert curve.timepoint == 5
        assert np.all(curve.probabilities == 0.0)
        np.testing.assert_array_equal(curve.unique_buckets, [1, 10])
        assert curve.saturation_bucket == 11

    def test_yields_one_curve_per_timepoint(self, dp, glide_path):
        curves = list(dp.curves(glide_path))
        assert [c.timepoint for c in curves] == [3, 2, 1]

    def test_curve_invariants(self, dp, glide_path):
        for curve in dp.curves(glide_path):
            v = curve.probabilities
            assert v.shape == (400,)
            assert np.all(np.diff(v) >= -1e-15)
            assert np.all(v <= 1.0 + 2e-15)
            assert np.all(v >= 0.0)
            assert v[-1] == 1.0
            assert curve.unique_buckets[0] == 1
            assert curve.unique_buckets[-1] == 400
            assert 1 <= curve.saturation_bucket <= 401
            assert np.all(v[curve.saturation_bucket - 1:] == 1.0)
            assert "RuinCurve" in curve.summary()

    def test_last_period_is_normal_cdf(self, dp, model, glide_path):
        """With nothing beyond the horizon, V_{T-1}(b) = Φ(b/precision)."""
        curve = next(dp.curves(glide_path))
        a = glide_path[-1]
        rf = np.arange(1, 401) / 100.0
        expected = stats.norm.cdf(rf, loc=model.mean(a), scale=np.sqrt(model.variance(a)))
        below = rf < 1.6
        np.testing.assert_allclose(curve.probabilities[below], expected[below], rtol=1e-9, atol=1e-15)

    def test_unique_buckets_close_runs(self):
        v = np.array([0.0, 0.0, 0.1, 0.1, 0.1, 0.4, 1.0, 1.0])
        unique = DynamicProgram._unique_buckets(v)
        np.testing.assert_array_equal(unique, [1, 2, 5, 6, 8])

    def test_unique_buckets_merge_rounding_noise(self):
        """Neighbours one ulp apart belong to the same run."""
        v = np.array([0.0, 0.1, np.nextafter(0.1, 1.0), 0.3, 1.0])
        unique = DynamicProgram._unique_buckets(v)
        np.testing.assert_array_equal(unique, [1, 3, 4, 5])

    def test_selector_checked(self, dp, glide_path):
        with pytest.raises(SelectorError):
            list(dp.curves(glide_path, DensitySelector.for_gradient(4)))


# ---------------------------------------------------------------------------
# Success probability
# ---------------------------------------------------------------------------

class TestSuccessProbability:
    """Tests for DynamicProgram.success_probability."""

    def test_single_period_closed_form(self, dp, model):
        """T=1: success = 1 − Φ(rf0) at the start bucket's ruin factor."""
        a = 0.6
        p = dp.success_probability(np.array([a]), rf0=0.9)
        expected = 1.0 - stats.norm.cdf(0.9, loc=model.mean(a), scale=np.sqrt(model.variance(a)))
        assert p == pytest.approx(expected, rel=1e-12)

    def test_in_unit_interval(self, dp, glide_path):
        p = dp.success_probability(glide_path, rf0=0.27)
        assert 0.0 < p < 1.0

    def test_higher_withdrawal_rate_is_worse(self, dp, glide_path):
        low = dp.success_probability(glide_path, rf0=0.25)
        high = dp.success_probability(glide_path, rf0=0.30)
        assert high < low

    def test_longer_horizon_is_worse(self, dp):
        short = dp.success_probability(np.full(3, 0.5), rf0=0.27)
        long = dp.success_probability(np.full(4, 0.5), rf0=0.27)
        assert long < short

    def test_worker_count_does_not_change_result(self, model, glide_path):
        two = DynamicProgram(model, 100, 4.0, workers=2).success_probability(glide_path, 0.27)
        five = DynamicProgram(model, 100, 4.0, workers=5).success_probability(glide_path, 0.27)
        assert two == pytest.approx(five, abs=1e-14)

    def test_allocations_are_clamped(self, dp, model, glide_path):
        """Out-of-range allocations evaluate as their clamped values."""
        raw = glide_path.copy()
        raw[0] = -1.0
        clamped = glide_path.copy()
        clamped[0] = model.lower_bound
        assert dp.success_probability(raw, 0.27) == dp.success_probability(clamped, 0.27)

    @pytest.mark.parametrize("selector", [
        DensitySelector.for_gradient(1),
        DensitySelector.cross(0, 2),
        DensitySelector.h1(3),
        DensitySelector.h2(0),
    ])
    def test_special_densities_give_probabilities(self, dp, glide_path, selector):
        p = dp.success_probability(glide_path, 0.27, selector)
        assert 0.0 <= p <= 1.0


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------

class TestFailures:
    """Numerical diagnostics of the recursion."""

    def test_rf_max_too_small(self, model, glide_path):
        dp = DynamicProgram(model, precision=100, rf_max=0.5, workers=2)
        with pytest.raises(DiscretizationError, match="Increase RFMax") as exc_info:
            dp.success_probability(glide_path, rf0=0.27)
        assert exc_info.value.timepoint == 3
        assert exc_info.value.value < 1.0

    def test_decreasing_curve(self, dp):
        v = np.array([0.1, 0.3, 0.2, 1.0])
        with pytest.raises(MonotonicityError) as exc_info:
            dp._check_curve(v, 5)
        err = exc_info.value
        assert err.bucket == 3
        assert err.previous == pytest.approx(0.3)
        assert err.value == pytest.approx(0.2)
        assert err.timepoint == 5

    def test_value_above_one(self, dp):
        v = np.array([0.1, 0.3, 1.0 + 1e-12, 1.0 + 1e-12])
        with pytest.raises(MonotonicityError, match="> 1"):
            dp._check_curve(v, 2)

    def test_tiny_rounding_drop_tolerated(self, dp):
        v = np.array([0.1, 0.5, 0.5 - 5e-16, 1.0])
        dp._check_curve(v, 1)
