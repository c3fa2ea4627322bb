"""
Unit tests for engine.py module.

Tests RuinProbabilityEngine construction, input validation, the sample-size
policy and the per-call seeding of simulated estimates.
"""

import numpy as np
import pytest

from glideopt.config import DPConfig, SimulationConfig
from glideopt.densities import DensitySelector
from glideopt.engine import RuinProbabilityEngine
from glideopt.exceptions import ConfigurationError, GlidePathError, SelectorError


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    """Tests for engine setup."""

    def test_dp_engine(self, dp_engine):
        assert not dp_engine.is_stochastic
        assert dp_engine.horizon == 4
        assert dp_engine.rf0 == 0.27
        assert dp_engine.workers == 2
        assert "dp" in repr(dp_engine)

    def test_sim_engine(self, sim_engine):
        assert sim_engine.is_stochastic
        assert "sim" in repr(sim_engine)

    def test_worker_override(self, dp_config):
        engine = RuinProbabilityEngine(dp_config, workers=3)
        assert engine.workers == 3

    def test_workers_floor_at_two(self, dp_config):
        engine = RuinProbabilityEngine(dp_config.model_copy(update={"workers": 1}))
        assert engine.workers == 2

    def test_more_workers_than_buckets(self, dp_config):
        config = dp_config.model_copy(update={
            "withdrawal_rate": 1.0,
            "dp": DPConfig(precision=1, rf_max=2.0),
        })
        with pytest.raises(ConfigurationError, match="More workers"):
            RuinProbabilityEngine(config, workers=4)

    def test_sample_smaller_than_workers(self, sim_config):
        config = sim_config.model_copy(update={"simulation": SimulationConfig(sample_size=3)})
        with pytest.raises(ConfigurationError, match="smaller than"):
            RuinProbabilityEngine(config, workers=4)


# ---------------------------------------------------------------------------
# Sample sizes
# ---------------------------------------------------------------------------

class TestSampleSize:
    """Tests for the simulation sample-size policy."""

    def test_dp_has_no_sample_size(self, dp_engine):
        assert dp_engine.sample_size("baseline") is None
        assert dp_engine.sample_size("hessian") is None

    @pytest.mark.parametrize("purpose,expected", [
        ("baseline", 80_000),
        ("climb", 40_000),
        ("gradient", 20_000),
        ("hessian", 20_000),
        ("reset", 80_000),
    ])
    def test_multipliers(self, sim_engine, purpose, expected):
        assert sim_engine.sample_size(purpose) == expected

    def test_unknown_purpose(self, sim_engine):
        with pytest.raises(ValueError, match="Unknown sample purpose"):
            sim_engine.sample_size("warmup")


# ---------------------------------------------------------------------------
# Probability
# ---------------------------------------------------------------------------

class TestProbability:
    """Tests for RuinProbabilityEngine.probability."""

    def test_dp_probability(self, dp_engine, glide_path):
        p = dp_engine.probability(glide_path)
        assert 0.0 < p < 1.0
        assert dp_engine.calls == 1

    def test_dp_deterministic(self, dp_engine, glide_path):
        assert dp_engine.probability(glide_path) == dp_engine.probability(glide_path)

    def test_wrong_length(self, dp_engine):
        with pytest.raises(GlidePathError, match="needs 4 allocations"):
            dp_engine.probability(np.array([0.5, 0.5, 0.5]))

    def test_non_finite(self, dp_engine):
        with pytest.raises(GlidePathError, match="non-finite"):
            dp_engine.probability(np.array([0.5, np.nan, 0.5, 0.5]))

    def test_selector_beyond_horizon(self, dp_engine, glide_path):
        with pytest.raises(SelectorError):
            dp_engine.probability(glide_path, DensitySelector.for_gradient(4))
        assert dp_engine.calls == 0

    def test_feasible_clamps(self, dp_engine):
        gp = dp_engine.feasible([-1.0, 0.5, 0.7, 3.0])
        assert gp[0] == pytest.approx(dp_engine.model.lower_bound)
        assert gp[-1] == 1.0

    def test_feasible_returns_copy(self, dp_engine, glide_path):
        gp = dp_engine.feasible(glide_path)
        gp[0] = 0.99
        assert glide_path[0] == 0.60

    def test_sim_agrees_with_dp(self, dp_engine, sim_engine, glide_path):
        p_dp = dp_engine.probability(glide_path)
        p_sim = sim_engine.probability(glide_path)
        n = sim_engine.sample_size("baseline")
        se = np.sqrt(p_dp * (1 - p_dp) / n)
        assert abs(p_sim - p_dp) < 5 * se + 1e-2

    def test_sim_seeding_is_per_call(self, sim_config, glide_path):
        """Two engines with the same seed produce the same sequence of estimates."""
        a = RuinProbabilityEngine(sim_config)
        b = RuinProbabilityEngine(sim_config)
        first = [a.probability(glide_path, n_trials=4_000) for _ in range(3)]
        second = [b.probability(glide_path, n_trials=4_000) for _ in range(3)]
        assert first == second
        assert a.calls == 3
