"""
Unit tests for config.py module.

Tests Pydantic models for validation, defaults, immutability and
environment-driven application settings.
"""

import pytest
from pydantic import ValidationError

from glideopt.config import (
    AppSettings,
    DPConfig,
    ModelParameters,
    RunConfig,
    SimulationConfig,
)


# ---------------------------------------------------------------------------
# ModelParameters
# ---------------------------------------------------------------------------

class TestModelParameters:
    """Tests for ModelParameters."""

    def test_valid(self, params):
        assert params.stock_variance > 0
        assert params.expense_ratio == 0.0

    def test_default_expense_ratio(self):
        p = ModelParameters(
            stock_mean=0.08, stock_variance=0.04,
            bond_mean=0.02, bond_variance=0.007, covariance=0.0007,
        )
        assert p.expense_ratio == 0.0

    def test_negative_variance(self):
        with pytest.raises(ValidationError):
            ModelParameters(
                stock_mean=0.08, stock_variance=-0.04,
                bond_mean=0.02, bond_variance=0.007, covariance=0.0,
            )

    def test_expense_ratio_range(self):
        with pytest.raises(ValidationError):
            ModelParameters(
                stock_mean=0.08, stock_variance=0.04,
                bond_mean=0.02, bond_variance=0.007, covariance=0.0,
                expense_ratio=1.0,
            )

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            ModelParameters(
                stock_mean=0.08, stock_variance=0.04,
                bond_mean=0.02, bond_variance=0.007, covariance=0.0,
                inflation=0.02,
            )

    def test_frozen(self, params):
        with pytest.raises(ValidationError):
            params.stock_mean = 0.1


# ---------------------------------------------------------------------------
# Estimation configs
# ---------------------------------------------------------------------------

class TestDPConfig:
    """Tests for DPConfig."""

    def test_defaults(self):
        cfg = DPConfig()
        assert cfg.precision == 10_000
        assert cfg.rf_max == 2.75
        assert cfg.n_buckets == 27_500

    def test_n_buckets(self):
        assert DPConfig(precision=500, rf_max=2.75).n_buckets == 1375

    def test_invalid_precision(self):
        with pytest.raises(ValidationError):
            DPConfig(precision=0)


class TestSimulationConfig:
    """Tests for SimulationConfig."""

    def test_defaults(self):
        cfg = SimulationConfig()
        assert cfg.sample_size == 10 ** 7
        assert cfg.alpha_climb == 0.5
        assert cfg.alpha_gradient == 1.0
        assert cfg.baseline_multiplier == 4
        assert cfg.seed is None

    @pytest.mark.parametrize("alpha", [0.0, 1.5])
    def test_alpha_range(self, alpha):
        with pytest.raises(ValidationError):
            SimulationConfig(alpha_climb=alpha)


# ---------------------------------------------------------------------------
# RunConfig
# ---------------------------------------------------------------------------

class TestRunConfig:
    """Tests for RunConfig."""

    def test_valid(self, dp_config):
        assert dp_config.horizon == 4
        assert dp_config.dp.n_buckets == 400
        assert dp_config.max_iterations is None
        assert dp_config.initial_climb_steps == 50

    def test_choices_normalized(self, params):
        run = RunConfig(
            params=params, horizon=3, withdrawal_rate=0.05, epsilon=1e-4,
            algorithm=" GA ", estimation="SIM",
        )
        assert run.algorithm == "ga"
        assert run.estimation == "sim"

    def test_unknown_algorithm(self, params):
        with pytest.raises(ValidationError):
            RunConfig(params=params, horizon=3, withdrawal_rate=0.05, epsilon=1e-4, algorithm="bfgs")

    def test_start_bucket_outside_range(self, params):
        """A withdrawal rate of 0.05 at precision 1 rounds to bucket 0."""
        with pytest.raises(ValidationError, match="Increase rf_max or precision"):
            RunConfig(
                params=params, horizon=30, withdrawal_rate=0.05, epsilon=1e-5,
                estimation="dp", dp=DPConfig(precision=1, rf_max=1.0),
            )

    def test_start_bucket_not_checked_for_simulation(self, params):
        run = RunConfig(
            params=params, horizon=30, withdrawal_rate=0.05, epsilon=1e-5,
            estimation="sim", dp=DPConfig(precision=1, rf_max=1.0),
        )
        assert run.estimation == "sim"

    def test_horizon_positive(self, params):
        with pytest.raises(ValidationError):
            RunConfig(params=params, horizon=0, withdrawal_rate=0.05, epsilon=1e-4)

    def test_json_roundtrip(self, dp_config):
        restored = RunConfig.model_validate_json(dp_config.model_dump_json())
        assert restored == dp_config


# ---------------------------------------------------------------------------
# AppSettings
# ---------------------------------------------------------------------------

class TestAppSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for var in ("GLIDEOPT_LOG_LEVEL", "GLIDEOPT_WORKERS", "GLIDEOPT_CONFIG_DIR"):
            monkeypatch.delenv(var, raising=False)
        settings = AppSettings()
        assert settings.log_level == "INFO"
        assert settings.workers == 0
        assert settings.log_file is None

    def test_environment_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GLIDEOPT_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("GLIDEOPT_WORKERS", "6")
        monkeypatch.setenv("GLIDEOPT_CONFIG_DIR", str(tmp_path))
        settings = AppSettings()
        assert settings.log_level == "DEBUG"
        assert settings.workers == 6
        assert settings.config_dir == tmp_path
