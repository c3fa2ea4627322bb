"""
Pytest configuration and fixtures for GlideOpt test suite.

This module provides reusable fixtures for testing all GlideOpt components.
Fixtures follow the principle of "arrange-act-assert" with clear separation.

The default run is deliberately small (T=4, 100 buckets per ruin-factor
unit) so dynamic-program calls take milliseconds. A withdrawal rate of 27%
over four periods gives a success probability well inside (0, 1).
"""

import itertools

import numpy as np
import pytest

from glideopt.config import DPConfig, ModelParameters, RunConfig, SimulationConfig
from glideopt.engine import RuinProbabilityEngine
from glideopt.returns import ReturnModel
from glideopt.utils import clamp_glide_path


# ---------------------------------------------------------------------------
# Model Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def params() -> ModelParameters:
    """Stock/bond moments of the reference scenario (no expenses)."""
    return ModelParameters(
        stock_mean=0.082509,
        stock_variance=0.0402696529,
        bond_mean=0.021409,
        bond_variance=0.0069605649,
        covariance=0.0007344180,
        expense_ratio=0.0,
    )


@pytest.fixture
def model(params) -> ReturnModel:
    """Return model for the reference scenario."""
    return ReturnModel(params)


@pytest.fixture
def glide_path() -> np.ndarray:
    """Four allocations away from the bounds and the degenerate-Hessian point."""
    return np.array([0.60, 0.55, 0.50, 0.45])


# ---------------------------------------------------------------------------
# Run Configuration Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def dp_config(params) -> RunConfig:
    """
    Small dynamic-program run.

    T=4, WR=0.27, precision 100, RFMax 4.0 (400 buckets), 2 workers.
    """
    return RunConfig(
        params=params,
        horizon=4,
        withdrawal_rate=0.27,
        epsilon=1e-4,
        algorithm="nr",
        estimation="dp",
        dp=DPConfig(precision=100, rf_max=4.0),
        workers=2,
    )


@pytest.fixture
def sim_config(params) -> RunConfig:
    """Small simulation run with a fixed seed."""
    return RunConfig(
        params=params,
        horizon=4,
        withdrawal_rate=0.27,
        epsilon=1e-3,
        algorithm="ga",
        estimation="sim",
        simulation=SimulationConfig(
            sample_size=20_000,
            alpha_climb=0.5,
            alpha_gradient=1.0,
            seed=123,
        ),
        workers=2,
    )


@pytest.fixture
def dp_engine(dp_config) -> RuinProbabilityEngine:
    return RuinProbabilityEngine(dp_config)


@pytest.fixture
def sim_engine(sim_config) -> RuinProbabilityEngine:
    return RuinProbabilityEngine(sim_config)


# ---------------------------------------------------------------------------
# Scripted Engine
# ---------------------------------------------------------------------------

class ScriptedEngine:
    """
    Deterministic stand-in for RuinProbabilityEngine.

    Returns the scripted probabilities in order, one per call, so climbing
    logic can be tested without estimating anything.
    """

    is_stochastic = False

    def __init__(self, model: ReturnModel, horizon: int, values):
        self.model = model
        self.horizon = horizon
        self._values = iter(values)
        self.calls = 0
        self.seen = []
        self.trials = []

    def feasible(self, glide_path) -> np.ndarray:
        return clamp_glide_path(glide_path, self.model)

    def sample_size(self, purpose: str = "baseline"):
        return None

    def probability(self, glide_path, selector=None, n_trials=None) -> float:
        self.calls += 1
        self.seen.append(np.array(glide_path, dtype=float))
        self.trials.append(n_trials)
        return next(self._values)


@pytest.fixture
def scripted_engine(model):
    """Factory: scripted_engine(values, horizon=4)."""
    def _make(values, horizon: int = 4) -> ScriptedEngine:
        return ScriptedEngine(model, horizon, values)
    return _make


@pytest.fixture
def always(scripted_engine):
    """Factory: engine whose probability is always `value`."""
    def _make(value: float, horizon: int = 4) -> ScriptedEngine:
        return scripted_engine(itertools.repeat(value), horizon)
    return _make


class StochasticScriptedEngine(ScriptedEngine):
    """
    Scripted engine that reports itself as a simulation.

    Sample sizes follow the default multipliers on a base size of 100:
    baseline 4×, climb 2×, reset 2× the climb size.
    """

    is_stochastic = True
    sizes = {"baseline": 400, "climb": 200, "gradient": 100, "hessian": 100, "reset": 400}

    def sample_size(self, purpose: str = "baseline"):
        return self.sizes[purpose]


@pytest.fixture
def noisy_engine(model):
    """Factory: noisy_engine(values, horizon=4)."""
    def _make(values, horizon: int = 4) -> StochasticScriptedEngine:
        return StochasticScriptedEngine(model, horizon, values)
    return _make
