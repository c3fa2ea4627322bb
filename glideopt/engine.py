"""
Ruin-probability engine facade.

Purpose
-------
One entry point for success probabilities, whatever the estimation method.
The engine validates the glide-path and the density selector, clamps the
allocations into the feasible range, and dispatches to the dynamic program
("dp") or the Monte Carlo simulator ("sim").

For simulation it also owns the sample-size policy (base size N scaled by
the per-purpose multipliers of `SimulationConfig`) and the seeding policy:
call k of the engine uses `SeedSequence(seed, spawn_key=(k,))`, from which
every worker spawns its own generator.

Example
-------
>>> engine = RuinProbabilityEngine(run_config)
>>> p = engine.probability(gp)
>>> p_g = engine.probability(gp, DensitySelector.for_gradient(3))
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .config import RunConfig
from .densities import DensitySelector
from .dynamic import DynamicProgram
from .exceptions import ConfigurationError
from .returns import ReturnModel
from .simulation import MonteCarloSimulator
from .utils import clamp_glide_path, ensure_glide_path, resolve_workers

__all__ = ["RuinProbabilityEngine"]

logger = logging.getLogger(__name__)

_SAMPLE_PURPOSES = ("baseline", "climb", "gradient", "hessian", "reset")


class RuinProbabilityEngine:
    """
    Success-probability estimator shared by the gradient, Hessian and
    optimizer layers.

    Parameters
    ----------
    config : RunConfig
        Run configuration (model, horizon, withdrawal rate, estimation).
    workers : int, optional
        Override of `config.workers`; 0 or None uses the core count.
    """

    def __init__(self, config: RunConfig, workers: Optional[int] = None):
        self.config = config
        self.model = ReturnModel(config.params)
        self.horizon = config.horizon
        self.rf0 = config.withdrawal_rate
        self.workers = resolve_workers(workers if workers is not None else config.workers)
        self._calls = 0

        if config.estimation == "dp":
            self.backend = DynamicProgram.from_config(self.model, config.dp, self.workers)
            self.backend.start_bucket(self.rf0)
        elif config.estimation == "sim":
            self.backend = MonteCarloSimulator(self.model, self.workers)
            if config.simulation.sample_size < self.workers:
                raise ConfigurationError(
                    f"Sample size {config.simulation.sample_size} is smaller than "
                    f"the number of workers {self.workers}."
                )
        else:
            raise ConfigurationError(f"Unknown estimation method: {config.estimation}")

    def __repr__(self) -> str:
        return (
            f"RuinProbabilityEngine(estimation={self.config.estimation!r}, "
            f"T={self.horizon}, rf0={self.rf0}, backend={self.backend!r})"
        )

    @property
    def is_stochastic(self) -> bool:
        return self.config.estimation == "sim"

    @property
    def calls(self) -> int:
        """Number of probabilities computed so far."""
        return self._calls

    def sample_size(self, purpose: str = "baseline") -> Optional[int]:
        """
        Number of trials used for one kind of estimate (None for dp).

        `purpose` is one of "baseline", "climb", "gradient", "hessian" or
        "reset"; the reset size scales the climb size.
        """
        if purpose not in _SAMPLE_PURPOSES:
            raise ValueError(f"Unknown sample purpose: {purpose}")
        if not self.is_stochastic:
            return None
        sim = self.config.simulation
        n = sim.sample_size
        if purpose == "reset":
            return sim.reset_multiplier * sim.climb_multiplier * n
        return getattr(sim, f"{purpose}_multiplier") * n

    def feasible(self, glide_path) -> np.ndarray:
        """Validated copy of the glide-path clamped into the feasible range."""
        gp = ensure_glide_path(glide_path, self.horizon)
        return clamp_glide_path(gp, self.model)

    def probability(
        self,
        glide_path,
        selector: Optional[DensitySelector] = None,
        n_trials: Optional[int] = None,
    ) -> float:
        """
        Probability of avoiding ruin for `glide_path` under `selector`.

        Parameters
        ----------
        glide_path : array-like
            T allocations; out-of-range entries are clamped, not rejected.
        selector : DensitySelector, optional
            Special densities to substitute (standard density if None).
        n_trials : int, optional
            Monte Carlo sample size (defaults to the baseline size).
            Ignored by the dynamic program.

        Raises
        ------
        GlidePathError, SelectorError
            On malformed input.
        NumericalError
            On an unrecoverable numerical regime in the dynamic program.
        """
        gp = self.feasible(glide_path)
        selector = selector or DensitySelector.standard()
        selector.validate(self.horizon)

        call = self._calls
        self._calls += 1
        if self.is_stochastic:
            n = n_trials if n_trials is not None else self.sample_size("baseline")
            seq = np.random.SeedSequence(self.config.simulation.seed, spawn_key=(call,))
            return self.backend.success_probability(
                gp, self.rf0, n, selector=selector, seed_sequence=seq
            )
        return self.backend.success_probability(gp, self.rf0, selector=selector)
