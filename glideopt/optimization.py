"""
Glide-path optimization module for GlideOpt.

Purpose
-------
Drives a glide-path to a stationary point of the success probability
using the gradient and Hessian obtained by density substitution.

Algorithms
----------
Gradient ascent ("ga"), `Climber`:

    a ← clamp(a + s·∇P)        repeated while the probability improves

with the step s = (5^¼)^i chosen from the order of magnitude of the
largest effective gradient component (10^−(i+1) ≤ max|∇P| < 10^−i). With
simulated probabilities a move is kept while it is not significantly worse
than the best probability seen (one-sided z-test at `alpha_climb`). When the
first move fails, larger steps are tried up to five times, then ever smaller
ones; running out of steps raises `ClimbStalledError`.

Newton-Raphson ("nr"):

    H·Δ = −∇P,   a ← clamp(a + Δ)

without a line search; a lower probability afterwards is reported, not
rejected.

Driver (`GlidePathOptimizer.run`):
1. Probability and gradient at the initial glide-path
2. If not converged, a bounded climb (`initial_climb_steps`) to leave
   degenerate boundary regions
3. Newton or climbing iterations, each followed by a gradient rebuild,
   until max effective |∇P| ≤ ε
4. Final Hessian and its eigenvalue extremes as an optimality diagnostic

Key Components
--------------
- ClimbResult / Climber: gradient-ascent line search
- OptimizationResult: final glide-path, probability, derivatives, history
- GlidePathOptimizer: the driver
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import linalg, stats

from .config import RunConfig
from .constants import (
    CLIMB_REPORT_INTERVAL,
    MAX_STEP_INDEX,
    MAX_STEP_TRIES_UP,
    STEP_BASE,
)
from .engine import RuinProbabilityEngine
from .exceptions import ClimbStalledError, ConvergenceError, OptimizationError
from .gradient import GradientBuilder, GradientResult
from .hessian import HessianBuilder, HessianResult
from .utils import clamp_glide_path, format_glide_path, glide_path_frame

__all__ = [
    "ClimbResult",
    "Climber",
    "OptimizationResult",
    "GlidePathOptimizer",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Gradient ascent
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClimbResult:
    """
    Outcome of one climb.

    Attributes
    ----------
    glide_path : np.ndarray
        Glide-path after the last accepted step.
    probability : float
        Its probability (re-estimated with the reset sample for simulation).
    steps : int
        Number of accepted steps.
    step_size : float
        Step multiplier in use when climbing stopped.
    hit_limit : bool
        True if climbing stopped because the step limit was reached.
    """
    glide_path: np.ndarray
    probability: float
    steps: int
    step_size: float
    hit_limit: bool = False

    def summary(self) -> str:
        return (
            f"ClimbResult(P={self.probability:.12f}, steps={self.steps}, "
            f"step_size={self.step_size:.6g}, hit_limit={self.hit_limit})"
        )


class Climber:
    """
    Gradient-ascent line search along a fixed gradient.

    Parameters
    ----------
    engine : RuinProbabilityEngine
        Shared probability engine.
    alpha : float
        Significance level of the non-inferiority test (simulation only).

    Examples
    --------
    >>> climber = Climber(engine)
    >>> out = climber.climb(gp, grad.gradient, grad.baseline,
    ...                     max_gradient=grad.max_effective)
    >>> out.probability >= grad.baseline
    True
    """

    def __init__(self, engine: RuinProbabilityEngine, alpha: float = 0.5):
        self.engine = engine
        self.alpha = alpha

    @staticmethod
    def initial_step(max_gradient: float) -> Tuple[int, float]:
        """Return (index, step) matching the magnitude of the gradient."""
        for i in range(1, MAX_STEP_INDEX + 1):
            if 10.0 ** -(i + 1) <= max_gradient < 10.0 ** -i:
                return i, STEP_BASE ** i
        return 0, 1.0

    def _improves(self, new: float, best: float, n_new: Optional[int], n_best: Optional[int]) -> bool:
        if not self.engine.is_stochastic:
            return new > best
        var = best * (1.0 - best) / n_best + new * (1.0 - new) / n_new
        if var <= 0.0:
            return new >= best
        z = (new - best) / np.sqrt(var)
        return float(stats.norm.cdf(z)) > self.alpha

    def climb(
        self,
        glide_path,
        gradient: np.ndarray,
        probability: float,
        *,
        max_gradient: float,
        n_trials: Optional[int] = None,
        probability_trials: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> ClimbResult:
        """
        Climb from `glide_path` along `gradient`.

        Parameters
        ----------
        glide_path : array-like
            Starting glide-path.
        gradient : np.ndarray
            Search direction (kept fixed during the climb).
        probability : float
            Probability of the starting glide-path.
        max_gradient : float
            Largest effective gradient component; picks the first step.
        n_trials : int, optional
            Sample size of every candidate (simulation only).
        probability_trials : int, optional
            Sample size behind `probability` (simulation only).
        limit : int, optional
            Stop after this many accepted steps, keeping the last one.

        Raises
        ------
        ClimbStalledError
            If no step size improves on the starting probability.
        """
        engine = self.engine
        model = engine.model
        gp = engine.feasible(glide_path)
        grad = np.asarray(gradient, dtype=float)
        if engine.is_stochastic:
            n_trials = n_trials or engine.sample_size("climb")
            probability_trials = probability_trials or engine.sample_size("baseline")

        index, step = self.initial_step(max_gradient)
        logger.info("Climbing: max gradient %.3e, step %.6g", max_gradient, step)
        orig_index: Optional[int] = None
        tries_up = 0

        best, best_n = probability, probability_trials
        current = probability
        steps = 0
        hit_limit = False

        while True:
            candidate = clamp_glide_path(gp + step * grad, model)
            new = engine.probability(candidate, n_trials=n_trials)

            if self._improves(new, best, n_trials, best_n):
                gp = candidate
                current = new
                if new > best:
                    best, best_n = new, n_trials
                steps += 1
                if steps % CLIMB_REPORT_INTERVAL == 0:
                    logger.info("Climb step %d, P=%.12f\n%s", steps, current, format_glide_path(gp))
                if limit is not None and steps >= limit:
                    hit_limit = True
                    break
                continue

            if steps > 0:
                break

            # First move failed: walk the step schedule
            if orig_index is None:
                orig_index = index
            if index == 0:
                raise ClimbStalledError(
                    "Gradient ascent cannot improve the success probability. Either the "
                    "glide-path is in a boundary region where the problem is not well "
                    "defined, or the estimation precision is not adequate for epsilon.",
                    glide_path=gp,
                    probability=probability,
                )
            if tries_up < MAX_STEP_TRIES_UP:
                index += 1
                tries_up += 1
                step = STEP_BASE ** index
            elif index == 1:
                index = 0
                step /= 2.0
            else:
                index = orig_index - 1 if index == orig_index + MAX_STEP_TRIES_UP else index - 1
                step = STEP_BASE ** index
            logger.info("Step size changed to %.6g", step)

        if engine.is_stochastic and steps > 0:
            reset_n = engine.sample_size("reset")
            current = engine.probability(gp, n_trials=reset_n)
            logger.info("Probability reset with %d trials: %.12f", reset_n, current)

        logger.info("Climb finished after %d step(s), P=%.12f", steps, current)
        return ClimbResult(
            glide_path=gp,
            probability=float(current),
            steps=steps,
            step_size=float(step),
            hit_limit=hit_limit,
        )


# ---------------------------------------------------------------------------
# Optimization Result Container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OptimizationResult:
    """
    Container for glide-path optimization output.

    Attributes
    ----------
    glide_path : np.ndarray, shape (T,)
        Final glide-path.
    probability : float
        Success probability of the final glide-path.
    gradient : GradientResult
        Gradient at the final glide-path.
    hessian : HessianResult, optional
        Final Hessian (None when the final diagnostic was skipped).
    iterations : int
        Outer iterations after the initial climb.
    converged : bool
        Whether max effective |∇P| ≤ epsilon.
    algorithm, estimation : str
        Run choices ("ga"/"nr", "dp"/"sim").
    history : pd.DataFrame
        One row per iteration (0 = start, after the initial climb if any).
    solve_time : float
        Wall-clock time in seconds.
    """
    glide_path: np.ndarray
    probability: float
    gradient: GradientResult
    hessian: Optional[HessianResult]
    iterations: int
    converged: bool
    algorithm: str
    estimation: str
    history: pd.DataFrame = field(repr=False)
    solve_time: float = 0.0

    @property
    def T(self) -> int:
        return int(self.glide_path.shape[0])

    @property
    def max_effective_gradient(self) -> float:
        return self.gradient.max_effective

    def summary(self) -> str:
        """Human-readable optimization summary."""
        status = "✓ Converged" if self.converged else "✗ Not converged"
        lines = [
            "OptimizationResult(",
            f"  Status: {status}",
            f"  Algorithm: {self.algorithm} / {self.estimation}",
            f"  Horizon: T={self.T}",
            f"  Success probability: {self.probability:.12f}",
            f"  Max effective gradient: {self.max_effective_gradient:.3e}",
            f"  Iterations: {self.iterations}",
            f"  Solve time: {self.solve_time:.3f}s",
        ]
        if self.hessian is not None:
            lines.append(
                f"  Eigenvalues: min={self.hessian.min_eigenvalue:.6e}, "
                f"max={self.hessian.max_eigenvalue:.6e} ({self.hessian.status()})"
            )
        lines.append(")")
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        """Per time-point allocation, gradient and effective magnitude."""
        df = glide_path_frame(self.glide_path, self.gradient.gradient)
        df["effective"] = self.gradient.effective
        return df


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

class GlidePathOptimizer:
    """
    Gradient-ascent / Newton-Raphson glide-path optimizer.

    Parameters
    ----------
    config : RunConfig
        Run configuration.
    engine : RuinProbabilityEngine, optional
        Engine to use; built from `config` when omitted.
    workers : int, optional
        Worker override when the engine is built here.
    final_hessian : bool
        Build the final Hessian diagnostic.

    Examples
    --------
    >>> optimizer = GlidePathOptimizer(run_config)
    >>> result = optimizer.run(initial_glide_path)
    >>> print(result.summary())
    """

    def __init__(
        self,
        config: RunConfig,
        engine: Optional[RuinProbabilityEngine] = None,
        workers: Optional[int] = None,
        final_hessian: bool = True,
    ):
        self.config = config
        self.engine = engine or RuinProbabilityEngine(config, workers=workers)
        self.gradients = GradientBuilder(self.engine)
        self.hessians = HessianBuilder(self.engine)
        self.climber = Climber(self.engine, alpha=config.simulation.alpha_climb)
        self.final_hessian = final_hessian

    def __repr__(self) -> str:
        return (
            f"GlidePathOptimizer(algorithm={self.config.algorithm!r}, "
            f"epsilon={self.config.epsilon:g}, engine={self.engine!r})"
        )

    # -------------------- Steps --------------------

    def _gradient(self, gp: np.ndarray, p: float, p_trials: Optional[int]) -> GradientResult:
        return self.gradients.build(
            gp,
            p,
            n_trials=self.engine.sample_size("gradient"),
            baseline_trials=p_trials,
            alpha=self.config.simulation.alpha_gradient,
        )

    def newton_step(self, gp: np.ndarray, grad: GradientResult) -> Tuple[np.ndarray, HessianResult]:
        """Solve H·Δ = −∇P by QR and return the clamped new glide-path."""
        hess = self.hessians.build(gp, grad)
        q, r = np.linalg.qr(hess.matrix)
        try:
            delta = linalg.solve_triangular(r, -q.T @ grad.gradient)
        except np.linalg.LinAlgError as exc:
            raise OptimizationError(f"Newton step failed: singular Hessian ({exc})") from exc
        if not np.all(np.isfinite(delta)):
            raise OptimizationError("Newton step failed: non-finite step from singular Hessian")
        new_gp = clamp_glide_path(gp + delta, self.engine.model)
        return new_gp, hess

    # -------------------- Run --------------------

    def run(self, glide_path) -> OptimizationResult:
        """
        Optimize from `glide_path` until the convergence threshold is met.

        Raises
        ------
        ClimbStalledError
            If gradient ascent cannot improve.
        ConvergenceError
            If `max_iterations` is exceeded.
        NumericalError
            On an unrecoverable numerical regime in the engine.
        """
        cfg = self.config
        engine = self.engine
        start = time.perf_counter()
        eps = cfg.epsilon

        gp = engine.feasible(glide_path)
        p_trials = engine.sample_size("baseline")
        p = engine.probability(gp, n_trials=p_trials)
        logger.info("Initial success probability = %.12f", p)
        grad = self._gradient(gp, p, p_trials)

        history: List[Dict[str, Any]] = []

        if not grad.converged(eps):
            out = self.climber.climb(
                gp, grad.gradient, p,
                max_gradient=grad.max_effective,
                n_trials=engine.sample_size("climb"),
                probability_trials=p_trials,
                limit=cfg.initial_climb_steps,
            )
            if out.steps > 0:
                gp, p = out.glide_path, out.probability
                p_trials = engine.sample_size("reset")
                grad = self._gradient(gp, p, p_trials)

        history.append(self._record(0, "start", p, grad))

        iteration = 0
        while not grad.converged(eps):
            iteration += 1
            if cfg.max_iterations is not None and iteration > cfg.max_iterations:
                raise ConvergenceError(
                    f"No convergence after {cfg.max_iterations} iterations "
                    f"(max effective gradient {grad.max_effective:.3e} > {eps:g})."
                )

            hess = None
            regression = False
            if cfg.algorithm == "nr":
                new_gp, hess = self.newton_step(gp, grad)
                p_trials = engine.sample_size("baseline")
                new_p = engine.probability(new_gp, n_trials=p_trials)
                if new_p < p:
                    regression = True
                    msg = (
                        f"Newton step lowered the success probability "
                        f"from {p:.12f} to {new_p:.12f}"
                    )
                    logger.warning(msg)
                    warnings.warn(msg, RuntimeWarning)
                gp, p = new_gp, new_p
            else:
                out = self.climber.climb(
                    gp, grad.gradient, p,
                    max_gradient=grad.max_effective,
                    n_trials=engine.sample_size("climb"),
                    probability_trials=p_trials,
                )
                gp, p = out.glide_path, out.probability
                p_trials = engine.sample_size("reset")

            logger.info("Iteration %d: P=%.12f", iteration, p)
            grad = self._gradient(gp, p, p_trials)
            history.append(self._record(iteration, cfg.algorithm, p, grad, hess, regression))

        hessian = None
        if self.final_hessian:
            hessian = self.hessians.build(gp, grad)
            logger.info(
                "Max eigenvalue %.6e, min eigenvalue %.6e: %s",
                hessian.max_eigenvalue, hessian.min_eigenvalue, hessian.status(),
            )

        result = OptimizationResult(
            glide_path=gp,
            probability=float(p),
            gradient=grad,
            hessian=hessian,
            iterations=iteration,
            converged=grad.converged(eps),
            algorithm=cfg.algorithm,
            estimation=cfg.estimation,
            history=pd.DataFrame(history).set_index("iteration"),
            solve_time=time.perf_counter() - start,
        )
        logger.info("Success probability for this glide-path = %.12f", result.probability)
        return result

    @staticmethod
    def _record(
        iteration: int,
        step: str,
        p: float,
        grad: GradientResult,
        hess: Optional[HessianResult] = None,
        regression: bool = False,
    ) -> Dict[str, Any]:
        return {
            "iteration": iteration,
            "step": step,
            "probability": p,
            "max_effective_gradient": grad.max_effective,
            "min_eigenvalue": hess.min_eigenvalue if hess is not None else np.nan,
            "max_eigenvalue": hess.max_eigenvalue if hess is not None else np.nan,
            "regression": regression,
        }
