"""
Gradient of the success probability with respect to the glide-path.

Mathematical Framework
----------------------
Substituting the gradient density g for f at time-point t turns a
derivative into a probability difference:

    ∂P/∂a_t = k_t · (P_g(t) − P),      k_t = v'/(2v) + m'²/(2v')

evaluated at a_t. The convergence statistic is the *effective* magnitude of
each component: the raw step a_t + ∂P/∂a_t is cut at the feasibility
bounds, so

    eff_t = 1 − a_t              if a_t + ∂P/∂a_t > 1
          = a_t − lower_bound    if a_t + ∂P/∂a_t < lower_bound
          = |∂P/∂a_t|            otherwise

Noise filtering
---------------
With simulated probabilities, each component is tested against zero with a
two-sided z-test on the pooled proportion of the perturbed (n trials) and
baseline (n₀ trials) estimates:

    p̄  = (n·(P + ∂/k) + n₀·P) / (n + n₀)
    z  = (∂/k) / √(p̄(1 − p̄)(1/n + 1/n₀))

Components whose p-value exceeds α are set to zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import stats

from .densities import DensitySelector
from .engine import RuinProbabilityEngine

__all__ = ["GradientBuilder", "GradientResult", "effective_magnitude"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradientResult:
    """
    Output of one gradient build.

    Attributes
    ----------
    gradient : np.ndarray
        Gradient after the noise filter (equal to `raw` when not applied).
    raw : np.ndarray
        Unfiltered components k_t·(P_g(t) − P).
    scaling : np.ndarray
        The constants k_t.
    special_probabilities : np.ndarray
        P_g(t) for every time-point.
    baseline : float
        Probability P under the standard density.
    effective : np.ndarray
        Effective magnitude per component.
    p_values : np.ndarray, optional
        z-test p-values (None when the test is not applied).
    """
    gradient: np.ndarray
    raw: np.ndarray
    scaling: np.ndarray
    special_probabilities: np.ndarray
    baseline: float
    effective: np.ndarray
    p_values: Optional[np.ndarray] = None

    @property
    def max_effective(self) -> float:
        """Convergence statistic: largest effective magnitude."""
        return float(np.max(self.effective)) if self.effective.size else 0.0

    @property
    def zeroed(self) -> np.ndarray:
        """Mask of components set to zero by the noise filter."""
        return (self.gradient == 0.0) & (self.raw != 0.0)

    def converged(self, epsilon: float) -> bool:
        return self.max_effective <= epsilon

    def summary(self) -> str:
        return (
            f"GradientResult(T={self.gradient.size}, P={self.baseline:.12f}, "
            f"max_effective={self.max_effective:.3e}, zeroed={int(self.zeroed.sum())})"
        )


def effective_magnitude(glide_path: np.ndarray, gradient: np.ndarray, lower_bound: float) -> np.ndarray:
    """Per-component gradient magnitude cut at the feasibility bounds."""
    gp = np.asarray(glide_path, dtype=float)
    grad = np.asarray(gradient, dtype=float)
    step = gp + grad
    return np.where(
        step > 1.0,
        1.0 - gp,
        np.where(step < lower_bound, gp - lower_bound, np.abs(grad)),
    )


class GradientBuilder:
    """
    Builds gradients by density substitution, one engine call per time-point.

    Parameters
    ----------
    engine : RuinProbabilityEngine
        Shared probability engine.

    Examples
    --------
    >>> builder = GradientBuilder(engine)
    >>> p = engine.probability(gp)
    >>> result = builder.build(gp, p)
    >>> result.converged(1e-5)
    False
    """

    def __init__(self, engine: RuinProbabilityEngine):
        self.engine = engine
        self.model = engine.model

    def scaling(self, glide_path: np.ndarray) -> np.ndarray:
        """The constants k_t = v'/(2v) + m'²/(2v')."""
        gp = np.asarray(glide_path, dtype=float)
        v = self.model.variance(gp)
        vp = self.model.variance_derivative(gp)
        mp = self.model.mean_derivative()
        return vp / (2.0 * v) + mp ** 2 / (2.0 * vp)

    def build(
        self,
        glide_path,
        baseline: float,
        *,
        n_trials: Optional[int] = None,
        baseline_trials: Optional[int] = None,
        alpha: float = 1.0,
    ) -> GradientResult:
        """
        Compute the gradient at `glide_path`.

        Parameters
        ----------
        glide_path : array-like
            Current glide-path (clamped before use).
        baseline : float
            Probability of the glide-path under the standard density.
        n_trials, baseline_trials : int, optional
            Sample sizes of the perturbed and baseline estimates (simulation
            only). Default to the engine's gradient and baseline sizes.
        alpha : float
            Significance level of the zero test; 1.0 disables it.
        """
        gp = self.engine.feasible(glide_path)
        horizon = gp.shape[0]
        k = self.scaling(gp)
        if self.engine.is_stochastic:
            n_trials = n_trials or self.engine.sample_size("gradient")
            baseline_trials = baseline_trials or self.engine.sample_size("baseline")

        logger.info("Building gradient (T=%d)", horizon)
        special = np.empty(horizon)
        for t in range(horizon):
            special[t] = self.engine.probability(
                gp, DensitySelector.for_gradient(t), n_trials=n_trials
            )
        raw = k * (special - baseline)
        gradient = raw.copy()

        p_values = None
        if self.engine.is_stochastic and alpha < 1.0:
            p_values = self.z_test(raw / k, baseline, n_trials, baseline_trials)
            noisy = p_values > alpha
            gradient[noisy] = 0.0
            if noisy.any():
                logger.info(
                    "Zeroed %d gradient component(s) indistinguishable from noise",
                    int(noisy.sum()),
                )

        effective = effective_magnitude(gp, gradient, self.model.lower_bound)
        result = GradientResult(
            gradient=gradient,
            raw=raw,
            scaling=k,
            special_probabilities=special,
            baseline=float(baseline),
            effective=effective,
            p_values=p_values,
        )
        logger.info("Max effective gradient = %.6e", result.max_effective)
        return result

    @staticmethod
    def z_test(difference: np.ndarray, baseline: float, n: int, n_baseline: int) -> np.ndarray:
        """Two-sided p-values of `difference` = P_g − P against zero."""
        diff = np.asarray(difference, dtype=float)
        pooled = (n * (baseline + diff) + n_baseline * baseline) / (n + n_baseline)
        se = np.sqrt(pooled * (1.0 - pooled) * (1.0 / n + 1.0 / n_baseline))
        with np.errstate(divide="ignore", invalid="ignore"):
            z = diff / se
        z = np.where(diff == 0.0, 0.0, z)
        cdf = stats.norm.cdf(z)
        return 2.0 * np.minimum(cdf, 1.0 - cdf)
