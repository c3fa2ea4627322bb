"""
Hessian of the success probability with respect to the glide-path.

Off-diagonal elements reuse the gradient density at two time-points:

    H_ij = k_i·k_j·(P_g(i,j) − ∂_i/k_i − ∂_j/k_j − P)

Diagonal elements combine the two Hessian densities with the baseline:

    H_ii = K1·P_h1(i) + K2·P_h2(i) + K3·P
    K1   = (v + k²)(v·v'' − 2v'²) / (2v³)
    K2   = (v'² + 2v·m'²) / (2v²)
    K3   = −[(v''·v − v'² + 2v·m'²)/(2v²) + 2v'²m'²/(v²v'' − 2v'²v)]

with k the h1 shift. K1 + K2 + K3 = 0, so a flat probability surface has a
zero Hessian. The diagonal is undefined where v·v'' − 2v'² ≈ 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .constants import DEGENERATE_HESSIAN_TOL
from .densities import DensitySelector
from .engine import RuinProbabilityEngine
from .exceptions import DegenerateHessianError
from .gradient import GradientResult

__all__ = ["HessianBuilder", "HessianResult"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HessianResult:
    """
    Symmetric Hessian with its eigenvalues.

    Attributes
    ----------
    matrix : np.ndarray, shape (T, T)
        Hessian of the success probability.
    eigenvalues : np.ndarray
        Eigenvalues in ascending order.
    """
    matrix: np.ndarray
    eigenvalues: np.ndarray

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "HessianResult":
        return cls(matrix=matrix, eigenvalues=np.linalg.eigvalsh(matrix))

    @property
    def min_eigenvalue(self) -> float:
        return float(self.eigenvalues[0])

    @property
    def max_eigenvalue(self) -> float:
        return float(self.eigenvalues[-1])

    @property
    def is_definite(self) -> bool:
        """No eigenvalues of both signs (the optimum diagnostic)."""
        return self.max_eigenvalue <= 0.0 or self.min_eigenvalue >= 0.0

    def status(self) -> str:
        return "(Local/Global) Optimal" if self.is_definite else "Not Optimal"

    def summary(self) -> str:
        return (
            f"HessianResult(T={self.matrix.shape[0]}, "
            f"min_eig={self.min_eigenvalue:.6e}, max_eig={self.max_eigenvalue:.6e}, "
            f"{self.status()})"
        )


class HessianBuilder:
    """
    Builds the Hessian by density substitution.

    Needs T(T−1)/2 cross-term and 2T diagonal engine calls per build.

    Parameters
    ----------
    engine : RuinProbabilityEngine
        Shared probability engine.
    """

    def __init__(self, engine: RuinProbabilityEngine):
        self.engine = engine
        self.model = engine.model

    def diagonal_constants(self, allocation: float, t: Optional[int] = None) -> np.ndarray:
        """Return (K1, K2, K3) at one allocation."""
        mts = self.model.moments(allocation)
        v = mts.variance
        vp = mts.variance_derivative
        vpp = mts.variance_second_derivative
        mp = mts.mean_derivative
        kh1 = mts.hessian_shift

        curvature = v * vpp - 2.0 * vp ** 2
        if abs(curvature) < DEGENERATE_HESSIAN_TOL:
            raise DegenerateHessianError(
                f"Hessian diagonal element does not exist at a={allocation:.10f}"
                + (f" (t={t})" if t is not None else "")
                + ": v·v'' − 2v'² is zero.",
                timepoint=t,
                allocation=float(allocation),
            )
        k1 = (v + kh1 ** 2) * curvature / (2.0 * v ** 3)
        k2 = (vp ** 2 + 2.0 * v * mp ** 2) / (2.0 * v ** 2)
        k3 = -(
            (vpp * v - vp ** 2 + 2.0 * v * mp ** 2) / (2.0 * v ** 2)
            + 2.0 * vp ** 2 * mp ** 2 / (v ** 2 * vpp - 2.0 * vp ** 2 * v)
        )
        return np.array([k1, k2, k3])

    def build(
        self,
        glide_path,
        gradient: GradientResult,
        *,
        n_trials: Optional[int] = None,
    ) -> HessianResult:
        """
        Compute the Hessian at `glide_path`.

        Parameters
        ----------
        glide_path : array-like
            Glide-path the gradient was built at.
        gradient : GradientResult
            Gradient at the same glide-path; its unfiltered components and
            baseline probability enter the off-diagonal terms.
        n_trials : int, optional
            Sample size per element (simulation only).
        """
        gp = self.engine.feasible(glide_path)
        horizon = gp.shape[0]
        if self.engine.is_stochastic:
            n_trials = n_trials or self.engine.sample_size("hessian")
        k = gradient.scaling
        base = gradient.baseline
        raw = gradient.raw

        logger.info("Building Hessian (T=%d)", horizon)
        hess = np.zeros((horizon, horizon))
        for i in range(horizon):
            for j in range(i):
                p = self.engine.probability(gp, DensitySelector.cross(i, j), n_trials=n_trials)
                hess[i, j] = k[i] * k[j] * (p - raw[i] / k[i] - raw[j] / k[j] - base)
                hess[j, i] = hess[i, j]

            k1, k2, k3 = self.diagonal_constants(gp[i], t=i)
            p_h1 = self.engine.probability(gp, DensitySelector.h1(i), n_trials=n_trials)
            p_h2 = self.engine.probability(gp, DensitySelector.h2(i), n_trials=n_trials)
            hess[i, i] = k1 * p_h1 + k2 * p_h2 + k3 * base

        result = HessianResult.from_matrix(hess)
        logger.info(
            "Eigenvalues: min=%.6e max=%.6e", result.min_eigenvalue, result.max_eigenvalue
        )
        return result
