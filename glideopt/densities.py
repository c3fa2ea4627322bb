"""
Density substitution catalog.

Every CDF needed by the dynamic program is a linear combination of a normal
CDF and a few gamma CDFs evaluated at z = ((x − m)/√(2v))²:

    F(x) = c₀ · ( Σᵢ cᵢ·(1 − sgn(x)ⁱ·Γᵢ(z)) + c_last·Φ(x) ),   sgn = +1 if x ≤ m else −1

The density used at a time-point is chosen by a `DensitySelector`:

    f  : c = [1]                             no gammas
    g  : c = [1/D, v'²v/2, −v'm'v√(2v/π), m'²v²]          Γ(1.5), Γ(1)
    h1 : c = [1/(v+k²), v/2, −k√(2v/π), k²]                Γ(1.5), Γ(1)
    h2 : c = [2/D₂, 3v'²/8, −v'm'√(2v/π), (2m'²v − v'²)/4, v'm'√(v/(2π)), v'²/4]
                                                           Γ(2.5), Γ(2), Γ(1.5), Γ(1)

with D = m'²v² + v·v'² and D₂ = v'² + 2v·m'². `get_cdf` is the only place
CDF values are produced for the dynamic program.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

import numpy as np
from scipy import stats

from .constants import CDF_SATURATION_TOL
from .exceptions import SelectorError
from .returns import Moments

__all__ = [
    "Density",
    "DensitySelector",
    "get_constants",
    "get_gammas",
    "get_normal",
    "get_cdf",
]


Density = Literal["f", "g", "h1", "h2"]


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DensitySelector:
    """
    Which time-points use a special density in one engine call.

    Slots
    -----
    gradient : int, optional
        Time-point using g (gradient element, or first index of a cross term).
    gradient_pair : int, optional
        Second time-point using g (off-diagonal Hessian element).
    hessian_h1, hessian_h2 : int, optional
        Time-point using h1 / h2 (diagonal Hessian elements). At most one of
        these may be set.

    Examples
    --------
    >>> DensitySelector.standard().density_at(3)
    'f'
    >>> DensitySelector.cross(1, 4).density_at(4)
    'g'
    >>> DensitySelector.h2(0).density_at(0)
    'h2'
    """
    gradient: Optional[int] = None
    gradient_pair: Optional[int] = None
    hessian_h1: Optional[int] = None
    hessian_h2: Optional[int] = None

    # -------------------- Factories --------------------

    @classmethod
    def standard(cls) -> "DensitySelector":
        return cls()

    @classmethod
    def for_gradient(cls, t: int) -> "DensitySelector":
        return cls(gradient=t)

    @classmethod
    def cross(cls, i: int, j: int) -> "DensitySelector":
        return cls(gradient=i, gradient_pair=j)

    @classmethod
    def h1(cls, t: int) -> "DensitySelector":
        return cls(hessian_h1=t)

    @classmethod
    def h2(cls, t: int) -> "DensitySelector":
        return cls(hessian_h2=t)

    # -------------------- Queries --------------------

    @property
    def slots(self) -> Tuple[Optional[int], ...]:
        return (self.gradient, self.gradient_pair, self.hessian_h1, self.hessian_h2)

    def density_at(self, t: int) -> Density:
        """Name of the density representing returns at time-point `t`."""
        if t == self.gradient or t == self.gradient_pair:
            return "g"
        if t == self.hessian_h1:
            return "h1"
        if t == self.hessian_h2:
            return "h2"
        return "f"

    def validate(self, horizon: int) -> None:
        """Check the selector against a horizon of `horizon` time-points."""
        for name, slot in zip(
            ("gradient", "gradient_pair", "hessian_h1", "hessian_h2"), self.slots
        ):
            if slot is not None and not 0 <= slot < horizon:
                raise SelectorError(
                    f"Invalid partial derivative specification {name}={slot} "
                    f"(time-points are 0..{horizon - 1})."
                )
        if self.hessian_h1 is not None and self.hessian_h2 is not None:
            raise SelectorError(
                "Only one Hessian special density may be used per probability."
            )
        if self.gradient_pair is not None and self.gradient is None:
            raise SelectorError("gradient_pair requires gradient to be set.")
        if (self.gradient is not None or self.gradient_pair is not None) and (
            self.hessian_h1 is not None or self.hessian_h2 is not None
        ):
            raise SelectorError(
                "Gradient and Hessian-diagonal densities cannot be combined."
            )
        if self.gradient_pair is not None and self.gradient_pair == self.gradient:
            raise SelectorError(
                f"Cross term needs two distinct time-points, got {self.gradient} twice."
            )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def get_constants(mts: Moments, selector: DensitySelector, t: int) -> np.ndarray:
    """
    Coefficients of the CDF linear combination at time-point `t`.

    Returns 1 coefficient for f, 4 for g and h1, 6 for h2.
    """
    density = selector.density_at(t)
    m_p = mts.mean_derivative
    v = mts.variance
    v_p = mts.variance_derivative
    k = mts.hessian_shift

    if density == "f":
        return np.array([1.0])
    elif density == "g":
        return np.array([
            1.0 / (m_p ** 2 * v ** 2 + v * v_p ** 2),
            v_p ** 2 * v / 2.0,
            -v_p * m_p * v * np.sqrt(2.0 * v / np.pi),
            m_p ** 2 * v ** 2,
        ])
    elif density == "h1":
        return np.array([
            1.0 / (v + k ** 2),
            v / 2.0,
            -np.sqrt(2.0 * v / np.pi) * k,
            k ** 2,
        ])
    else:
        return np.array([
            2.0 / (v_p ** 2 + 2.0 * v * m_p ** 2),
            3.0 * v_p ** 2 / 8.0,
            -np.sqrt(2.0 * v / np.pi) * v_p * m_p,
            (2.0 * m_p ** 2 * v - v_p ** 2) / 4.0,
            np.sqrt(v / (2.0 * np.pi)) * v_p * m_p,
            v_p ** 2 / 4.0,
        ])


def get_gammas(selector: DensitySelector, t: int) -> List:
    """Gamma random variables (scale 1) needed for the CDF at time-point `t`."""
    density = selector.density_at(t)
    gammas = []
    if density == "h2":
        gammas.append(stats.gamma(a=2.5, scale=1.0))
        gammas.append(stats.gamma(a=2.0, scale=1.0))
    if density != "f":
        gammas.append(stats.gamma(a=1.5, scale=1.0))
        gammas.append(stats.gamma(a=1.0, scale=1.0))
    return gammas


def get_normal(mts: Moments):
    """Normal random variable of the one-period return."""
    return stats.norm(loc=mts.mean, scale=mts.std)


def get_cdf(mts: Moments, constants: np.ndarray, normal, gammas: List, x) -> np.ndarray:
    """
    CDF of the selected density at `x` (scalar or array).

    Returns exactly 1.0 where every gamma term and the normal CDF are within
    CDF_SATURATION_TOL of their upper limits.
    """
    x = np.asarray(x, dtype=float)
    sgn = np.where(x <= mts.mean, 1.0, -1.0)
    z = ((x - mts.mean) / np.sqrt(2.0 * mts.variance)) ** 2

    total = np.zeros_like(x)
    saturated = np.ones(x.shape, dtype=bool)
    for i, gamma in enumerate(gammas, start=1):
        term = 1.0 - sgn ** i * gamma.cdf(z)
        limit = 1.0 + (-1.0) ** (i + 1)
        saturated &= np.abs(term - limit) < CDF_SATURATION_TOL
        total = total + constants[i] * term

    normal_cdf = normal.cdf(x)
    saturated &= np.abs(normal_cdf - 1.0) < CDF_SATURATION_TOL
    value = constants[0] * (total + constants[-1] * normal_cdf)
    return np.where(saturated, 1.0, value)
