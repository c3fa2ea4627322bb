"""
Return model for a blended stock/bond portfolio.

Mathematical Model
------------------
With a fraction `a` in stocks, the expense-adjusted one-period gross return
is normal with

    m(a)  = (1 − ER)·(1 + a·μs + (1 − a)·μb)
    v(a)  = (1 − ER)²·(a²·σs² + (1 − a)²·σb² + 2a(1 − a)·σsb)

and analytic derivatives

    m'    = (1 − ER)·(μs − μb)
    v'(a) = (1 − ER)²·(2a·σs² − 2(1 − a)·σb² + (2 − 4a)·σsb)
    v''   = (1 − ER)²·(2σs² + 2σb² − 4σsb)

The minimum-variance allocation (σb² − σsb)/(σs² + σb² − 2σsb) plus
ALLOCATION_EPSILON is the feasible lower bound for every allocation.

Special densities
-----------------
g, h1 and h2 reweight the standard density f by squared polynomials in
(r − m) so that ruin probabilities computed under them recover the first
and second derivatives of the ruin probability with respect to a:

    g(r)  = f(r)·(v'(r − m) + m'v)² / (m'²v² + v·v'²)
    h1(r) = f(r)·(r − m + k)² / (v + k²),     k = −2v'm'v / (v·v'' − 2v'²)
    h2(r) = f(r)·2·((r − m)²v'/(2v) + m'(r − m) − v'/2)² / (v'² + 2v·m'²)

Each integrates to one and has a closed-form CDF (see densities.py).

Design principles
-----------------
- Stateless: every quantity is a pure function of the parameters and `a`
- Vectorised: density functions accept scalar or array returns
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from .config import ModelParameters
from .constants import ALLOCATION_EPSILON

__all__ = ["ReturnModel", "Moments"]

ArrayOrFloat = Union[float, np.ndarray]


@dataclass(frozen=True)
class Moments:
    """
    Moments snapshot for one time-point and allocation.

    Attributes
    ----------
    mean, mean_derivative : float
        m(a) and m'.
    variance, variance_derivative, variance_second_derivative : float
        v(a), v'(a) and v''.
    min_variance_allocation : float
        Allocation minimizing v.
    hessian_shift : float
        The constant k of the h1 density.
    """
    mean: float
    mean_derivative: float
    variance: float
    variance_derivative: float
    variance_second_derivative: float
    min_variance_allocation: float
    hessian_shift: float

    @property
    def std(self) -> float:
        return float(np.sqrt(self.variance))


class ReturnModel:
    """
    Closed-form return moments and densities for a stock/bond glide-path.

    Parameters
    ----------
    params : ModelParameters
        Stock/bond moments and expense ratio.

    Examples
    --------
    >>> model = ReturnModel(params)
    >>> a_min, a_max = model.bounds
    >>> model.variance(a_min) > 0
    True
    >>> mts = model.moments(0.6)
    >>> round(mts.mean, 6) == round(model.mean(0.6), 6)
    True
    """

    def __init__(self, params: ModelParameters):
        self.params = params
        self._net = 1.0 - params.expense_ratio

    def __repr__(self) -> str:
        p = self.params
        return (
            f"ReturnModel(stock={p.stock_mean:.4f}/{p.stock_variance:.4f}, "
            f"bond={p.bond_mean:.4f}/{p.bond_variance:.4f}, "
            f"cov={p.covariance:.6f}, ER={p.expense_ratio:.4f})"
        )

    # -------------------- Moments --------------------

    def mean(self, a: ArrayOrFloat) -> ArrayOrFloat:
        p = self.params
        return self._net * (1.0 + a * p.stock_mean + (1.0 - a) * p.bond_mean)

    def variance(self, a: ArrayOrFloat) -> ArrayOrFloat:
        p = self.params
        return self._net ** 2 * (
            a * a * p.stock_variance
            + (1.0 - a) * (1.0 - a) * p.bond_variance
            + 2.0 * a * (1.0 - a) * p.covariance
        )

    def mean_derivative(self) -> float:
        p = self.params
        return self._net * (p.stock_mean - p.bond_mean)

    def variance_derivative(self, a: ArrayOrFloat) -> ArrayOrFloat:
        p = self.params
        return self._net ** 2 * (
            2.0 * a * p.stock_variance
            - 2.0 * (1.0 - a) * p.bond_variance
            + (2.0 - 4.0 * a) * p.covariance
        )

    def variance_second_derivative(self) -> float:
        p = self.params
        return self._net ** 2 * (
            2.0 * p.stock_variance + 2.0 * p.bond_variance - 4.0 * p.covariance
        )

    def min_variance_allocation(self) -> float:
        p = self.params
        return (p.bond_variance - p.covariance) / (
            p.stock_variance + p.bond_variance - 2.0 * p.covariance
        )

    def hessian_shift(self, a: ArrayOrFloat) -> ArrayOrFloat:
        """The constant k = −2v'm'v / (v·v'' − 2v'²) used by h1."""
        v = self.variance(a)
        vp = self.variance_derivative(a)
        return (-2.0 * vp * self.mean_derivative() * v) / (
            v * self.variance_second_derivative() - 2.0 * vp ** 2
        )

    def moments(self, a: float) -> Moments:
        """Precompute the moments snapshot for one allocation."""
        return Moments(
            mean=float(self.mean(a)),
            mean_derivative=float(self.mean_derivative()),
            variance=float(self.variance(a)),
            variance_derivative=float(self.variance_derivative(a)),
            variance_second_derivative=float(self.variance_second_derivative()),
            min_variance_allocation=float(self.min_variance_allocation()),
            hessian_shift=float(self.hessian_shift(a)),
        )

    # -------------------- Feasibility --------------------

    @property
    def lower_bound(self) -> float:
        """Smallest feasible allocation: minimum-variance allocation + ε."""
        return self.min_variance_allocation() + ALLOCATION_EPSILON

    @property
    def bounds(self) -> tuple:
        return self.lower_bound, 1.0

    def clamp(self, a: ArrayOrFloat) -> ArrayOrFloat:
        """Force allocations into [lower_bound, 1.0]."""
        return np.clip(a, self.lower_bound, 1.0)

    # -------------------- Densities --------------------

    def f(self, a: float, r: ArrayOrFloat) -> ArrayOrFloat:
        """Normal return density with mean m(a) and variance v(a)."""
        v = self.variance(a)
        return np.exp(-((r - self.mean(a)) ** 2) / (2.0 * v)) / np.sqrt(2.0 * np.pi * v)

    def g(self, a: float, r: ArrayOrFloat) -> ArrayOrFloat:
        """Gradient density."""
        m, mp = self.mean(a), self.mean_derivative()
        v, vp = self.variance(a), self.variance_derivative(a)
        return self.f(a, r) * (vp * (r - m) + mp * v) ** 2 / (mp ** 2 * v ** 2 + v * vp ** 2)

    def h1(self, a: float, r: ArrayOrFloat) -> ArrayOrFloat:
        """First Hessian-diagonal density."""
        m, v, k = self.mean(a), self.variance(a), self.hessian_shift(a)
        return self.f(a, r) * (r - m + k) ** 2 / (v + k ** 2)

    def h2(self, a: float, r: ArrayOrFloat) -> ArrayOrFloat:
        """Second Hessian-diagonal density."""
        m, mp = self.mean(a), self.mean_derivative()
        v, vp = self.variance(a), self.variance_derivative(a)
        d = r - m
        poly = d ** 2 * vp / (2.0 * v) + mp * d - vp / 2.0
        return self.f(a, r) * 2.0 * poly ** 2 / (vp ** 2 + 2.0 * v * mp ** 2)

    def density(self, name: str, a: float, r: ArrayOrFloat) -> ArrayOrFloat:
        """Dispatch to f, g, h1 or h2 by name."""
        if name == "f":
            return self.f(a, r)
        elif name == "g":
            return self.g(a, r)
        elif name == "h1":
            return self.h1(a, r)
        elif name == "h2":
            return self.h2(a, r)
        else:
            raise ValueError(f"Unknown density: {name}")
