"""
Dynamic-programming ruin-probability backend.

Purpose
-------
Computes the probability of avoiding ruin for a glide-path by backward
recursion over a discretized ruin-factor axis. Bucket b ∈ 1..B represents
the ruin factor b / precision, with B = rf_max × precision.

Recursion
---------
For t = T−1 … 1 and every bucket b (rf = b / precision):

    F      = CDF_t(rf)                               ruin this period
    E      = P(ruin later | survive this period)
           = Σ_j [CDF_t(rf·(1 + prec/(u_{j−1}+½))) − CDF_t(rf·(1 + prec/(u_j+½)))]
                 · V_{t+1}[u_j] / (1 − F)
    V_t[b] = F + E − F·E        (1 − (1−F)(1−E) once this exceeds ½)

where u_j runs over the unique-probability buckets of V_{t+1}. A return r
maps ruin factor rf to rf / (r − rf), so the return interval between two
bucket boundaries lands in a run of buckets sharing one probability.

Finally V_0 is evaluated at the single bucket of the starting ruin factor
and the success probability is 1 − V_0.

Concurrency
-----------
Each time-point is a barrier. The buckets below the saturation boundary
(the first bucket whose ruin probability reaches 1) are split into
contiguous ranges, one per worker; every worker evaluates its range
vectorised and writes only into its own slice of the parent-owned array.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from .config import DPConfig
from .constants import (
    BUCKET_MERGE_TOL,
    DP_BLOCK_SIZE,
    MONOTONE_TOL,
    PROBABILITY_CEILING,
    SATURATION_HORIZON_FRACTION,
    TIE_THRESHOLD,
)
from .densities import DensitySelector, get_cdf, get_constants, get_gammas, get_normal
from .exceptions import ConfigurationError, DiscretizationError, MonotonicityError
from .returns import ReturnModel

__all__ = ["DynamicProgram", "RuinCurve"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Ruin curve
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RuinCurve:
    """
    Finalized ruin probabilities of one time-point.

    Attributes
    ----------
    timepoint : int
        Time-point t the curve belongs to.
    probabilities : np.ndarray
        Ruin probability per bucket; entry b−1 belongs to bucket b.
    unique_buckets : np.ndarray
        1-based buckets closing a run of equal probabilities (always
        contains bucket 1 and bucket B).
    saturation_bucket : int
        First bucket assigned probability 1 without evaluation (B+1 if none).
    """
    timepoint: int
    probabilities: np.ndarray
    unique_buckets: np.ndarray
    saturation_bucket: int

    @property
    def n_buckets(self) -> int:
        return int(self.probabilities.shape[0])

    def summary(self) -> str:
        return (
            f"RuinCurve(t={self.timepoint}, B={self.n_buckets}, "
            f"unique={self.unique_buckets.size}, saturation={self.saturation_bucket}, "
            f"V[1]={self.probabilities[0]:.6e})"
        )

    @classmethod
    def terminal(cls, timepoint: int, n_buckets: int) -> "RuinCurve":
        """Curve beyond the horizon: nobody is ruined after the last period."""
        unique = np.unique(np.array([1, n_buckets], dtype=np.int64))
        return cls(
            timepoint=timepoint,
            probabilities=np.zeros(n_buckets),
            unique_buckets=unique,
            saturation_bucket=n_buckets + 1,
        )


# ---------------------------------------------------------------------------
# Per time-point kernel
# ---------------------------------------------------------------------------

class _TimepointKernel:
    """Vectorised ruin probability of a set of buckets at one time-point."""

    def __init__(
        self,
        model: ReturnModel,
        allocation: float,
        selector: DensitySelector,
        t: int,
        prior: RuinCurve,
        precision: int,
    ):
        self.mts = model.moments(allocation)
        self.constants = get_constants(self.mts, selector, t)
        self.gammas = get_gammas(selector, t)
        self.normal = get_normal(self.mts)
        self.precision = precision
        self.prior = prior.probabilities
        unique = prior.unique_buckets
        # Return thresholds, relative to rf, of the bucket boundaries
        self.boundaries = 1.0 + precision / np.concatenate(([1.5], unique[1:] + 0.5))
        self.interval_prior = self.prior[unique[1:] - 1]

    def cdf(self, x):
        return get_cdf(self.mts, self.constants, self.normal, self.gammas, x)

    def components(self, buckets: np.ndarray):
        """Return (F, E) for the given 1-based buckets."""
        rf = buckets / self.precision
        f = self.cdf(rf)
        e = np.full(rf.shape, self.prior[-1])
        open_rows = np.flatnonzero(f < 1.0)
        rows_per_block = max(1, DP_BLOCK_SIZE // self.boundaries.size)
        for start in range(0, open_rows.size, rows_per_block):
            rows = open_rows[start:start + rows_per_block]
            lhs = self.cdf(rf[rows, None] * self.boundaries[None, :])
            acc = (1.0 - lhs[:, 0]) * self.prior[0]
            if self.interval_prior.size:
                acc = acc + (lhs[:, :-1] - lhs[:, 1:]) @ self.interval_prior
            acc = acc + (lhs[:, -1] - f[rows]) * self.prior[-1]
            e[rows] = acc / (1.0 - f[rows])
        return f, e

    def values(self, buckets: np.ndarray) -> np.ndarray:
        """Ruin probabilities of independent buckets."""
        f, e = self.components(buckets)
        naive = f + e - f * e
        return np.where(naive > TIE_THRESHOLD, 1.0 - (1.0 - f) * (1.0 - e), naive)

    def fill(self, out: np.ndarray, lo: int, hi: int) -> None:
        """Evaluate buckets lo..hi−1 (1-based) into out[lo−1:hi−1]."""
        if hi <= lo:
            return
        f, e = self.components(np.arange(lo, hi, dtype=float))
        v = f + e - f * e
        over = np.flatnonzero(v > TIE_THRESHOLD)
        if over.size:
            k = over[0]
            v[k:] = 1.0 - (1.0 - f[k:]) * (1.0 - e[k:])
        done = np.flatnonzero(v >= 1.0)
        if done.size:
            v[done[0]:] = 1.0
        out[lo - 1:hi - 1] = v


# ---------------------------------------------------------------------------
# Dynamic program
# ---------------------------------------------------------------------------

class DynamicProgram:
    """
    Backward-recursion ruin-probability estimator.

    Parameters
    ----------
    model : ReturnModel
        Closed-form return model.
    precision : int
        Buckets per ruin-factor unit.
    rf_max : float
        Largest ruin factor represented.
    workers : int
        Number of concurrent workers splitting each time-point's buckets.

    Examples
    --------
    >>> dp = DynamicProgram(model, precision=500, rf_max=2.75, workers=2)
    >>> p = dp.success_probability(np.full(20, 0.5), rf0=0.05)
    >>> 0.0 < p < 1.0
    True
    """

    def __init__(self, model: ReturnModel, precision: int, rf_max: float, workers: int = 2):
        self.model = model
        self.precision = int(precision)
        self.rf_max = float(rf_max)
        self.n_buckets = int(self.rf_max * self.precision)
        self.workers = int(workers)
        if self.n_buckets < 1:
            raise ConfigurationError(
                f"Discretization has no buckets (rf_max={rf_max}, precision={precision})."
            )
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {workers}")
        if self.workers > self.n_buckets:
            raise ConfigurationError(
                f"More workers ({self.workers}) than ruin-factor buckets "
                f"({self.n_buckets}); increase precision or rf_max."
            )

    @classmethod
    def from_config(cls, model: ReturnModel, config: DPConfig, workers: int = 2) -> "DynamicProgram":
        return cls(model, precision=config.precision, rf_max=config.rf_max, workers=workers)

    def __repr__(self) -> str:
        return (
            f"DynamicProgram(precision={self.precision}, rf_max={self.rf_max}, "
            f"B={self.n_buckets}, workers={self.workers})"
        )

    def start_bucket(self, rf0: float) -> int:
        """Bucket of the starting ruin factor (rounded to nearest)."""
        bucket = int(rf0 * self.precision + 0.5)
        if not 1 <= bucket <= self.n_buckets:
            raise ConfigurationError(
                f"Starting ruin-factor bucket {bucket} is outside 1..{self.n_buckets}. "
                f"Increase rf_max or precision."
            )
        return bucket

    # -------------------- Recursion --------------------

    def curves(
        self,
        glide_path: np.ndarray,
        selector: Optional[DensitySelector] = None,
    ) -> Iterator[RuinCurve]:
        """
        Yield the finalized ruin curves for t = T−1 down to 1.

        Raises
        ------
        SelectorError
            If the selector references a time-point beyond the horizon.
        MonotonicityError
            If a curve decreases by more than MONOTONE_TOL or exceeds 1.
        DiscretizationError
            If the last bucket is not ruined with certainty (increase rf_max).
        """
        selector = selector or DensitySelector.standard()
        gp = self.model.clamp(np.asarray(glide_path, dtype=float))
        horizon = gp.shape[0]
        selector.validate(horizon)

        prior = RuinCurve.terminal(horizon, self.n_buckets)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for t in range(horizon - 1, 0, -1):
                prior = self._sweep(pool, gp[t], selector, t, prior, horizon)
                yield prior

    def success_probability(
        self,
        glide_path: np.ndarray,
        rf0: float,
        selector: Optional[DensitySelector] = None,
    ) -> float:
        """Probability of never being ruined when starting at ruin factor rf0."""
        selector = selector or DensitySelector.standard()
        gp = self.model.clamp(np.asarray(glide_path, dtype=float))
        bucket = self.start_bucket(rf0)

        prior = RuinCurve.terminal(gp.shape[0], self.n_buckets)
        for prior in self.curves(gp, selector):
            pass

        kernel = _TimepointKernel(self.model, gp[0], selector, 0, prior, self.precision)
        ruin = float(kernel.values(np.array([bucket], dtype=float))[0])
        logger.debug("t=0 bucket=%d ruin=%.12f", bucket, ruin)
        return 1.0 - ruin

    # -------------------- Internals --------------------

    def _sweep(
        self,
        pool: Executor,
        allocation: float,
        selector: DensitySelector,
        t: int,
        prior: RuinCurve,
        horizon: int,
    ) -> RuinCurve:
        kernel = _TimepointKernel(self.model, allocation, selector, t, prior, self.precision)
        from_top = t >= horizon - horizon // SATURATION_HORIZON_FRACTION
        saturation = self._saturation_bucket(kernel, from_top)

        current = np.ones(self.n_buckets)
        edges = np.linspace(1, saturation, self.workers + 1).astype(np.int64)
        futures = [
            pool.submit(kernel.fill, current, int(lo), int(hi))
            for lo, hi in zip(edges[:-1], edges[1:])
        ]
        for future in futures:
            future.result()

        self._check_curve(current, t)
        unique = self._unique_buckets(current)
        logger.debug(
            "t=%d a=%.6f saturation=%d unique=%d", t, allocation, saturation, unique.size
        )
        return RuinCurve(
            timepoint=t,
            probabilities=current,
            unique_buckets=unique,
            saturation_bucket=saturation,
        )

    def _saturation_bucket(self, kernel: _TimepointKernel, from_top: bool) -> int:
        """First bucket whose ruin probability reaches 1 (B+1 if none)."""
        n = self.n_buckets

        def saturated(b: int) -> bool:
            return kernel.values(np.array([b], dtype=float))[0] >= 1.0

        if from_top:
            if not saturated(n):
                return n + 1
            hi, step = n, 1
            lo = hi - step
            while lo >= 1 and saturated(lo):
                hi = lo
                step *= 2
                lo = hi - step
            lo = max(lo, 0)
        else:
            lo, step = 0, 2 * self.workers
            hi = lo + step
            while hi <= n and not saturated(hi):
                lo = hi
                step *= 2
                hi = lo + step
            if hi > n:
                if lo >= n or not saturated(n):
                    return n + 1
                hi = n

        # lo is unsaturated (or 0), hi is saturated
        while hi - lo > 1:
            mid = (lo + hi) // 2
            if saturated(mid):
                hi = mid
            else:
                lo = mid
        return hi

    def _check_curve(self, v: np.ndarray, t: int) -> None:
        drops = np.flatnonzero(v[1:] < v[:-1] - MONOTONE_TOL)
        if drops.size:
            b = int(drops[0]) + 2
            raise MonotonicityError(
                f"Timepoint t={t}: V[{b}]={v[b - 1]:.17g} < V[{b - 1}]={v[b - 2]:.17g}.",
                timepoint=t, bucket=b, previous=float(v[b - 2]), value=float(v[b - 1]),
            )
        high = np.flatnonzero(v > PROBABILITY_CEILING)
        if high.size:
            b = int(high[0]) + 1
            previous = float(v[b - 2]) if b > 1 else float("nan")
            raise MonotonicityError(
                f"Timepoint t={t}: V[{b}]={v[b - 1]:.17g} > 1.",
                timepoint=t, bucket=b, previous=previous, value=float(v[b - 1]),
            )
        if v[-1] < 1.0:
            raise DiscretizationError(
                f"Timepoint t={t} has V[{v.size}]={v[-1]:.17g}, which is < 1.00 "
                f"(Increase RFMax).",
                timepoint=t, value=float(v[-1]),
            )

    @staticmethod
    def _unique_buckets(v: np.ndarray) -> np.ndarray:
        n = v.size
        b = np.arange(1, n + 1)
        closes_run = np.zeros(n, dtype=bool)
        closes_run[:-1] = (np.abs(v[:-1] - v[1:]) > BUCKET_MERGE_TOL) & (v[:-1] < 1.0)
        keep = closes_run | (b == 1) | (b == n)
        return b[keep].astype(np.int64)
