"""Monte Carlo ruin-probability backend for GlideOpt

Simulates the ruin-factor recursion forward along independent trials:

    rf ← rf0;  for t = 0..T−1:  draw r;  ruin if rf ≤ 0 or r ≤ rf;  rf ← rf / (r − rf)

Returns are drawn from the normal density f or, at the time-points a
`DensitySelector` marks, from one of the special densities g, h1, h2 by
rejection sampling inside fixed bounding boxes (`SAMPLING_BOXES`).

Design goals
------------
- Reproducible: every worker owns a `numpy.random.Generator` spawned from
  the `SeedSequence` handed in for the call.
- Vectorised: each worker advances a whole block of trials per time-point.
- Bounded memory: blocks hold at most MC_CHUNK_SIZE trials.

Typical usage
-------------
>>> sim = MonteCarloSimulator(model, workers=4)
>>> p = sim.success_probability(gp, rf0=0.05, n_trials=1_000_000,
...                             seed_sequence=np.random.SeedSequence(42))
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import numpy as np

from .constants import MC_CHUNK_SIZE, SAMPLING_BOXES
from .densities import DensitySelector
from .exceptions import ConfigurationError
from .returns import ReturnModel

__all__ = [
    "MonteCarloSimulator",
    "SAMPLING_BOXES",
    "sample_returns",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Return sampling
# ---------------------------------------------------------------------------

def sample_returns(
    rng: np.random.Generator,
    model: ReturnModel,
    density: str,
    allocation: float,
    size: int,
) -> np.ndarray:
    """
    Draw `size` one-period returns from the named density.

    f is sampled directly; g, h1 and h2 by rejection inside their box.
    """
    if density == "f":
        return rng.normal(model.mean(allocation), np.sqrt(model.variance(allocation)), size)

    x_lo, x_hi, y_hi = SAMPLING_BOXES[density]
    area = (x_hi - x_lo) * y_hi
    out = np.empty(size)
    filled = 0
    while filled < size:
        need = size - filled
        batch = int(need * area * 1.2) + 64
        x = rng.uniform(x_lo, x_hi, batch)
        y = rng.uniform(0.0, y_hi, batch)
        accepted = x[y < model.density(density, allocation, x)]
        take = min(accepted.size, need)
        out[filled:filled + take] = accepted[:take]
        filled += take
    return out


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------

class MonteCarloSimulator:
    """
    Monte Carlo estimator of the probability of avoiding ruin.

    Parameters
    ----------
    model : ReturnModel
        Closed-form return model (densities and moments).
    workers : int
        Number of concurrent workers; each runs an equal share of the trials.
    chunk_size : int
        Trials advanced together inside one worker.
    """

    def __init__(self, model: ReturnModel, workers: int = 2, chunk_size: int = MC_CHUNK_SIZE):
        if workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {workers}")
        if chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {chunk_size}")
        self.model = model
        self.workers = int(workers)
        self.chunk_size = int(chunk_size)

    def __repr__(self) -> str:
        return f"MonteCarloSimulator(workers={self.workers}, chunk_size={self.chunk_size})"

    def success_probability(
        self,
        glide_path: np.ndarray,
        rf0: float,
        n_trials: int,
        selector: Optional[DensitySelector] = None,
        seed_sequence: Optional[np.random.SeedSequence] = None,
    ) -> float:
        """
        Estimate the success probability with `n_trials` trials.

        The result is the unweighted average of the worker estimates.
        """
        selector = selector or DensitySelector.standard()
        gp = self.model.clamp(np.asarray(glide_path, dtype=float))
        selector.validate(gp.shape[0])
        if n_trials < self.workers:
            raise ConfigurationError(
                f"Sample size {n_trials} is smaller than the number of workers {self.workers}."
            )

        seed_sequence = seed_sequence or np.random.SeedSequence()
        streams = [np.random.default_rng(s) for s in seed_sequence.spawn(self.workers)]
        counts = [
            n_trials // self.workers + (1 if i < n_trials % self.workers else 0)
            for i in range(self.workers)
        ]

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [
                pool.submit(self._run_worker, rng, gp, rf0, count, selector)
                for rng, count in zip(streams, counts)
            ]
            estimates: List[float] = [f.result() for f in futures]

        p = float(np.mean(estimates))
        logger.debug("MC n=%d selector=%s p=%.10f", n_trials, selector, p)
        return p

    def _run_worker(
        self,
        rng: np.random.Generator,
        gp: np.ndarray,
        rf0: float,
        n_trials: int,
        selector: DensitySelector,
    ) -> float:
        ruined = 0
        for start in range(0, n_trials, self.chunk_size):
            size = min(self.chunk_size, n_trials - start)
            ruined += self._simulate_block(rng, gp, rf0, size, selector)
        return 1.0 - ruined / n_trials

    def _simulate_block(
        self,
        rng: np.random.Generator,
        gp: np.ndarray,
        rf0: float,
        size: int,
        selector: DensitySelector,
    ) -> int:
        rf = np.full(size, float(rf0))
        ruined = 0
        for t, a in enumerate(gp):
            if rf.size == 0:
                break
            r = sample_returns(rng, self.model, selector.density_at(t), a, rf.size)
            survive = (rf > 0.0) & (r > rf)
            ruined += int(rf.size - np.count_nonzero(survive))
            rf = rf[survive] / (r[survive] - rf[survive])
        return ruined
