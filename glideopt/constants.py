"""
Global constants for GlideOpt.

Purpose
-------
Centralizes numeric tolerances and default values used throughout the
GlideOpt codebase, so the estimation engine, the derivative builders and
the optimizer agree on the same feasibility bounds and saturation rules.

Categories
----------
- Feasibility: allocation lower-bound offset
- Numerics: CDF saturation, tie handling, bucket invariants
- Climbing: step-size schedule
- Monte Carlo: sampling chunk size and special-density bounding boxes
- Defaults: control-file values used when none are supplied
"""

from typing import Dict, Tuple

__all__ = [
    # Feasibility
    "ALLOCATION_EPSILON",
    # Numerics
    "CDF_SATURATION_TOL",
    "TIE_THRESHOLD",
    "MONOTONE_TOL",
    "PROBABILITY_CEILING",
    "BUCKET_MERGE_TOL",
    "DEGENERATE_HESSIAN_TOL",
    "SATURATION_HORIZON_FRACTION",
    "DP_BLOCK_SIZE",
    # Climbing
    "STEP_BASE",
    "MAX_STEP_INDEX",
    "MAX_STEP_TRIES_UP",
    "CLIMB_REPORT_INTERVAL",
    # Monte Carlo
    "MC_CHUNK_SIZE",
    "SAMPLING_BOXES",
    # Defaults
    "DEFAULT_ALPHA_CLIMB",
    "DEFAULT_ALPHA_GRADIENT",
    "DEFAULT_RF_MAX",
    "DEFAULT_SAMPLE_SIZE",
    "DEFAULT_PRECISION",
    "DEFAULT_INITIAL_CLIMB_STEPS",
    "DEFAULT_CONFIG_DIR",
    "CONTROL_FILE",
    "GLIDE_PATH_FILE",
    "OUTPUT_FILE",
    "LOG_FILE",
]


# =============================================================================
# Feasibility
# =============================================================================

ALLOCATION_EPSILON: float = 1e-4
"""Offset above the minimum-variance allocation that bounds every allocation."""


# =============================================================================
# Numerics
# =============================================================================

CDF_SATURATION_TOL: float = 1e-15
"""All CDF terms within this distance of their limit short-circuit to exactly 1."""

TIE_THRESHOLD: float = 0.5
"""Above this ruin probability the DP switches to 1 − (1−F)(1−E)."""

MONOTONE_TOL: float = 1e-15
"""Allowed decrease between consecutive bucket probabilities."""

PROBABILITY_CEILING: float = 1.0 + 2e-15
"""Largest admissible bucket ruin probability."""

BUCKET_MERGE_TOL: float = 1e-15
"""Neighbouring buckets closer than this share one unique value."""

DEGENERATE_HESSIAN_TOL: float = 1e-15
"""|v·v'' − 2v'²| below this makes the Hessian diagonal undefined."""

SATURATION_HORIZON_FRACTION: int = 6
"""The last T // 6 time-points search the saturation boundary from the top."""

DP_BLOCK_SIZE: int = 2 ** 20
"""Maximum bucket × interval CDF evaluations per vectorised block."""


# =============================================================================
# Climbing
# =============================================================================

STEP_BASE: float = 5.0 ** 0.25
"""Step sizes are powers of the fourth root of five."""

MAX_STEP_INDEX: int = 10
"""Gradients smaller than 10**-(MAX_STEP_INDEX + 1) get a unit step."""

MAX_STEP_TRIES_UP: int = 5
"""Number of larger steps tried before shrinking after a failed first move."""

CLIMB_REPORT_INTERVAL: int = 100
"""Log the current glide-path every this many climbing steps."""


# =============================================================================
# Monte Carlo
# =============================================================================

MC_CHUNK_SIZE: int = 250_000
"""Trials simulated per vectorised block within one worker."""

SAMPLING_BOXES: Dict[str, Tuple[float, float, float]] = {
    "g": (-0.15, 2.20, 6.20),
    "h1": (-0.10, 2.30, 5.70),
    "h2": (-0.15, 2.40, 5.85),
}
"""Rejection-sampling boxes (x_low, x_high, y_high) per special density."""


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_ALPHA_CLIMB: float = 0.50
"""Significance level of the non-inferiority test while climbing."""

DEFAULT_ALPHA_GRADIENT: float = 1.00
"""Significance level of the gradient zero test (1.0 disables it)."""

DEFAULT_RF_MAX: float = 2.75
"""Default largest ruin factor represented by the DP discretization."""

DEFAULT_SAMPLE_SIZE: int = 10 ** 7
"""Default Monte Carlo sample size."""

DEFAULT_PRECISION: int = 10 ** 4
"""Default number of DP buckets per ruin-factor unit."""

DEFAULT_INITIAL_CLIMB_STEPS: int = 50
"""Bounded initial ascent used to leave degenerate boundary regions."""

DEFAULT_CONFIG_DIR: str = "./config/"
CONTROL_FILE: str = "control.txt"
GLIDE_PATH_FILE: str = "gp.txt"
OUTPUT_FILE: str = "output.txt"
LOG_FILE: str = "glideopt.log"
