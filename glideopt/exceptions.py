"""
Custom exceptions for GlideOpt.

Purpose
-------
Provides a unified exception hierarchy for consistent error handling
across all GlideOpt modules. All exceptions inherit from GlideOptError,
enabling catch-all handling at the outermost orchestration layer (the CLI),
which reports the diagnostic and exits with a non-zero status.

Exception Hierarchy
-------------------
GlideOptError (base)
├── ConfigurationError - Invalid configuration or parameters
├── ValidationError - Data validation failures
│   ├── GlidePathError - Glide-path length/value errors
│   └── SelectorError - Invalid density selector
├── NumericalError - Numerically unrecoverable regime
│   ├── DiscretizationError - Ruin-factor range (RFMax) too small
│   ├── MonotonicityError - Bucket probabilities not non-decreasing
│   └── DegenerateHessianError - Hessian diagonal undefined
└── OptimizationError - Optimizer failures
    ├── ClimbStalledError - Step-size schedule exhausted
    └── ConvergenceError - Iteration cap reached

Usage
-----
>>> from glideopt.exceptions import GlideOptError, DiscretizationError
>>>
>>> try:
...     result = optimizer.run(glide_path)
... except DiscretizationError as e:
...     print(f"Increase RFMax (t={e.timepoint}): {e}")
... except GlideOptError as e:
...     print(f"GlideOpt error: {e}")
"""

from __future__ import annotations

from typing import Optional, Sequence


class GlideOptError(Exception):
    """
    Base exception for all GlideOpt errors.

    Examples
    --------
    >>> try:
    ...     optimizer.run(glide_path)
    ... except GlideOptError as e:
    ...     logger.error(f"Optimization failed: {e}")
    """
    pass


class ConfigurationError(GlideOptError):
    """
    Invalid configuration or parameters.

    Raised when the run configuration is inconsistent, such as:
    - Starting ruin-factor bucket outside the discretized range
    - More concurrent workers than ruin-factor buckets
    - Unknown estimation method or algorithm

    Examples
    --------
    >>> raise ConfigurationError(
    ...     "Starting ruin-factor bucket 2 is outside 1..1. "
    ...     "Increase rf_max or precision."
    ... )
    """
    pass


class ValidationError(GlideOptError):
    """
    Data validation failures.

    Raised when input data fails validation checks, such as:
    - Invalid array shapes
    - Non-finite values
    """
    pass


class GlidePathError(ValidationError):
    """
    Glide-path errors.

    Raised when a glide-path does not have exactly T finite entries.

    Examples
    --------
    >>> raise GlidePathError(
    ...     f"Glide-path needs {T} allocations, got {len(glide_path)}."
    ... )
    """
    pass


class SelectorError(ValidationError):
    """
    Invalid density selector.

    Raised at the engine boundary when a selector references a time-point
    beyond the horizon, or requests both Hessian-diagonal densities at once.
    """
    pass


class NumericalError(GlideOptError):
    """
    Numerically unrecoverable regime.

    Continuing would produce a wrong probability presented as a right one,
    so these are never recovered automatically.
    """

    def __init__(self, message: str, *, timepoint: Optional[int] = None):
        super().__init__(message)
        self.timepoint = timepoint


class DiscretizationError(NumericalError):
    """
    Ruin-factor discretization range is insufficient.

    Raised when the last bucket's ruin probability is below 1.0 at some
    time-point. The fix is a larger RFMax.

    Examples
    --------
    >>> raise DiscretizationError(
    ...     "Timepoint t=12 has V[1374]=0.9998, which is < 1.00 (Increase RFMax).",
    ...     timepoint=12, value=0.9998,
    ... )
    """

    def __init__(self, message: str, *, timepoint: Optional[int] = None, value: float = float("nan")):
        super().__init__(message, timepoint=timepoint)
        self.value = value


class MonotonicityError(NumericalError):
    """
    Bucket ruin probabilities are not non-decreasing or exceed 1.

    Carries the offending bucket (1-based) with its value and the value of
    the preceding bucket.
    """

    def __init__(
        self,
        message: str,
        *,
        timepoint: Optional[int] = None,
        bucket: Optional[int] = None,
        previous: float = float("nan"),
        value: float = float("nan"),
    ):
        super().__init__(message, timepoint=timepoint)
        self.bucket = bucket
        self.previous = previous
        self.value = value


class DegenerateHessianError(NumericalError):
    """
    Hessian diagonal element does not exist.

    Raised when v(a)·v'' − 2·v'(a)² ≈ 0 at the allocation of a time-point.
    """

    def __init__(self, message: str, *, timepoint: Optional[int] = None, allocation: float = float("nan")):
        super().__init__(message, timepoint=timepoint)
        self.allocation = allocation


class OptimizationError(GlideOptError):
    """
    Optimizer failures.

    Raised when the glide-path optimizer cannot proceed.
    """
    pass


class ClimbStalledError(OptimizationError):
    """
    Gradient ascent cannot improve even after exhausting the step schedule.

    The procedure is stuck: either the glide-path sits on a boundary region
    where the problem is not well defined, or the estimation precision is not
    adequate for the requested epsilon.
    """

    def __init__(
        self,
        message: str,
        *,
        glide_path: Optional[Sequence[float]] = None,
        probability: float = float("nan"),
    ):
        super().__init__(message)
        self.glide_path = None if glide_path is None else list(glide_path)
        self.probability = probability


class ConvergenceError(OptimizationError):
    """
    Maximum number of optimizer iterations reached without convergence.
    """
    pass
