"""
Configuration management module for GlideOpt.

Purpose
-------
Centralized configuration using Pydantic models for type-safe parameter
management, validation, and serialization. A run is fully described by a
`RunConfig`: the return moments (`ModelParameters`), horizon, withdrawal
rate, convergence threshold, algorithm, estimation method with its own
sub-parameters, and the concurrency level.

Design Principles
-----------------
- Type-safe: Pydantic enforces types and validates ranges
- Immutable: Frozen models prevent accidental mutation during a run
- Serializable: Easy conversion to/from JSON for config files
- Environment-aware: `AppSettings` reads GLIDEOPT_* variables and .env files

Example
-------
>>> from glideopt.config import ModelParameters, DPConfig, RunConfig
>>> params = ModelParameters(
...     stock_mean=0.082509, stock_variance=0.0402696529,
...     bond_mean=0.021409, bond_variance=0.0069605649,
...     covariance=0.0007344180, expense_ratio=0.0,
... )
>>> run = RunConfig(
...     params=params, horizon=20, withdrawal_rate=0.05, epsilon=1e-5,
...     algorithm="nr", estimation="dp", dp=DPConfig(precision=500, rf_max=2.75),
... )
>>> run.dp.n_buckets
1375
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_ALPHA_CLIMB,
    DEFAULT_ALPHA_GRADIENT,
    DEFAULT_CONFIG_DIR,
    DEFAULT_INITIAL_CLIMB_STEPS,
    DEFAULT_PRECISION,
    DEFAULT_RF_MAX,
    DEFAULT_SAMPLE_SIZE,
)

__all__ = [
    "ModelParameters",
    "DPConfig",
    "SimulationConfig",
    "RunConfig",
    "AppSettings",
]


# ---------------------------------------------------------------------------
# Return moments
# ---------------------------------------------------------------------------

class ModelParameters(BaseModel):
    """
    Stock/bond return moments and expense ratio.

    All moments are real (inflation-adjusted) one-period arithmetic returns.

    Attributes
    ----------
    stock_mean, stock_variance : float
        Mean and variance of the stock return.
    bond_mean, bond_variance : float
        Mean and variance of the bond return.
    covariance : float
        Stock-bond return covariance.
    expense_ratio : float
        Fraction of the portfolio lost to expenses each period.

    Examples
    --------
    >>> p = ModelParameters(stock_mean=0.08, stock_variance=0.04,
    ...                     bond_mean=0.02, bond_variance=0.007,
    ...                     covariance=0.0007)
    >>> p.as_array().shape
    (6,)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    stock_mean: float = Field(description="Stock return mean")
    stock_variance: float = Field(gt=0, description="Stock return variance")
    bond_mean: float = Field(description="Bond return mean")
    bond_variance: float = Field(gt=0, description="Bond return variance")
    covariance: float = Field(description="Stock-bond return covariance")
    expense_ratio: float = Field(
        default=0.0,
        ge=0,
        lt=1,
        description="Expense ratio applied to gross return"
    )

    @model_validator(mode="after")
    def validate_covariance(self) -> "ModelParameters":
        """Ensure the stock/bond covariance matrix is positive definite."""
        det = self.stock_variance * self.bond_variance - self.covariance ** 2
        if det <= 0:
            raise ValueError(
                f"Covariance matrix must be positive definite "
                f"(σs²·σb² − σsb² = {det:.3e})"
            )
        return self

    def as_array(self) -> np.ndarray:
        """Return the six parameters in control-file order."""
        return np.array([
            self.stock_mean,
            self.stock_variance,
            self.bond_mean,
            self.bond_variance,
            self.covariance,
            self.expense_ratio,
        ])


# ---------------------------------------------------------------------------
# Estimation configuration
# ---------------------------------------------------------------------------

class DPConfig(BaseModel):
    """
    Dynamic-programming discretization of the ruin-factor axis.

    Attributes
    ----------
    precision : int
        Buckets per ruin-factor unit; bucket b represents b / precision.
    rf_max : float
        Largest ruin factor represented; must be large enough that the last
        bucket is ruined with certainty at every time-point.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    precision: int = Field(
        default=DEFAULT_PRECISION,
        ge=1,
        description="Buckets per ruin-factor unit"
    )
    rf_max: float = Field(
        default=DEFAULT_RF_MAX,
        gt=0,
        description="Maximum ruin factor of the discretization"
    )

    @property
    def n_buckets(self) -> int:
        """Total number of buckets B = RFMax × precision."""
        return int(self.rf_max * self.precision)


class SimulationConfig(BaseModel):
    """
    Monte Carlo estimation parameters.

    The multipliers scale `sample_size` for the different estimates taken
    during optimization (baseline probability, climbing candidates, gradient and
    Hessian elements, and the post-climb probability reset).

    Attributes
    ----------
    sample_size : int
        Base number of trials N.
    alpha_climb : float
        Significance level of the one-sided non-inferiority test in Climb.
    alpha_gradient : float
        Significance level of the two-sided zero test on gradient components.
        1.0 disables the test.
    seed : int, optional
        Run seed; each engine call derives independent worker streams from it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sample_size: int = Field(
        default=DEFAULT_SAMPLE_SIZE,
        ge=1,
        description="Base Monte Carlo sample size"
    )
    alpha_climb: float = Field(
        default=DEFAULT_ALPHA_CLIMB,
        gt=0,
        le=1,
        description="Non-inferiority significance level"
    )
    alpha_gradient: float = Field(
        default=DEFAULT_ALPHA_GRADIENT,
        gt=0,
        le=1,
        description="Gradient zero-test significance level"
    )
    baseline_multiplier: int = Field(default=4, ge=1)
    climb_multiplier: int = Field(default=2, ge=1)
    gradient_multiplier: int = Field(default=1, ge=1)
    hessian_multiplier: int = Field(default=1, ge=1)
    reset_multiplier: int = Field(default=2, ge=1)
    seed: Optional[int] = Field(
        default=None,
        description="Random seed for reproducibility"
    )


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

class RunConfig(BaseModel):
    """
    Complete description of one glide-path optimization run.

    Attributes
    ----------
    params : ModelParameters
        Return moments and expense ratio.
    horizon : int
        Number of time-points T.
    withdrawal_rate : float
        Fixed inflation-adjusted withdrawal rate; also the starting ruin factor.
    epsilon : float
        Convergence threshold on the maximum effective gradient component.
    algorithm : {"ga", "nr"}
        Gradient ascent or Newton-Raphson.
    estimation : {"dp", "sim"}
        Dynamic programming or Monte Carlo simulation.
    dp, simulation : DPConfig, SimulationConfig
        Sub-parameters of the estimation methods.
    workers : int
        Concurrent workers; 0 uses the logical core count.
    initial_climb_steps : int
        Cap on the initial bounded ascent.
    max_iterations : int, optional
        Cap on outer optimizer iterations (None = until convergence).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    params: ModelParameters
    horizon: int = Field(ge=1, description="Number of time-points T")
    withdrawal_rate: float = Field(gt=0, description="Inflation-adjusted withdrawal rate")
    epsilon: float = Field(gt=0, description="Convergence threshold")
    algorithm: Literal["ga", "nr"] = Field(default="nr")
    estimation: Literal["dp", "sim"] = Field(default="dp")
    dp: DPConfig = Field(default_factory=DPConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    workers: int = Field(default=0, ge=0, description="Concurrent workers (0 = auto)")
    initial_climb_steps: int = Field(default=DEFAULT_INITIAL_CLIMB_STEPS, ge=1)
    max_iterations: Optional[int] = Field(default=None, ge=1)

    @field_validator("algorithm", "estimation", mode="before")
    @classmethod
    def normalize_choice(cls, v):
        """Accept control-file spellings in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_start_bucket(self) -> "RunConfig":
        """Ensure the starting ruin factor falls inside the DP discretization."""
        if self.estimation == "dp":
            start = int(self.withdrawal_rate * self.dp.precision + 0.5)
            if not 1 <= start <= self.dp.n_buckets:
                raise ValueError(
                    f"Starting ruin-factor bucket {start} is outside 1..{self.dp.n_buckets} "
                    f"(withdrawal_rate={self.withdrawal_rate}, precision={self.dp.precision}, "
                    f"rf_max={self.dp.rf_max}). Increase rf_max or precision."
                )
        return self


# ---------------------------------------------------------------------------
# Application Settings (Environment Variables)
# ---------------------------------------------------------------------------

class AppSettings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Environment variables are prefixed with GLIDEOPT_
    (e.g., GLIDEOPT_LOG_LEVEL=DEBUG, GLIDEOPT_WORKERS=8).

    Attributes
    ----------
    log_level : str
        Logging level: "DEBUG", "INFO", "WARNING", "ERROR"
    log_file : Path, optional
        Log file; defaults to <config_dir>/glideopt.log when None.
    config_dir : Path
        Directory holding control.txt, gp.txt and output.txt.
    workers : int
        Default concurrency (0 = logical core count).

    Examples
    --------
    >>> settings = AppSettings()
    >>> settings.log_level
    'INFO'
    """

    model_config = SettingsConfigDict(
        env_prefix="GLIDEOPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Log file path"
    )
    config_dir: Path = Field(
        default=Path(DEFAULT_CONFIG_DIR),
        description="Directory with control and glide-path files"
    )
    workers: int = Field(
        default=0,
        ge=0,
        description="Concurrent workers (0 = logical core count)"
    )
