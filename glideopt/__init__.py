"""
GlideOpt — Optimal Retirement Glide-Paths

Finds the static stock/bond glide-path that maximizes the probability of
never running out of money under a fixed inflation-adjusted withdrawal rate.

Modules
-------
- returns       : Closed-form return moments and special densities
- densities     : Density selector and closed-form CDF catalog
- dynamic       : Dynamic-programming ruin-probability backend
- simulation    : Monte Carlo ruin-probability backend
- engine        : Engine facade over both backends
- gradient      : Gradient by density substitution
- hessian       : Hessian by density substitution
- optimization  : Gradient ascent, Newton-Raphson and the run driver
- serialization : Control, glide-path and result files
- utils         : Shared utilities (validation, reporting, logging)

"""

__version__ = "0.1.0"

from .config import ModelParameters, DPConfig, SimulationConfig, RunConfig, AppSettings
from .returns import ReturnModel, Moments
from .densities import DensitySelector
from .engine import RuinProbabilityEngine
from .gradient import GradientBuilder, GradientResult
from .hessian import HessianBuilder, HessianResult
from .optimization import Climber, ClimbResult, GlidePathOptimizer, OptimizationResult
from . import utils
