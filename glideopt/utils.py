"""General utilities for GlideOpt

Contents
--------
- Validation helpers (ensure_glide_path)
- Feasibility helpers (clamp_glide_path)
- Concurrency helpers (resolve_workers)
- Reporting helpers (format_glide_path, glide_path_frame)
- Logging setup (setup_logging)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from rich.logging import RichHandler

from .exceptions import GlidePathError
from .returns import ReturnModel

__all__ = [
    # Validation
    "ensure_glide_path",
    # Feasibility
    "clamp_glide_path",
    # Concurrency
    "resolve_workers",
    # Reporting
    "format_glide_path",
    "glide_path_frame",
    # Logging
    "setup_logging",
]

ArrayLike = Union[Sequence[float], np.ndarray]

# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def ensure_glide_path(glide_path: ArrayLike, horizon: int) -> np.ndarray:
    """
    Validate a glide-path and return it as a fresh float array.

    Raises
    ------
    GlidePathError
        If the glide-path is not 1-D, does not have exactly `horizon`
        entries, or contains non-finite values.
    """
    arr = np.array(glide_path, dtype=float)
    if arr.ndim != 1:
        raise GlidePathError(f"Glide-path must be 1-D, got shape {arr.shape}.")
    if arr.shape[0] != horizon:
        raise GlidePathError(
            f"Glide-path needs {horizon} allocations, got {arr.shape[0]}."
        )
    if not np.all(np.isfinite(arr)):
        raise GlidePathError("Glide-path contains non-finite allocations.")
    return arr


# ---------------------------------------------------------------------------
# Feasibility helpers
# ---------------------------------------------------------------------------

def clamp_glide_path(glide_path: ArrayLike, model: ReturnModel) -> np.ndarray:
    """Copy of the glide-path with every entry forced into the feasible range."""
    return np.asarray(model.clamp(np.array(glide_path, dtype=float)), dtype=float)


# ---------------------------------------------------------------------------
# Concurrency helpers
# ---------------------------------------------------------------------------

def resolve_workers(requested: Optional[int] = None) -> int:
    """
    Number of concurrent workers to use.

    0 or None selects the logical core count; the result is never below 2.

    Examples
    --------
    >>> resolve_workers(1)
    2
    >>> resolve_workers(8)
    8
    """
    if not requested:
        requested = os.cpu_count() or 2
    return max(2, int(requested))


# ---------------------------------------------------------------------------
# Reporting helpers
# ---------------------------------------------------------------------------

def format_glide_path(glide_path: ArrayLike, label: str = "GP", columns: int = 5) -> str:
    """
    Render an array as `GP[ii]=+0.xxxxxxxxxx` cells in column-major order.

    Positive entries carry an explicit "+"; indices are zero-padded.

    Examples
    --------
    >>> print(format_glide_path([0.5, 0.25, 0.1], columns=2))
    GP[00]=+0.5000000000 GP[02]=+0.1000000000
    GP[01]=+0.2500000000
    """
    gp = np.asarray(glide_path, dtype=float)
    n = gp.shape[0]
    if n == 0:
        return ""
    rows = -(-n // columns)
    width = max(2, len(str(n - 1)))
    lines = []
    for r in range(rows):
        cells = []
        for c in range(columns):
            i = c * rows + r
            if i < n:
                sign = "+" if gp[i] > 0 else ""
                cells.append(f"{label}[{i:0{width}d}]={sign}{gp[i]:.10f}")
        lines.append(" ".join(cells))
    return "\n".join(lines)


def glide_path_frame(glide_path: ArrayLike, gradient: Optional[ArrayLike] = None) -> pd.DataFrame:
    """Per time-point table of allocations (and gradient components if given)."""
    gp = np.asarray(glide_path, dtype=float)
    df = pd.DataFrame({"allocation": gp}, index=pd.RangeIndex(gp.shape[0], name="timepoint"))
    if gradient is not None:
        df["gradient"] = np.asarray(gradient, dtype=float)
    return df


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def setup_logging(level: str = "INFO", log_file: Optional[Path] = None, *, quiet: bool = False) -> None:
    """
    Configure the `glideopt` logger: rich console output plus an optional file.

    Calling it again replaces the handlers installed by the previous call.
    """
    root = logging.getLogger("glideopt")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level.upper())

    if not quiet:
        console = RichHandler(show_path=False, rich_tracebacks=True)
        console.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(fh)
