"""
Serialization module for GlideOpt run files.

Purpose
-------
Reads and writes the plain-text files a run is driven by, plus JSON
equivalents of the run configuration:

- control.txt: whitespace-separated tokens
      μs σs² μb σb² σsb ER  T  WR  ε  alg  type  [N α1 α2 | precision RFMax]
  where the trailing group depends on type ("sim" or "dp")
- gp.txt: one allocation per line; the first T lines are used
- output.txt: success probability header plus the glide-path block

Design Principles
-----------------
- Type-safe: every configuration passes through `RunConfig` validation
- Human-readable: the text formats match the files users already keep
- Fail loudly: malformed files raise ConfigurationError / GlidePathError

Example
-------
>>> from pathlib import Path
>>> from glideopt.serialization import initialize_config_dir, load_run_config, load_glide_path
>>> initialize_config_dir(Path("./config"))
>>> run = load_run_config(Path("./config/control.txt"))
>>> gp = load_glide_path(Path("./config/gp.txt"), run.horizon)
"""

from __future__ import annotations

import json
import warnings
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import numpy as np
import pydantic

from .config import DPConfig, ModelParameters, RunConfig, SimulationConfig
from .constants import CONTROL_FILE, GLIDE_PATH_FILE
from .exceptions import ConfigurationError, GlidePathError
from .utils import format_glide_path

__all__ = [
    "DEFAULT_CONTROL",
    "DEFAULT_GLIDE_PATH",
    "parse_control_text",
    "control_text",
    "load_control_file",
    "load_run_config",
    "save_run_config",
    "load_glide_path",
    "save_glide_path",
    "format_result",
    "write_result",
    "initialize_config_dir",
]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

SCHEMA_VERSION = "0.1.0"

DEFAULT_CONTROL = (
    "0.082509 0.0402696529\n"
    "0.021409 0.0069605649\n"
    "0.0007344180\n"
    "0.00\n"
    "20 0.05 0.00001\n"
    "nr dp\n"
    "500 2.75\n"
)
"""Scenario shipped with a fresh config directory (Newton, dynamic program)."""

DEFAULT_GLIDE_PATH: List[float] = [round(0.90 - 0.02 * i, 2) for i in range(30)]
"""Thirty allocations declining linearly from 90% to 32% stocks."""


# ---------------------------------------------------------------------------
# Control file
# ---------------------------------------------------------------------------

def parse_control_text(text: str) -> RunConfig:
    """
    Build a RunConfig from control-file tokens.

    Raises
    ------
    ConfigurationError
        If tokens are missing, malformed, or fail validation.
    """
    tokens = text.split()
    try:
        values = [float(tok) for tok in tokens[:6]]
        params = ModelParameters(
            stock_mean=values[0],
            stock_variance=values[1],
            bond_mean=values[2],
            bond_variance=values[3],
            covariance=values[4],
            expense_ratio=values[5],
        )
        data: Dict[str, Any] = {
            "params": params,
            "horizon": int(tokens[6]),
            "withdrawal_rate": float(tokens[7]),
            "epsilon": float(tokens[8]),
            "algorithm": tokens[9],
            "estimation": tokens[10],
        }
        estimation = tokens[10].strip().lower()
        if estimation == "sim":
            data["simulation"] = SimulationConfig(
                sample_size=int(tokens[11]),
                alpha_climb=float(tokens[12]),
                alpha_gradient=float(tokens[13]),
            )
        elif estimation == "dp":
            data["dp"] = DPConfig(precision=int(tokens[11]), rf_max=float(tokens[12]))
        return RunConfig(**data)
    except IndexError as exc:
        raise ConfigurationError(
            f"Control file has {len(tokens)} tokens; expected "
            f"'μs σs² μb σb² σsb ER T WR ε alg type' followed by "
            f"'N α1 α2' (sim) or 'precision RFMax' (dp)."
        ) from exc
    except (ValueError, pydantic.ValidationError) as exc:
        raise ConfigurationError(f"Invalid control file: {exc}") from exc


def control_text(config: RunConfig) -> str:
    """Render a RunConfig in control-file layout (inverse of parse_control_text)."""
    p = config.params
    lines = [
        f"{p.stock_mean!r} {p.stock_variance!r}",
        f"{p.bond_mean!r} {p.bond_variance!r}",
        f"{p.covariance!r}",
        f"{p.expense_ratio!r}",
        f"{config.horizon} {config.withdrawal_rate!r} {config.epsilon!r}",
        f"{config.algorithm} {config.estimation}",
    ]
    if config.estimation == "sim":
        s = config.simulation
        lines.append(f"{s.sample_size} {s.alpha_climb!r} {s.alpha_gradient!r}")
    else:
        lines.append(f"{config.dp.precision} {config.dp.rf_max!r}")
    return "\n".join(lines) + "\n"


def load_control_file(path: Path) -> RunConfig:
    """Read a control file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Could not read file: {path}. {exc}") from exc
    return parse_control_text(text)


# ---------------------------------------------------------------------------
# JSON configuration
# ---------------------------------------------------------------------------

def save_run_config(config: RunConfig, path: Path) -> None:
    """
    Save a RunConfig as JSON.

    Examples
    --------
    >>> save_run_config(run, Path("run.json"))
    """
    path = Path(path)
    payload = {"schema_version": SCHEMA_VERSION, **config.model_dump(mode="json")}
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)


def load_run_config(path: Path) -> RunConfig:
    """
    Load a RunConfig from a JSON file (".json") or a control file (anything else).
    """
    path = Path(path)
    if path.suffix.lower() != ".json":
        return load_control_file(path)

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read file: {path}. {exc}") from exc

    schema_version = data.pop("schema_version", "0.0.0")
    if schema_version != SCHEMA_VERSION:
        warnings.warn(
            f"Config schema version {schema_version} differs from current "
            f"version {SCHEMA_VERSION}. May encounter compatibility issues.",
            UserWarning,
        )
    try:
        return RunConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Glide-path files
# ---------------------------------------------------------------------------

def load_glide_path(path: Path, horizon: int) -> np.ndarray:
    """
    Read the first `horizon` allocations of a glide-path file.

    Raises
    ------
    GlidePathError
        If the file cannot be read, holds a non-numeric line among the first
        `horizon`, or has fewer than `horizon` allocations.
    """
    path = Path(path)
    try:
        lines = [ln.strip() for ln in path.read_text(encoding="utf-8").splitlines()]
    except OSError as exc:
        raise GlidePathError(f"Could not read file: {path}. {exc}") from exc

    values = []
    for ln in lines:
        if len(values) == horizon:
            break
        if not ln:
            continue
        try:
            values.append(float(ln))
        except ValueError as exc:
            raise GlidePathError(f"File {path}: invalid allocation {ln!r}") from exc

    if len(values) < horizon:
        raise GlidePathError(
            f"File: {path} needs {horizon} initial asset allocations, but has fewer."
        )
    return np.array(values, dtype=float)


def save_glide_path(glide_path: Sequence[float], path: Path) -> None:
    """Write one allocation per line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{float(a):.10f}\n" for a in glide_path), encoding="utf-8")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def format_result(probability: float, glide_path: Sequence[float], label: str = "GP") -> str:
    """Success-probability header followed by the glide-path block."""
    return (
        f"--> Success probability for this Glide-Path = {round(float(probability), 12)}\n"
        f"{format_glide_path(glide_path, label=label)}\n"
    )


def write_result(path: Path, probability: float, glide_path: Sequence[float]) -> None:
    """Write the final probability and glide-path to `path`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n" + format_result(probability, glide_path), encoding="utf-8")


# ---------------------------------------------------------------------------
# Default files
# ---------------------------------------------------------------------------

def initialize_config_dir(config_dir: Union[str, Path]) -> List[Path]:
    """
    Create the config directory with default control and glide-path files.

    Existing files are left untouched. Returns the files created.
    """
    root = Path(config_dir)
    root.mkdir(parents=True, exist_ok=True)
    created = []

    control = root / CONTROL_FILE
    if not control.exists():
        control.write_text(DEFAULT_CONTROL, encoding="utf-8")
        created.append(control)

    gp = root / GLIDE_PATH_FILE
    if not gp.exists():
        save_glide_path(DEFAULT_GLIDE_PATH, gp)
        created.append(gp)

    return created
