"""
Plotting utilities for GlideOpt results.

Purpose
-------
Visualizes an optimized glide-path: the stock allocation per time-point,
the feasible band [lower bound, 1], and optionally the gradient components
at the solution. Matplotlib is imported lazily so the numerical core never
pays for it.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import numpy as np

if TYPE_CHECKING:
    from .optimization import OptimizationResult

__all__ = ["plot_glide_path", "plot_gradient"]


def plot_glide_path(
    result: "OptimizationResult",
    *,
    lower_bound: Optional[float] = None,
    show_gradient: bool = True,
    title: Optional[str] = None,
    figsize=(12, 5),
    save_path: Optional[Union[str, Path]] = None,
    return_fig_ax: bool = False,
):
    """
    Plot the glide-path of an optimization result.

    Parameters
    ----------
    result : OptimizationResult
        Optimizer output.
    lower_bound : float, optional
        Feasible lower bound to shade (minimum-variance allocation + ε).
    show_gradient : bool, default True
        Add a second panel with the gradient at the solution.
    title : str, optional
        Figure title (defaults to the success probability).
    figsize : tuple
        Figure size.
    save_path : str or Path, optional
        Save the figure there.
    return_fig_ax : bool, default False
        If True, returns (fig, axes) for customization.

    Returns
    -------
    None or (fig, axes)
    """
    import matplotlib.pyplot as plt

    gp = np.asarray(result.glide_path, dtype=float)
    t = np.arange(gp.shape[0])
    n_panels = 2 if show_gradient else 1
    fig, axes = plt.subplots(1, n_panels, figsize=figsize, squeeze=False)
    axes = axes[0]

    ax = axes[0]
    ax.plot(t, gp, marker="o", linewidth=2.5, color="tab:blue", label="Stock allocation")
    ax.fill_between(t, 0, gp, alpha=0.15, color="tab:blue")
    if lower_bound is not None:
        ax.axhline(lower_bound, color="tab:red", linestyle="--", linewidth=1.2,
                   label=f"Lower bound ({lower_bound:.4f})")
    ax.set_ylim(0, 1.05)
    ax.set_xlabel("Time-point", fontsize=11)
    ax.set_ylabel("Fraction in stocks", fontsize=11)
    ax.set_title("Glide-Path", fontsize=12, fontweight="bold")
    ax.legend(loc="best", fontsize=10)
    ax.grid(True, alpha=0.3)

    if show_gradient:
        plot_gradient(result.gradient.gradient, ax=axes[1])

    fig.suptitle(
        title or f"Success probability = {result.probability:.10f}",
        fontsize=14, fontweight="bold",
    )
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, bbox_inches="tight", dpi=150)

    if return_fig_ax:
        return fig, axes


def plot_gradient(gradient, *, ax=None, title: str = "Gradient at solution"):
    """Bar chart of gradient components; returns the axes."""
    import matplotlib.pyplot as plt

    grad = np.asarray(gradient, dtype=float)
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 4))
    colors = np.where(grad >= 0, "tab:green", "tab:red")
    ax.bar(np.arange(grad.shape[0]), grad, color=colors, alpha=0.8)
    ax.axhline(0.0, color="black", linewidth=0.8)
    ax.set_xlabel("Time-point", fontsize=11)
    ax.set_ylabel("∂P/∂a", fontsize=11)
    ax.set_title(title, fontsize=12, fontweight="bold")
    ax.grid(True, alpha=0.3, axis="y")
    return ax
