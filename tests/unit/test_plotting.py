"""
Unit tests for plotting.py module.

Tests glide-path and gradient figures on a hand-built optimization result.
"""

import numpy as np
import pandas as pd
import pytest

# Use non-interactive backend for testing
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from glideopt.gradient import GradientResult
from glideopt.optimization import OptimizationResult
from glideopt.plotting import plot_glide_path, plot_gradient


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def result():
    """Optimization result for a four-period glide-path."""
    gp = np.array([0.60, 0.55, 0.50, 0.45])
    grad = np.array([1e-4, -2e-4, 0.0, 3e-5])
    gradient = GradientResult(
        gradient=grad,
        raw=grad.copy(),
        scaling=np.ones(4),
        special_probabilities=np.full(4, 0.9),
        baseline=0.9,
        effective=np.abs(grad),
    )
    history = pd.DataFrame(
        [{"iteration": 0, "step": "start", "probability": 0.9,
          "max_effective_gradient": 2e-4, "min_eigenvalue": np.nan,
          "max_eigenvalue": np.nan, "regression": False}]
    ).set_index("iteration")
    return OptimizationResult(
        glide_path=gp,
        probability=0.9,
        gradient=gradient,
        hessian=None,
        iterations=0,
        converged=True,
        algorithm="ga",
        estimation="dp",
        history=history,
    )


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


# ============================================================================
# TESTS
# ============================================================================

class TestPlotGlidePath:
    """Tests for plot_glide_path."""

    def test_returns_fig_and_axes(self, result):
        fig, axes = plot_glide_path(result, lower_bound=0.3468, return_fig_ax=True)
        assert len(axes) == 2
        assert axes[0].get_title() == "Glide-Path"
        assert axes[1].get_title() == "Gradient at solution"
        assert "0.9000000000" in fig._suptitle.get_text()

    def test_without_gradient(self, result):
        fig, axes = plot_glide_path(result, show_gradient=False, return_fig_ax=True)
        assert len(axes) == 1

    def test_custom_title(self, result):
        fig, _ = plot_glide_path(result, title="Scenario A", return_fig_ax=True)
        assert fig._suptitle.get_text() == "Scenario A"

    def test_returns_none_by_default(self, result):
        assert plot_glide_path(result) is None

    def test_save_path(self, result, tmp_path):
        path = tmp_path / "gp.png"
        plot_glide_path(result, save_path=path)
        assert path.exists()
        assert path.stat().st_size > 0


class TestPlotGradient:
    """Tests for plot_gradient."""

    def test_creates_axes(self):
        ax = plot_gradient([0.1, -0.2, 0.3])
        assert len(ax.patches) == 3

    def test_uses_given_axes(self):
        _, ax = plt.subplots()
        out = plot_gradient(np.zeros(5), ax=ax, title="Zero")
        assert out is ax
        assert ax.get_title() == "Zero"
