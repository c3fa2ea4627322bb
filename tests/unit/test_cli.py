"""
Unit tests for cli.py module.

Tests the command-line interface with click's CliRunner against temporary
config directories.
"""

import json

import pytest
from click.testing import CliRunner

from glideopt.cli import main
from glideopt.engine import RuinProbabilityEngine
from glideopt.exceptions import GlideOptError
from glideopt.serialization import DEFAULT_CONTROL, load_control_file


SMALL_CONTROL = """0.082509 0.0402696529
0.021409 0.0069605649
0.0007344180
0.00
4 0.27 0.001
ga dp
100 4.0
"""

SMALL_GP = "0.60\n0.55\n0.50\n0.45\n"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def small_dir(tmp_path):
    """Config directory holding a four-period run."""
    (tmp_path / "control.txt").write_text(SMALL_CONTROL)
    (tmp_path / "gp.txt").write_text(SMALL_GP)
    return tmp_path


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------

class TestMain:
    """Tests for the command group."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "optimize" in result.output
        assert "evaluate" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_info(self, runner, tmp_path):
        result = runner.invoke(main, ["--config-dir", str(tmp_path), "info"])
        assert result.exit_code == 0
        assert "GlideOpt Version" in result.output
        assert "numpy" in result.output


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

class TestConfigCommands:
    """Tests for config create / validate / show."""

    def test_create(self, runner, tmp_path):
        root = tmp_path / "cfg"
        result = runner.invoke(main, ["--config-dir", str(root), "config", "create"])
        assert result.exit_code == 0
        assert (root / "control.txt").read_text() == DEFAULT_CONTROL
        assert (root / "gp.txt").exists()

    def test_create_json(self, runner, tmp_path):
        out = tmp_path / "run.json"
        result = runner.invoke(
            main, ["--config-dir", str(tmp_path), "config", "create", "--json", str(out)]
        )
        assert result.exit_code == 0
        data = json.loads(out.read_text())
        assert data["horizon"] == 20
        assert data["dp"]["precision"] == 500

    def test_create_json_from_malformed_control(self, runner, tmp_path):
        """A broken control.txt is reported, not raised."""
        (tmp_path / "control.txt").write_text("0.08 0.04")
        out = tmp_path / "run.json"
        result = runner.invoke(
            main, ["--config-dir", str(tmp_path), "config", "create", "--json", str(out)]
        )
        assert result.exit_code == 1
        assert not isinstance(result.exception, GlideOptError)
        assert "Error loading inputs" in result.output
        assert not out.exists()

    def test_create_existing(self, runner, small_dir):
        result = runner.invoke(main, ["--config-dir", str(small_dir), "config", "create"])
        assert result.exit_code == 0
        assert "already" in result.output
        assert (small_dir / "control.txt").read_text() == SMALL_CONTROL

    def test_validate(self, runner, small_dir):
        result = runner.invoke(
            main, ["--quiet", "config", "validate", str(small_dir / "control.txt")]
        )
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_invalid(self, runner, tmp_path):
        path = tmp_path / "control.txt"
        path.write_text("0.08 0.04")
        result = runner.invoke(main, ["config", "validate", str(path)])
        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output

    def test_show_json(self, runner, small_dir):
        result = runner.invoke(
            main, ["config", "show", str(small_dir / "control.txt"), "--format", "json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["horizon"] == 4
        assert data["algorithm"] == "ga"

    def test_show_table(self, runner, small_dir):
        result = runner.invoke(main, ["config", "show", str(small_dir / "control.txt")])
        assert result.exit_code == 0
        assert "Gradient Ascent" in result.output


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------

class TestEvaluate:
    """Tests for the evaluate command."""

    def test_quiet_prints_probability(self, runner, small_dir):
        result = runner.invoke(
            main, ["--quiet", "--workers", "2", "--config-dir", str(small_dir), "evaluate"]
        )
        assert result.exit_code == 0, result.output
        printed = float(result.output.strip().splitlines()[-1])

        engine = RuinProbabilityEngine(load_control_file(small_dir / "control.txt"), workers=2)
        expected = engine.probability([0.60, 0.55, 0.50, 0.45])
        assert printed == pytest.approx(expected, abs=1e-11)

    def test_gradient(self, runner, small_dir):
        result = runner.invoke(
            main, ["--workers", "2", "--config-dir", str(small_dir), "evaluate", "--gradient"]
        )
        assert result.exit_code == 0, result.output
        assert "Success probability for this Glide-Path" in result.output
        assert "Max effective gradient" in result.output
        assert (small_dir / "glideopt.log").exists()

    def test_short_glide_path_file(self, runner, small_dir):
        (small_dir / "gp.txt").write_text("0.6\n0.5\n")
        result = runner.invoke(main, ["--config-dir", str(small_dir), "evaluate"])
        assert result.exit_code == 1
        assert "but has fewer" in result.output

    def test_explicit_files(self, runner, small_dir, tmp_path):
        gp = tmp_path / "other_gp.txt"
        gp.write_text("0.7\n0.7\n0.7\n0.7\n")
        result = runner.invoke(main, [
            "--quiet", "--config-dir", str(small_dir), "evaluate",
            "--config", str(small_dir / "control.txt"), "--glide-path", str(gp),
        ])
        assert result.exit_code == 0, result.output
        assert 0.0 < float(result.output.strip().splitlines()[-1]) < 1.0
