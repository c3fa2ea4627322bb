"""
Command-Line Interface for GlideOpt.

Purpose
-------
Runs glide-path optimizations and evaluations from the control and
glide-path files of a config directory, without writing Python code.

Commands
--------
- optimize: Optimize the glide-path and write output.txt
- evaluate: Success probability (and gradient) of a glide-path
- config: Create, validate and display run configurations
- info: Package and dependency versions

Example Usage
-------------
    # Create ./config/control.txt and ./config/gp.txt, then optimize
    $ glideopt config create
    $ glideopt optimize

    # Evaluate a glide-path with 8 workers
    $ glideopt --workers 8 evaluate --glide-path my_gp.txt --gradient

    # Validate a JSON configuration
    $ glideopt config validate run.json
"""

from __future__ import annotations

import json
import sys
from importlib import metadata
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import AppSettings, RunConfig
from .constants import CONTROL_FILE, GLIDE_PATH_FILE, LOG_FILE, OUTPUT_FILE
from .exceptions import GlideOptError


@click.group()
@click.version_option(version=__version__, prog_name="glideopt")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option(
    "--config-dir", "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory with control.txt and gp.txt (default: ./config/)"
)
@click.option("--workers", "-w", type=int, default=None, help="Concurrent workers (0 = core count)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (default: GLIDEOPT_LOG_LEVEL or INFO)"
)
@click.pass_context
def main(
    ctx: click.Context,
    quiet: bool,
    config_dir: Optional[Path],
    workers: Optional[int],
    log_level: Optional[str],
) -> None:
    """
    GlideOpt - Optimal Retirement Glide-Path Finder.

    Maximizes the probability of never depleting a portfolio under a fixed
    withdrawal rate over stock/bond glide-paths.

    Use 'glideopt COMMAND --help' for command-specific help.
    """
    settings = AppSettings()
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["console"] = Console()
    ctx.obj["config_dir"] = config_dir or settings.config_dir
    ctx.obj["workers"] = workers if workers is not None else settings.workers
    ctx.obj["log_level"] = (log_level or settings.log_level).upper()
    ctx.obj["log_file"] = settings.log_file


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _start_logging(ctx: click.Context) -> None:
    from .utils import setup_logging

    log_file = ctx.obj["log_file"] or Path(ctx.obj["config_dir"]) / LOG_FILE
    setup_logging(ctx.obj["log_level"], log_file, quiet=ctx.obj["quiet"])


def _load_inputs(ctx: click.Context, config: Optional[Path], glide_path: Optional[Path]):
    from .serialization import initialize_config_dir, load_glide_path, load_run_config

    config_dir = Path(ctx.obj["config_dir"])
    if config is None or glide_path is None:
        initialize_config_dir(config_dir)
    run = load_run_config(config or config_dir / CONTROL_FILE)
    gp = load_glide_path(glide_path or config_dir / GLIDE_PATH_FILE, run.horizon)
    return run, gp


def _run_table(run: RunConfig, title: str) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="green", justify="right")
    p = run.params
    table.add_row("Stock mean / variance", f"{p.stock_mean:g} / {p.stock_variance:g}")
    table.add_row("Bond mean / variance", f"{p.bond_mean:g} / {p.bond_variance:g}")
    table.add_row("Covariance", f"{p.covariance:g}")
    table.add_row("Expense ratio", f"{p.expense_ratio:g}")
    table.add_row("Horizon", f"{run.horizon}")
    table.add_row("Withdrawal rate", f"{run.withdrawal_rate:g}")
    table.add_row("Epsilon", f"{run.epsilon:g}")
    table.add_row(
        "Algorithm",
        "Newton's Method" if run.algorithm == "nr" else "Gradient Ascent",
    )
    if run.estimation == "dp":
        table.add_row("Estimation", "Dynamic Program")
        table.add_row("Precision / RFMax", f"{run.dp.precision} / {run.dp.rf_max:g}")
    else:
        s = run.simulation
        table.add_row("Estimation", "Simulation")
        table.add_row("Sample size", f"{s.sample_size:,}")
        table.add_row("Alphas", f"{s.alpha_climb:g} / {s.alpha_gradient:g}")
    return table


# ---------------------------------------------------------------------------
# optimize / evaluate
# ---------------------------------------------------------------------------

@main.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Control file or JSON run configuration (default: <config-dir>/control.txt)"
)
@click.option(
    "--glide-path", "-g",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Initial glide-path file (default: <config-dir>/gp.txt)"
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Result file (default: <config-dir>/output.txt)"
)
@click.option(
    "--plot",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Save a glide-path plot to this file"
)
@click.pass_context
def optimize(
    ctx: click.Context,
    config: Optional[Path],
    glide_path: Optional[Path],
    output: Optional[Path],
    plot: Optional[Path],
) -> None:
    """
    Optimize a glide-path.

    Reads the run configuration and initial glide-path, iterates until the
    largest effective gradient component is below epsilon, and writes the
    final success probability and glide-path.

    Example:
        glideopt optimize -c control.txt -g gp.txt -o output.txt
    """
    console = ctx.obj["console"]
    quiet = ctx.obj["quiet"]

    from .optimization import GlidePathOptimizer
    from .serialization import write_result
    from .utils import format_glide_path

    try:
        run, gp = _load_inputs(ctx, config, glide_path)
    except GlideOptError as e:
        click.echo(f"Error loading inputs: {e}", err=True)
        sys.exit(1)

    _start_logging(ctx)
    if not quiet:
        console.print(_run_table(run, "Run Configuration"))

    try:
        optimizer = GlidePathOptimizer(run, workers=ctx.obj["workers"])
        result = optimizer.run(gp)
    except GlideOptError as e:
        click.echo(f"Error during optimization: {e}", err=True)
        sys.exit(1)

    output = output or Path(ctx.obj["config_dir"]) / OUTPUT_FILE
    write_result(output, result.probability, result.glide_path)

    if plot:
        import matplotlib
        matplotlib.use("Agg")
        from .plotting import plot_glide_path

        plot_glide_path(result, lower_bound=optimizer.engine.model.lower_bound, save_path=plot)

    if not quiet:
        table = Table(title="Optimization Results", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green", justify="right")
        table.add_row("Success probability", f"{result.probability:.12f}")
        table.add_row("Iterations", f"{result.iterations}")
        table.add_row("Max effective gradient", f"{result.max_effective_gradient:.3e}")
        if result.hessian is not None:
            table.add_row("Min eigenvalue", f"{result.hessian.min_eigenvalue:.6e}")
            table.add_row("Max eigenvalue", f"{result.hessian.max_eigenvalue:.6e}")
            table.add_row("Status", result.hessian.status())
        table.add_row("Solve time", f"{result.solve_time:.2f}s")
        console.print(table)
        console.print(Panel(format_glide_path(result.glide_path), title="Glide-Path"))
        click.echo(f"Results saved to {output}")
    else:
        click.echo(f"{result.probability:.12f}")


@main.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Control file or JSON run configuration (default: <config-dir>/control.txt)"
)
@click.option(
    "--glide-path", "-g",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Glide-path file (default: <config-dir>/gp.txt)"
)
@click.option("--gradient", is_flag=True, help="Also compute the gradient")
@click.pass_context
def evaluate(
    ctx: click.Context,
    config: Optional[Path],
    glide_path: Optional[Path],
    gradient: bool,
) -> None:
    """
    Evaluate a glide-path without optimizing.

    Example:
        glideopt evaluate -g gp.txt --gradient
    """
    console = ctx.obj["console"]
    quiet = ctx.obj["quiet"]

    from .engine import RuinProbabilityEngine
    from .gradient import GradientBuilder
    from .serialization import format_result
    from .utils import format_glide_path

    try:
        run, gp = _load_inputs(ctx, config, glide_path)
    except GlideOptError as e:
        click.echo(f"Error loading inputs: {e}", err=True)
        sys.exit(1)

    _start_logging(ctx)

    try:
        engine = RuinProbabilityEngine(run, workers=ctx.obj["workers"])
        gp = engine.feasible(gp)
        probability = engine.probability(gp)
        grad = None
        if gradient:
            grad = GradientBuilder(engine).build(
                gp, probability, alpha=run.simulation.alpha_gradient
            )
    except GlideOptError as e:
        click.echo(f"Error during evaluation: {e}", err=True)
        sys.exit(1)

    if quiet:
        click.echo(f"{probability:.12f}")
        return

    console.print(format_result(probability, gp))
    if grad is not None:
        console.print(Panel(format_glide_path(grad.gradient, label="Grd"), title="Gradient"))
        click.echo(f"Max effective gradient: {grad.max_effective:.6e}")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

@main.group()
def config() -> None:
    """
    Configuration management commands.

    Create, validate, and display run configuration files.
    """
    pass


@config.command("create")
@click.option(
    "--json", "json_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the default configuration as JSON to this file"
)
@click.pass_context
def config_create(ctx: click.Context, json_file: Optional[Path]) -> None:
    """
    Create default control.txt and gp.txt in the config directory.

    Existing files are kept.

    Example:
        glideopt --config-dir ./config config create --json run.json
    """
    console = ctx.obj["console"]
    quiet = ctx.obj["quiet"]

    from .serialization import (
        initialize_config_dir,
        load_control_file,
        save_run_config,
    )

    config_dir = Path(ctx.obj["config_dir"])
    created = initialize_config_dir(config_dir)
    if json_file is not None:
        try:
            run = load_control_file(config_dir / CONTROL_FILE)
        except GlideOptError as e:
            click.echo(f"Error loading inputs: {e}", err=True)
            sys.exit(1)
        save_run_config(run, json_file)
        created.append(json_file)

    if not quiet:
        if created:
            for path in created:
                console.print(f"[green]Created configuration file: {path}[/green]")
        else:
            console.print(f"[yellow]Configuration files already exist in {config_dir}[/yellow]")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def config_validate(ctx: click.Context, config_file: Path) -> None:
    """
    Validate a control file or JSON run configuration.

    Example:
        glideopt config validate config/control.txt
    """
    console = ctx.obj["console"]
    quiet = ctx.obj["quiet"]

    from .serialization import load_run_config

    try:
        run = load_run_config(config_file)
    except GlideOptError as e:
        click.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)

    if not quiet:
        console.print(Panel(
            f"[bold]Run Configuration Valid[/bold]\n\n"
            f"T={run.horizon}, WR={run.withdrawal_rate:g}, ε={run.epsilon:g}, "
            f"{run.algorithm}/{run.estimation}",
            title="Configuration Summary",
            border_style="green",
        ))
    else:
        click.echo("Configuration is valid")


@config.command("show")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "-f", type=click.Choice(["json", "table"]), default="table")
@click.pass_context
def config_show(ctx: click.Context, config_file: Path, format: str) -> None:
    """
    Display configuration details.

    Shows the full configuration in either JSON or table format.
    """
    console = ctx.obj["console"]

    from .serialization import load_run_config

    try:
        run = load_run_config(config_file)
    except GlideOptError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    if format == "json":
        click.echo(json.dumps(run.model_dump(mode="json"), indent=2))
    else:
        console.print(_run_table(run, f"Configuration: {config_file.name}"))


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """
    Display system and package information.

    Shows version numbers and installed dependencies.
    """
    console = ctx.obj["console"]

    info_lines = [
        f"GlideOpt Version: {__version__}",
        f"Python: {sys.version.split()[0]}",
    ]

    for name in ("numpy", "scipy", "pandas", "pydantic", "matplotlib", "rich", "click"):
        try:
            version = metadata.version(name)
        except metadata.PackageNotFoundError:
            version = "not installed"
        info_lines.append(f"{name}: {version}")

    console.print(Panel("\n".join(info_lines), title="System Information"))


if __name__ == "__main__":
    main()
