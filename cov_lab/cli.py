"""
cli.py - Rich Command Line Interface for Covariance Lab

Usage:
    cov-lab --help
    cov-lab rmt returns.csv --cutoff each --output rmt.npz
    cov-lab spiked returns.csv --norm operator --pivot 6
    cov-lab spikes returns.csv --method median-fitting
    cov-lab simulate --periods 500 --assets 100 --spike 25 --spike 10 --output returns.csv
    cov-lab losses
"""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

import numpy as np
import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import CovLabError

app = typer.Typer(
    name="cov-lab",
    help="Covariance Lab: RMT denoising and spiked-model shrinkage of covariance matrices",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


# =============================================================================
# ENUMS FOR CLI OPTIONS
# =============================================================================

class Cutoff(str, Enum):
    max = "max"
    each = "each"


class Treatment(str, Enum):
    average = "average"
    delete = "delete"


class FitCriterion(str, Enum):
    moments = "moments"
    density = "density"


class SpikeCounter(str, Enum):
    kn = "KNTest"
    median = "median-fitting"


class Norm(str, Enum):
    frobenius = "frobenius"
    operator = "operator"
    nuclear = "nuclear"


class InnovationType(str, Enum):
    normal = "normal"
    student_t = "student_t"


class OutputFormat(str, Enum):
    npz = "npz"
    json = "json"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def configure_logging(verbose: bool) -> None:
    """Route library logs to stderr; debug detail only with --verbose."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def load_returns(path: Path) -> np.ndarray:
    """Load a returns CSV with a header row (rows=time, cols=assets)."""
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)

    try:
        returns = np.loadtxt(path, delimiter=",", skiprows=1, ndmin=2)
    except ValueError as e:
        console.print(f"[red]Error:[/red] Could not parse {path}: {e}")
        raise typer.Exit(1)
    return returns


def fail(error: Exception) -> None:
    console.print(Panel(f"[red]{type(error).__name__}[/red]: {error}", border_style="red"))
    raise typer.Exit(1)


def print_spectrum(values: np.ndarray, n_signal: int, edge: float, title: str, n_show: int = 10):
    """Top of the spectrum with signal rows highlighted."""
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Eigenvalue", justify="right")
    table.add_column("Class")

    for i, v in enumerate(values[:n_show]):
        cls = "[green]signal[/green]" if i < n_signal else "[dim]noise[/dim]"
        table.add_row(str(i + 1), f"{v:.4f}", cls)
    if len(values) > n_show:
        table.add_row("...", f"({len(values) - n_show} more)", "")
    table.caption = f"bulk edge = {edge:.4f}"
    console.print(table)


def save(result, output: Optional[Path], format: OutputFormat) -> None:
    if output is None:
        return
    from .io import save_result

    save_result(result, output, format=format.value)
    console.print(f"\n  Saved to: [bold]{output}[/bold]")


# =============================================================================
# COMMANDS
# =============================================================================

@app.command()
def rmt(
    input_file: Path = typer.Argument(..., help="CSV file with returns (rows=time, cols=assets)"),
    cutoff: Cutoff = typer.Option(Cutoff.max, "--cutoff", "-c", help="Signal classification policy"),
    eigen_treat: Treatment = typer.Option(Treatment.average, "--treat", "-t", help="Noise eigenvalue treatment"),
    num_eig: Optional[int] = typer.Option(None, "--num-eig", "-k", help="Fixed signal count (max) or cap (each)"),
    fit_method: FitCriterion = typer.Option(FitCriterion.moments, "--fit", help="Noise-variance fit"),
    parallel: bool = typer.Option(False, "--parallel", help="Refit 'each' candidates on a thread pool"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save the result"),
    format: OutputFormat = typer.Option(OutputFormat.npz, "--format", "-f", help="Output format"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """
    Denoise a covariance matrix with the Marchenko-Pastur law.

    Example:
        cov-lab rmt returns.csv --cutoff each --treat delete -o rmt.npz
    """
    from .denoising import estimate_rmt

    configure_logging(verbose)
    console.print(Panel.fit("[bold]RMT Denoising[/bold]", border_style="blue"))

    returns = load_returns(input_file)
    T, N = returns.shape
    console.print(f"  Loaded returns: [cyan]{T}[/cyan] periods x [cyan]{N}[/cyan] assets")

    try:
        with console.status("[bold blue]Fitting Marchenko-Pastur..."):
            result = estimate_rmt(
                returns,
                cutoff=cutoff.value,
                eigen_treat=eigen_treat.value,
                num_eig=num_eig,
                fit_method=fit_method.value,
                parallel=parallel,
            )
    except CovLabError as e:
        fail(e)

    fit = result.mp_fit
    summary = Table(box=box.ROUNDED, show_header=False, title="MP Fit", title_style="bold cyan")
    summary.add_column("Property", style="dim")
    summary.add_column("Value", style="bold")
    summary.add_row("q", f"{fit.q:.4f}")
    summary.add_row("sigma^2", f"{fit.sigma2:.4f}")
    summary.add_row("Bulk", f"[{fit.lambda_min:.4f}, {fit.lambda_max:.4f}]")
    summary.add_row("Threshold", f"{fit.threshold:.4f}")
    summary.add_row("Signal eigenvalues", str(fit.n_signal))
    summary.add_row("Trace", f"{result.spectrum.trace:.4f} -> {np.trace(result.correlation):.4f}")
    console.print(summary)

    print_spectrum(result.spectrum.values, fit.n_signal, fit.lambda_max, "Correlation Spectrum")
    save(result, output, format)


@app.command()
def spiked(
    input_file: Path = typer.Argument(..., help="CSV file with returns (rows=time, cols=assets)"),
    method: SpikeCounter = typer.Option(SpikeCounter.kn, "--method", "-m", help="Spike-count method"),
    num_spikes: Optional[int] = typer.Option(None, "--spikes", "-k", help="Fixed spike count"),
    norm: Norm = typer.Option(Norm.frobenius, "--norm", "-n", help="Loss norm"),
    pivot: int = typer.Option(1, "--pivot", "-p", min=1, max=7, help="Loss pivot (1-7)"),
    statistical: Optional[str] = typer.Option(None, "--statistical", "-s", help="Statistical loss (overrides norm/pivot)"),
    alpha: float = typer.Option(0.01, "--alpha", help="KN test significance"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save the result"),
    format: OutputFormat = typer.Option(OutputFormat.npz, "--format", "-f", help="Output format"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """
    Shrink a covariance matrix under the spiked model.

    Example:
        cov-lab spiked returns.csv --norm operator --pivot 6
        cov-lab spiked returns.csv --statistical stein
    """
    from .shrinkage import estimate_spiked_covariance

    configure_logging(verbose)
    console.print(Panel.fit("[bold]Spiked Shrinkage[/bold]", border_style="blue"))

    returns = load_returns(input_file)
    T, N = returns.shape
    console.print(f"  Loaded returns: [cyan]{T}[/cyan] periods x [cyan]{N}[/cyan] assets")

    try:
        with console.status("[bold blue]Estimating spikes and shrinking..."):
            result = estimate_spiked_covariance(
                returns,
                num_spikes=num_spikes,
                method=method.value,
                norm=norm.value,
                pivot=pivot,
                statistical=statistical,
                alpha=alpha,
            )
    except (CovLabError, ValueError) as e:
        fail(e)

    table = Table(title=f"Spikes (loss: {result.loss})", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Sample", justify="right")
    table.add_column("De-biased", justify="right")
    table.add_column("Shrunk", justify="right", style="bold green")
    for i in range(result.n_spikes):
        table.add_row(
            str(i + 1),
            f"{result.spectrum.values[i] / result.sigma2:.4f}",
            f"{result.spike_estimates[i]:.4f}",
            f"{result.shrunk_eigenvalues[i]:.4f}",
        )
    console.print(table)
    console.print(
        f"  sigma^2 = [cyan]{result.sigma2:.4f}[/cyan], gamma = [cyan]{result.gamma:.4f}[/cyan] "
        "[dim](eigenvalues in units of sigma^2)[/dim]"
    )
    save(result, output, format)


@app.command()
def spikes(
    input_file: Path = typer.Argument(..., help="CSV file with returns (rows=time, cols=assets)"),
    method: SpikeCounter = typer.Option(SpikeCounter.kn, "--method", "-m", help="Spike-count method"),
    alpha: float = typer.Option(0.01, "--alpha", help="KN test significance"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """
    Count the eigenvalues above the Marchenko-Pastur bulk.

    Example:
        cov-lab spikes returns.csv --method median-fitting
    """
    from .decomposition import eigen_decomposition, sample_covariance
    from .spikes import estimate_spike_count

    configure_logging(verbose)
    returns = load_returns(input_file)
    T, N = returns.shape

    options = {"alpha": alpha} if method == SpikeCounter.kn else {}
    try:
        spectrum = eigen_decomposition(sample_covariance(returns))
        estimate = estimate_spike_count(spectrum.values, N / T, method.value, **options)
    except (CovLabError, ValueError) as e:
        fail(e)

    console.print(
        f"  [bold]{estimate.n_spikes}[/bold] spikes ({estimate.method.value}), "
        f"sigma^2 = [cyan]{estimate.sigma2:.4f}[/cyan]"
    )
    print_spectrum(spectrum.values, estimate.n_spikes, estimate.bulk_edge, "Covariance Spectrum")


@app.command()
def simulate(
    periods: int = typer.Option(500, "--periods", "-n", help="Number of time periods"),
    assets: int = typer.Option(100, "--assets", "-p", help="Number of assets"),
    spike: Optional[List[float]] = typer.Option(None, "--spike", help="Spike size (repeatable)"),
    sigma2: float = typer.Option(1.0, "--sigma2", help="Noise variance"),
    innovation: InnovationType = typer.Option(InnovationType.normal, "--innovation", "-i", help="Innovation distribution"),
    output: Path = typer.Option(Path("returns.csv"), "--output", "-o", help="Output CSV file"),
    seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Random seed for reproducibility"),
):
    """
    Write synthetic returns from the spiked covariance model.

    Example:
        cov-lab simulate -n 500 -p 100 --spike 25 --spike 10 --seed 42
    """
    from .simulation import simulate_spiked_returns

    spike = spike or []
    rng = np.random.default_rng(seed)
    try:
        returns, _ = simulate_spiked_returns(
            periods, assets, spikes=spike, sigma2=sigma2, rng=rng, innovation=innovation.value
        )
    except (CovLabError, ValueError) as e:
        fail(e)

    header = ",".join(f"asset_{i}" for i in range(assets))
    np.savetxt(output, returns, delimiter=",", header=header, comments="")
    console.print(
        f"  [green]✓[/green] Wrote {periods} x {assets} returns "
        f"({len(spike)} spikes) to [bold]{output}[/bold]"
    )


@app.command()
def losses():
    """List the registered shrinkage losses."""
    from .shrinkage import default_registry

    registry = default_registry()
    table = Table(title="Shrinkage Losses", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Description")
    table.add_column("Shrinker", justify="center")
    for name in registry.list_losses():
        info = registry.get(name)
        table.add_row(name, info.description, "closed form" if info.closed_form else "[dim]numeric[/dim]")
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(Panel(
        f"[bold cyan]Covariance Lab[/bold cyan] v{__version__}\n\n"
        "Random matrix theory denoising and optimal\n"
        "spiked-model shrinkage of covariance matrices.",
        border_style="cyan",
    ))


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
