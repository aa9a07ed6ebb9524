# Copyright (c) Syntropy Systems
"""abfunnel sample-size command."""

import typer
from rich.console import Console

from abfunnel.stats import required_sample_size

console = Console()


def sample_size(
    baseline: float = typer.Option(
        ...,
        "--baseline",
        "-b",
        help="Baseline conversion rate, e.g. 0.1",
    ),
    mde: float = typer.Option(
        ...,
        "--mde",
        "-m",
        help="Minimum detectable effect, relative (0.2 for +20%)",
    ),
    alpha: float = typer.Option(0.05, "--alpha", help="Two-sided significance level"),
    power: float = typer.Option(0.8, "--power", help="Statistical power"),
    fixed_z: bool = typer.Option(
        False,
        "--fixed-z",
        help="Use the fixed 1.96/0.84 z-scores (ignores --alpha and --power)",
    ),
) -> None:
    """Estimate how many runs each variant needs.

    Example:
        abfunnel sample-size --baseline 0.1 --mde 0.2

    """
    try:
        n = required_sample_size(baseline, mde, alpha, power, fixed_z=fixed_z)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    target = baseline * (1 + mde)
    console.print(
        f"[bold]{n}[/bold] runs per variant "
        f"[dim](baseline {baseline * 100:.2f}% -> {target * 100:.2f}%)[/dim]"
    )
    if fixed_z:
        console.print("[dim]z-scores: 1.96 / 0.84[/dim]")
    else:
        console.print(f"[dim]alpha={alpha:g} power={power:g}[/dim]")
