# Copyright (c) Syntropy Systems
"""abfunnel significance command."""
from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from abfunnel.stats import (
    DEFAULT_SIGNIFICANCE,
    calculate_uplift,
    chi_square_test,
    confidence_interval,
)

console = Console()


def significance(
    control_success: int = typer.Argument(..., help="Control conversions"),
    control_total: int = typer.Argument(..., help="Control impressions"),
    variant_success: int = typer.Argument(..., help="Variant conversions"),
    variant_total: int = typer.Argument(..., help="Variant impressions"),
    alpha: float = typer.Option(
        DEFAULT_SIGNIFICANCE,
        "--alpha",
        "-a",
        help="Significance threshold for the p-value",
    ),
    confidence: float = typer.Option(
        0.95,
        "--confidence",
        "-c",
        help="Confidence level for the intervals (0.95 or 0.99)",
    ),
    pearson: bool = typer.Option(
        False,
        "--pearson",
        help="Sum all four cells of the 2x2 table",
    ),
) -> None:
    """Test whether two conversion rates differ.

    Runs a chi-square test on the success cells of the 2x2 table (all four
    cells with --pearson) and prints a confidence interval for each rate.

    Example:
        abfunnel significance 20 150 30 150

    """
    for label, success, total in (
        ("control", control_success, control_total),
        ("variant", variant_success, variant_total),
    ):
        if total < 0 or not 0 <= success <= total:
            console.print(
                f"[red]Error:[/red] {label} counts must satisfy 0 <= success <= total "
                f"(got {success}/{total})"
            )
            raise typer.Exit(1)

    try:
        control_ci = confidence_interval(control_success, control_total, confidence)
        variant_ci = confidence_interval(variant_success, variant_total, confidence)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    result = chi_square_test(
        control_success,
        control_total,
        variant_success,
        variant_total,
        alpha=alpha,
        pearson=pearson,
    )

    control_rate = control_success / control_total if control_total else 0.0
    variant_rate = variant_success / variant_total if variant_total else 0.0

    table = Table(title=f"Conversion ({confidence * 100:g}% CI)")
    table.add_column("Group")
    table.add_column("Rate", justify="right")
    table.add_column("Lower", justify="right")
    table.add_column("Upper", justify="right")
    table.add_row(
        "control",
        f"{control_rate * 100:.2f}%",
        f"{control_ci.lower * 100:.2f}%",
        f"{control_ci.upper * 100:.2f}%",
    )
    table.add_row(
        "variant",
        f"{variant_rate * 100:.2f}%",
        f"{variant_ci.lower * 100:.2f}%",
        f"{variant_ci.upper * 100:.2f}%",
    )
    console.print(table)

    uplift = calculate_uplift(control_rate, variant_rate)
    console.print(f"\n[bold]Uplift:[/bold] {uplift:+.1f}%")
    console.print(f"[bold]p-value:[/bold] {result.p_value:.4f}")
    if result.significant:
        console.print(f"[green]Significant[/green] at alpha={alpha:g}")
    else:
        console.print(f"[yellow]Not significant[/yellow] at alpha={alpha:g}")
