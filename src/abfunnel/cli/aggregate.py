# Copyright (c) Syntropy Systems
"""abfunnel aggregate command."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from abfunnel.aggregator import ReportAggregator
from abfunnel.config import METRICS_ATTACHMENT, load_config
from abfunnel.models.run import RunAttachment
from abfunnel.results import Attachment, RunInfo, RunResult, SuiteInfo, SuiteOutcome

console = Console()

METRICS_FILE_NAME = f"{METRICS_ATTACHMENT}.json"


def find_metrics_files(paths: list[Path]) -> list[Path]:
    """Expand files and directories into saved metrics attachments.

    Directories are searched recursively for ``ab-test-metrics.json``.
    """
    found: list[Path] = []
    for path in paths:
        if path.is_dir():
            found.extend(sorted(path.rglob(METRICS_FILE_NAME)))
        elif path.is_file():
            found.append(path)
    return found


def _replay(path: Path) -> tuple[RunInfo, RunResult]:
    body = path.read_bytes()
    title = path.parent.name if path.name == METRICS_FILE_NAME else path.stem
    project = "unknown"
    status = "passed"
    duration_ms = 0.0
    try:
        saved = RunAttachment.model_validate_json(body)
    except ValidationError:
        # Left for the aggregator to count as a parse failure
        pass
    else:
        title = saved.run_title or title
        project = saved.project
        status = saved.status or "passed"
        duration_ms = saved.duration_ms

    run = RunInfo(title=title, project=project)
    result = RunResult(
        status=status,
        duration_ms=duration_ms,
        attachments=[Attachment(name=METRICS_ATTACHMENT, body=body)],
    )
    return run, result


def aggregate(
    paths: list[Path] = typer.Argument(
        ...,
        help="Metrics attachment files or directories containing them",
    ),
    report_dir: Optional[Path] = typer.Option(
        None,
        "--report-dir",
        "-o",
        help="Where to write the JSON and HTML reports",
    ),
    control: Optional[str] = typer.Option(
        None,
        "--control",
        help="Baseline variant (default from config)",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to an abfunnel config.yaml",
    ),
) -> None:
    """Rebuild the A/B reports from saved metrics attachments.

    Replays each saved ``ab-test-metrics.json`` (for example from an
    artifacts directory) through a fresh aggregator, prints the ranked
    summary and writes both reports.

    Example:
        abfunnel aggregate ab-artifacts/ --report-dir ab-report

    """
    files = find_metrics_files(paths)
    if not files:
        console.print("[red]Error:[/red] No metrics attachments found")
        raise typer.Exit(1)

    config = load_config(config_path)
    if report_dir is not None:
        config.report_dir = report_dir
    if control:
        config.control_variant = control

    aggregator = ReportAggregator(console=console)
    aggregator.on_suite_begin(config, SuiteInfo(name="aggregate", total_runs=len(files)))
    for path in files:
        run, result = _replay(path)
        aggregator.on_run_end(run, result)
    report = aggregator.on_suite_end(SuiteOutcome())

    if report.parse_failures:
        console.print(
            f"[yellow]Skipped {report.parse_failures} unreadable file(s)[/yellow]"
        )
