# Copyright (c) Syntropy Systems
"""Cross-run aggregation of funnel metrics by experiment variant.

The aggregator is fed by three runner lifecycle calls. Run-ended
notifications may come from any thread in any order; they are queued and
drained by a single consumer (the thread that began the suite). The
suite-end call is the only snapshot point: it queues a terminal sentinel,
drains up to it and computes the summaries exactly once.
"""
from __future__ import annotations

import logging
import queue
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from abfunnel.config import METRICS_ATTACHMENT
from abfunnel.emitter import ReportEmitter, determine_winner, rank_by_conversion, utc_timestamp
from abfunnel.models.report import (
    ComparisonResult,
    ProjectOutcomes,
    SummaryReport,
    VariantComparison,
    VariantMetrics,
    VariantSummary,
)
from abfunnel.models.run import RunAttachment
from abfunnel.stats import (
    DEFAULT_SIGNIFICANCE,
    calculate_uplift,
    chi_square_test,
    confidence_interval,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from abfunnel.config import ReportConfig
    from abfunnel.results import RunInfo, RunResult, SuiteInfo, SuiteOutcome

logger = logging.getLogger(__name__)


class AggregatorState(str, Enum):
    """Lifecycle of one aggregator instance."""

    INIT = "init"
    COLLECTING = "collecting"
    FINALIZED = "finalized"


@dataclass
class _RunEnded:
    run: RunInfo
    result: RunResult


class _SuiteEnded:
    """Terminal sentinel: nothing is queued after it."""


_Message = Union[_RunEnded, _SuiteEnded]


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _dominant_project(attachments: Sequence[RunAttachment]) -> str:
    counts = Counter(a.project for a in attachments)
    return min(counts, key=lambda p: (-counts[p], p))


def summarize_variant(
    variant: str,
    attachments: Sequence[RunAttachment],
    confidence_level: float = 0.95,
) -> VariantSummary:
    """Build a variant summary from its attachments.

    Rates come from the summed counters, never from averaging each run's
    own rate. ``passed`` counts runs whose funnel reached a completion,
    regardless of the runner's verdict for that run.
    """
    total_runs = len(attachments)
    if total_runs == 0:
        return VariantSummary(variant=variant)

    impressions = sum(a.metrics.impressions for a in attachments)
    clicks = sum(a.metrics.clicks for a in attachments)
    form_starts = sum(a.metrics.form_starts for a in attachments)
    form_completions = sum(a.metrics.form_completions for a in attachments)

    completed = [a for a in attachments if a.metrics.form_completions > 0]

    metrics = VariantMetrics(
        impressions=impressions,
        clicks=clicks,
        form_starts=form_starts,
        form_completions=form_completions,
        ctr=_ratio(clicks, impressions),
        conversion_rate=_ratio(form_completions, impressions),
        avg_time_to_conversion=_mean(
            [a.metrics.time_to_submit for a in completed if a.metrics.time_to_submit > 0]
        ),
        ctr_ci=confidence_interval(clicks, impressions, confidence_level),
        conversion_ci=confidence_interval(form_completions, impressions, confidence_level),
    )

    return VariantSummary(
        variant=variant,
        project=_dominant_project(attachments),
        total_runs=total_runs,
        passed=len(completed),
        failed=total_runs - len(completed),
        avg_duration=_mean([a.duration_ms for a in attachments]),
        metrics=metrics,
    )


def compare_variants(
    summaries: Sequence[VariantSummary],
    control_variant: str,
    significance_level: float = DEFAULT_SIGNIFICANCE,
    *,
    pearson: bool = False,
) -> ComparisonResult | None:
    """Compare every variant against the control.

    Returns None when fewer than two variants exist or the control has no
    summary.
    """
    if len(summaries) < 2:  # noqa: PLR2004
        return None

    control = next((s for s in summaries if s.variant == control_variant), None)
    if control is None:
        return None

    c = control.metrics
    per_variant: dict[str, VariantComparison] = {}
    for summary in summaries:
        if summary.variant == control_variant:
            continue
        v = summary.metrics
        significance = chi_square_test(
            c.form_completions,
            c.impressions,
            v.form_completions,
            v.impressions,
            alpha=significance_level,
            pearson=pearson,
        )
        per_variant[summary.variant] = VariantComparison(
            ctr_uplift_pct=calculate_uplift(c.ctr, v.ctr),
            conversion_uplift_pct=calculate_uplift(c.conversion_rate, v.conversion_rate),
            time_change_pct=calculate_uplift(
                c.avg_time_to_conversion, v.avg_time_to_conversion
            ),
            ctr_lift_pts=(v.ctr - c.ctr) * 100,
            conversion_lift_pts=(v.conversion_rate - c.conversion_rate) * 100,
            p_value=significance.p_value,
            significant=significance.significant,
        )

    winner = determine_winner(summaries)
    if winner == control_variant:
        return ComparisonResult(
            control_variant=control_variant,
            per_variant_uplift=per_variant,
            winner=winner,
            verdict="control",
        )

    winner_significant = per_variant[winner].significant
    return ComparisonResult(
        control_variant=control_variant,
        per_variant_uplift=per_variant,
        winner=winner,
        winner_significant=winner_significant,
        verdict="winner" if winner_significant else "inconclusive",
    )


class ReportAggregator:
    """Collects per-run attachments and produces the experiment report.

    Construct one instance per suite run; a finalized aggregator cannot be
    reused.
    """

    state: AggregatorState
    summaries_by_project: dict[str, list[str]]
    attachments_by_variant: dict[str, list[RunAttachment]]
    parse_failures: int
    report: SummaryReport | None

    def __init__(
        self,
        console: Console | None = None,
        emitter: ReportEmitter | None = None,
        *,
        write_reports: bool = True,
    ) -> None:
        self.console = console or Console()
        self.emitter = emitter
        self.write_reports = write_reports

        self.state = AggregatorState.INIT
        self.config: ReportConfig | None = None
        self.suite: SuiteInfo | None = None
        self.summaries_by_project = {}
        self.attachments_by_variant = {}
        self.parse_failures = 0
        self.report = None
        self.written: list[Path] = []

        self._queue: queue.SimpleQueue[_Message] = queue.SimpleQueue()
        self._consumer: int | None = None
        self._seen_run_ids: set[str] = set()

    def on_suite_begin(self, config: ReportConfig, suite: SuiteInfo | None = None) -> None:
        """Capture the config and reset the buckets."""
        if self.state is AggregatorState.FINALIZED:
            msg = "Aggregator already finalized; create a new one per suite"
            raise RuntimeError(msg)

        self.config = config
        self.suite = suite
        self.summaries_by_project = {}
        self.attachments_by_variant = {}
        self.parse_failures = 0
        self._seen_run_ids = set()
        self._consumer = threading.get_ident()
        if self.emitter is None:
            self.emitter = ReportEmitter(config.report_dir, config.confidence_level)

        if suite is not None and suite.total_runs is not None:
            self.console.print(
                f"\n[bold]Starting A/B test suite:[/bold] {suite.total_runs} runs\n"
            )

    def on_run_end(self, run: RunInfo, result: RunResult) -> None:
        """Queue one run-ended notification.

        Safe to call from any thread. Notifications from the consumer
        thread are filed immediately; others wait for the next drain.
        """
        if self.config is None:
            msg = "on_run_end called before on_suite_begin"
            raise RuntimeError(msg)
        if self.state is AggregatorState.FINALIZED:
            msg = "Cannot record runs on a finalized aggregator"
            raise RuntimeError(msg)

        self._queue.put(_RunEnded(run=run, result=result))
        if threading.get_ident() == self._consumer:
            _ = self._drain()

    def _drain(self) -> bool:
        """File queued notifications; return True once the sentinel is seen."""
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                return False
            if isinstance(message, _SuiteEnded):
                return True
            self._file(message.run, message.result)

    def _file(self, run: RunInfo, result: RunResult) -> None:
        if self.state is AggregatorState.INIT:
            self.state = AggregatorState.COLLECTING

        self.summaries_by_project.setdefault(run.project, []).append(result.status)

        attachment = result.find_attachment(METRICS_ATTACHMENT)
        if attachment is None:
            logger.debug("No metrics attachment for %s", run.title)
            return

        try:
            payload = RunAttachment.model_validate_json(attachment.body)
        except ValidationError as exc:
            self.parse_failures += 1
            logger.warning(
                "Failed to parse metrics for %s: %d validation error(s)",
                run.title,
                exc.error_count(),
            )
            return

        if payload.run_id is not None:
            if payload.run_id in self._seen_run_ids:
                logger.debug("Duplicate notification for %s ignored", payload.run_id)
                return
            self._seen_run_ids.add(payload.run_id)

        self.attachments_by_variant.setdefault(payload.variant, []).append(payload)
        self._print_run(run, result, payload)

    def _print_run(self, run: RunInfo, result: RunResult, payload: RunAttachment) -> None:
        title = escape(run.title or payload.run_title)
        if result.status == "passed":
            m = payload.metrics
            self.console.print(
                f"[green]PASS[/green] {title}  [dim]variant:[/dim] {escape(payload.variant)}"
                f"  [dim]conversion:[/dim] {m.overall_conversion * 100:.1f}%"
                f"  [dim]time:[/dim] {m.time_to_submit:.0f}ms"
            )
        else:
            status = escape(str(result.status or "unknown"))
            self.console.print(f"[red]FAIL[/red] {title} - {status}")

    def ordered_variants(self) -> list[str]:
        """Control first, then the rest by name, independent of arrival order."""
        control = self.config.control_variant if self.config else None
        names = sorted(self.attachments_by_variant)
        if control in self.attachments_by_variant:
            names.remove(control)
            names.insert(0, control)
        return names

    def on_suite_end(self, outcome: SuiteOutcome | None = None) -> SummaryReport:
        """Drain every queued run, then compute and emit the report once."""
        if self.config is None:
            msg = "on_suite_end called before on_suite_begin"
            raise RuntimeError(msg)
        if self.state is AggregatorState.FINALIZED:
            msg = "Aggregator already finalized"
            raise RuntimeError(msg)

        self._queue.put(_SuiteEnded())
        _ = self._drain()
        self.state = AggregatorState.FINALIZED

        config = self.config
        summaries = [
            summarize_variant(name, self.attachments_by_variant[name], config.confidence_level)
            for name in self.ordered_variants()
        ]

        comparison = None
        if len(summaries) >= 2:  # noqa: PLR2004
            comparison = compare_variants(
                summaries,
                config.control_variant,
                config.significance_level,
                pearson=config.pearson_chi_square,
            )
            if comparison is None:
                logger.warning(
                    "Control variant %r has no results; skipping comparison",
                    config.control_variant,
                )

        projects = {
            project: ProjectOutcomes(
                total=len(statuses),
                passed=statuses.count("passed"),
                failed=statuses.count("failed"),
                skipped=statuses.count("skipped"),
            )
            for project, statuses in sorted(self.summaries_by_project.items())
        }

        self.report = SummaryReport(
            timestamp=utc_timestamp(),
            variants=summaries,
            comparison=comparison,
            projects=projects,
            parse_failures=self.parse_failures,
        )

        self._print_summary(self.report)
        if self.write_reports and self.emitter is not None:
            self.written = self.emitter.emit(self.report)
            for path in self.written:
                self.console.print(f"[dim]report:[/dim] {path}")

        if outcome is not None:
            self.console.print(
                f"\nFinal status: {outcome.status}  "
                f"[dim]duration:[/dim] {outcome.duration_ms:.0f}ms"
            )

        return self.report

    def _print_summary(self, report: SummaryReport) -> None:
        self.console.print("\n[bold]A/B Test Results Summary[/bold]")

        if not report.variants:
            self.console.print("[yellow]No metrics attachments were collected.[/yellow]")
            return

        table = Table(title="Variants (highest conversion first)")
        table.add_column("Rank", style="dim")
        table.add_column("Variant")
        table.add_column("Runs", justify="right")
        table.add_column("Passed/Failed", justify="right")
        table.add_column("Impr.", justify="right")
        table.add_column("Clicks", justify="right")
        table.add_column("Starts", justify="right")
        table.add_column("Compl.", justify="right")
        table.add_column("CTR", justify="right")
        table.add_column("Conversion", justify="right")
        table.add_column("Avg Time", justify="right")

        for rank_idx, s in enumerate(rank_by_conversion(report.variants), 1):
            m = s.metrics
            name = escape(s.variant)
            table.add_row(
                str(rank_idx),
                f"[green]{name}[/green]" if rank_idx == 1 else name,
                str(s.total_runs),
                f"{s.passed}/{s.failed}",
                str(m.impressions),
                str(m.clicks),
                str(m.form_starts),
                str(m.form_completions),
                f"{m.ctr * 100:.2f}%",
                f"{m.conversion_rate * 100:.2f}%",
                f"{m.avg_time_to_conversion:.0f}ms",
            )

        self.console.print(table)

        if report.parse_failures:
            self.console.print(
                f"  [red]dropped:[/red] {report.parse_failures} unreadable attachment(s)"
            )

        comparison = report.comparison
        if comparison is None:
            return

        self.console.print("\n[bold]Variant comparison[/bold]")
        for name, u in comparison.per_variant_uplift.items():
            speed = "faster" if u.time_change_pct < 0 else "slower"
            flag = "[green]significant[/green]" if u.significant else "[dim]not significant[/dim]"
            self.console.print(
                f"  {escape(name)} vs {escape(comparison.control_variant)}: "
                f"CTR {u.ctr_uplift_pct:+.1f}%  "
                f"conversion {u.conversion_uplift_pct:+.1f}% "
                f"({u.conversion_lift_pts:+.1f} pts)  "
                f"time {abs(u.time_change_pct):.1f}% {speed}  "
                f"p={u.p_value:.4f} {flag}"
            )

        self.console.print(
            f"\n[green]Winner:[/green] {escape(comparison.winner)} "
            f"[dim]({comparison.verdict})[/dim]"
        )
