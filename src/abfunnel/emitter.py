# Copyright (c) Syntropy Systems
"""Write aggregated summaries to JSON and HTML report files."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader, select_autoescape

from abfunnel.config import HTML_REPORT_NAME, JSON_REPORT_NAME
from abfunnel.models.report import SummaryReport

if TYPE_CHECKING:
    from collections.abc import Sequence

    from abfunnel.models.report import VariantSummary

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
NO_WINNER = "N/A"


def format_pct(value: float) -> str:
    """Format a 0-1 rate as a percentage."""
    return f"{value * 100:.2f}%"


def format_ms(value: float) -> str:
    """Format milliseconds with no decimals."""
    return f"{value:.0f}ms"


def format_signed(value: float) -> str:
    """Format a number with an explicit sign."""
    return f"{value:+.1f}"


templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)
templates.filters["format_pct"] = format_pct
templates.filters["format_ms"] = format_ms
templates.filters["format_signed"] = format_signed


def rank_by_conversion(summaries: Sequence[VariantSummary]) -> list[VariantSummary]:
    """Order summaries by conversion rate, highest first (stable on ties)."""
    return sorted(summaries, key=lambda s: s.metrics.conversion_rate, reverse=True)


def determine_winner(summaries: Sequence[VariantSummary]) -> str:
    """Pick the variant with the highest conversion rate.

    A plain point estimate; it is not gated on significance.
    """
    if len(summaries) < 2:  # noqa: PLR2004
        return NO_WINNER
    return rank_by_conversion(summaries)[0].variant


def utc_timestamp() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def as_report(source: SummaryReport | Sequence[VariantSummary]) -> SummaryReport:
    """Wrap bare summaries in a report with no comparison."""
    if isinstance(source, SummaryReport):
        return source
    return SummaryReport(timestamp=utc_timestamp(), variants=list(source))


class ReportEmitter:
    """Writes ab-test-summary.json and ab-test-comparison.html.

    Both outputs are overwritten on every call.
    """

    def __init__(self, report_dir: Path, confidence_level: float = 0.95) -> None:
        self.report_dir = report_dir
        self.confidence_level = confidence_level

    def _ensure_dir(self) -> None:
        self.report_dir.mkdir(parents=True, exist_ok=True)

    def generate_json_report(
        self,
        source: SummaryReport | Sequence[VariantSummary],
    ) -> Path:
        """Write the machine-readable summary."""
        report = as_report(source)
        self._ensure_dir()
        path = self.report_dir / JSON_REPORT_NAME
        _ = path.write_text(report.to_json(), encoding="utf-8")
        return path

    def render_html(self, source: SummaryReport | Sequence[VariantSummary]) -> str:
        """Render the comparison page."""
        report = as_report(source)
        template = templates.get_template("comparison.html")
        return template.render(
            report=report,
            ranked=rank_by_conversion(report.variants),
            comparison=report.comparison,
            winner=determine_winner(report.variants),
            confidence_label=f"{self.confidence_level * 100:g}%",
        )

    def generate_html_report(
        self,
        source: SummaryReport | Sequence[VariantSummary],
    ) -> Path:
        """Write the human-readable comparison page."""
        html = self.render_html(source)
        self._ensure_dir()
        path = self.report_dir / HTML_REPORT_NAME
        _ = path.write_text(html, encoding="utf-8")
        return path

    def emit(self, report: SummaryReport) -> list[Path]:
        """Write both reports, logging instead of raising on I/O errors."""
        written: list[Path] = []
        for generate in (self.generate_json_report, self.generate_html_report):
            try:
                written.append(generate(report))
            except OSError:
                logger.exception("Failed to write report to %s", self.report_dir)
        return written
