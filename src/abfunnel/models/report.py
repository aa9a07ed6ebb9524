# Copyright (c) Syntropy Systems
"""Pydantic models for aggregated experiment results."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from .base import FrozenModel


class ConfidenceInterval(FrozenModel):
    """Bounds of a binomial proportion interval."""

    lower: float = 0.0
    upper: float = 0.0
    margin: float = 0.0


class SignificanceResult(FrozenModel):
    """Outcome of a two-proportion significance test."""

    p_value: float
    significant: bool


class VariantMetrics(FrozenModel):
    """Funnel totals and rates derived from summed raw counts."""

    impressions: int = 0
    clicks: int = 0
    form_starts: int = 0
    form_completions: int = 0
    ctr: float = 0.0
    conversion_rate: float = 0.0
    avg_time_to_conversion: float = 0.0
    ctr_ci: ConfidenceInterval = Field(default_factory=ConfidenceInterval)
    conversion_ci: ConfidenceInterval = Field(default_factory=ConfidenceInterval)


class VariantSummary(FrozenModel):
    """Per-variant summary computed once at suite end."""

    variant: str
    project: str = "unknown"
    total_runs: int = 0
    passed: int = 0
    failed: int = 0
    avg_duration: float = 0.0
    metrics: VariantMetrics = Field(default_factory=VariantMetrics)


class VariantComparison(FrozenModel):
    """One non-control variant measured against the control."""

    ctr_uplift_pct: float = 0.0
    conversion_uplift_pct: float = 0.0
    time_change_pct: float = 0.0
    ctr_lift_pts: float = 0.0
    conversion_lift_pts: float = 0.0
    p_value: float = 1.0
    significant: bool = False


class ComparisonResult(FrozenModel):
    """Pairwise comparison of every variant against the control."""

    control_variant: str
    per_variant_uplift: dict[str, VariantComparison] = Field(default_factory=dict)
    winner: str
    winner_significant: bool = False
    verdict: Literal["winner", "inconclusive", "control"] = "inconclusive"


class ProjectOutcomes(FrozenModel):
    """Runner-assigned verdicts for one project, independent of funnels."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class SummaryReport(FrozenModel):
    """Everything written to ab-test-summary.json."""

    timestamp: str
    variants: list[VariantSummary] = Field(default_factory=list)
    comparison: ComparisonResult | None = None
    projects: dict[str, ProjectOutcomes] = Field(default_factory=dict)
    parse_failures: int = 0
