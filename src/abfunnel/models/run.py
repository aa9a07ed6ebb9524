# Copyright (c) Syntropy Systems
"""Pydantic models for per-run instrumentation payloads."""

from __future__ import annotations

import math

from pydantic import AliasChoices, Field, field_validator

from .base import AbBaseModel, FrozenModel, JSONValue

TIMER_FIELDS = ("time_to_engage", "time_to_form_start", "time_to_submit")
VITALS_FIELDS = ("lcp", "fid", "cls", "ttfb")


class Variant(FrozenModel):
    """A named treatment group. Identity is the name."""

    name: str
    description: str = ""
    feature_flags: dict[str, bool] = Field(default_factory=dict)
    weight: float = 0.5


class Viewport(AbBaseModel):
    """Browser viewport size in CSS pixels."""

    width: int
    height: int


class WebVitals(AbBaseModel):
    """Snapshot of browser performance metrics."""

    lcp: float = 0.0
    fid: float = 0.0
    cls: float = 0.0
    ttfb: float = 0.0

    @field_validator("lcp", "fid", "cls", "ttfb", mode="before")
    @classmethod
    def _missing_as_zero(cls, value: object) -> object:
        # Metrics that never fired come back as null/undefined/NaN.
        if value is None:
            return 0.0
        if isinstance(value, float) and math.isnan(value):
            return 0.0
        return value


class RunMetrics(AbBaseModel):
    """Funnel counters, timings and derived rates for one run.

    Counters are incremented directly by the run body. Derived rates are
    written by the collector at finalize time only.
    """

    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    form_starts: int = Field(default=0, ge=0)
    form_completions: int = Field(default=0, ge=0)

    ctr: float = 0.0
    start_rate: float = 0.0
    completion_rate: float = 0.0
    overall_conversion: float = 0.0

    time_to_engage: float = 0.0
    time_to_form_start: float = 0.0
    time_to_submit: float = 0.0

    lcp: float = 0.0
    fid: float = 0.0
    cls: float = 0.0
    ttfb: float = 0.0

    dismissals: int = Field(default=0, ge=0)
    back_button_uses: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    form_retries: int = Field(default=0, ge=0)

    viewport: Viewport | None = None
    user_agent: str | None = None

    def apply_vitals(self, vitals: WebVitals) -> None:
        """Copy a web-vitals snapshot onto this record."""
        for name in VITALS_FIELDS:
            setattr(self, name, getattr(vitals, name))


class RunEvent(AbBaseModel):
    """One entry in a run's event log."""

    name: str
    timestamp: float = Field(
        validation_alias=AliasChoices("timestamp", "relativeTimestampMs"),
    )
    data: dict[str, JSONValue] | None = None
    variant: str


class RunAttachment(AbBaseModel):
    """Serialized metrics payload a finished run hands to the aggregator."""

    variant: str
    metrics: RunMetrics
    timestamp: int
    run_title: str = Field(
        default="",
        validation_alias=AliasChoices("runTitle", "testTitle", "run_title"),
    )
    project: str = "unknown"
    run_id: str | None = None
    status: str | None = None
    duration_ms: float = 0.0
