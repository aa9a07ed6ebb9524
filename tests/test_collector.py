# Copyright (c) Syntropy Systems
"""Tests for per-run metrics collection and event tracking."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from abfunnel.collector import EventTracker, MetricsCollector, compute_rates, generate_run_id
from abfunnel.config import EVENTS_ATTACHMENT, METRICS_ATTACHMENT
from abfunnel.models.run import RunAttachment, RunMetrics, Variant, WebVitals
from abfunnel.results import RunResult


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


WIDGET = Variant(name="widget", feature_flags={"useWidgetPattern": True})


class TestComputeRates:
    """Tests for derived rate computation."""

    def test_rates(self) -> None:
        metrics = RunMetrics(impressions=4, clicks=2, form_starts=2, form_completions=1)
        compute_rates(metrics)

        assert metrics.ctr == 0.5
        assert metrics.start_rate == 1.0
        assert metrics.completion_rate == 0.5
        assert metrics.overall_conversion == 0.25

    def test_zero_denominators(self) -> None:
        metrics = RunMetrics()
        compute_rates(metrics)

        assert metrics.ctr == 0.0
        assert metrics.start_rate == 0.0
        assert metrics.completion_rate == 0.0
        assert metrics.overall_conversion == 0.0


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_finalize_attaches_payload(self) -> None:
        result = RunResult()
        collector = MetricsCollector(WIDGET, run_title="checkout", project="widget-desktop")
        collector.metrics.impressions += 1
        collector.metrics.clicks += 1

        attachment = collector.finalize(result)

        stored = result.find_attachment(METRICS_ATTACHMENT)
        assert stored is not None
        assert stored.content_type == "application/json"
        payload = json.loads(stored.text())
        assert payload["variant"] == "widget"
        assert payload["runTitle"] == "checkout"
        assert payload["project"] == "widget-desktop"
        assert payload["metrics"]["ctr"] == 1.0
        assert payload["metrics"]["formStarts"] == 0
        assert RunAttachment.model_validate_json(stored.body) == attachment

    def test_finalize_is_idempotent(self) -> None:
        result = RunResult()
        collector = MetricsCollector(WIDGET, sink=result)

        first = collector.finalize()
        second = collector.finalize()

        assert first is second
        assert collector.finalized
        assert len(result.attachments) == 1

    def test_mark_sets_timer_once(self) -> None:
        clock = FakeClock()
        collector = MetricsCollector(WIDGET, clock=clock)

        clock.advance(0.25)
        assert collector.mark("time_to_engage") == pytest.approx(250)
        clock.advance(1.0)
        assert collector.mark("time_to_engage") == pytest.approx(250)
        assert collector.metrics.time_to_engage == pytest.approx(250)

    def test_mark_unknown_timer(self) -> None:
        collector = MetricsCollector(WIDGET)
        with pytest.raises(ValueError, match="Unknown timer"):
            _ = collector.mark("time_to_lunch")

    def test_duration_recorded(self) -> None:
        clock = FakeClock()
        collector = MetricsCollector(WIDGET, clock=clock)
        clock.advance(2.5)

        attachment = collector.finalize()
        assert attachment.duration_ms == pytest.approx(2500)

    def test_context_manager_finalizes_on_failure(self) -> None:
        """A failed run still reports its partial funnel."""
        result = RunResult()
        with pytest.raises(RuntimeError), MetricsCollector(WIDGET, sink=result) as collector:
            collector.metrics.impressions += 1
            collector.metrics.clicks += 1
            raise RuntimeError("element not found")

        stored = result.find_attachment(METRICS_ATTACHMENT)
        assert stored is not None
        payload = RunAttachment.model_validate_json(stored.body)
        assert payload.status == "failed"
        assert payload.metrics.clicks == 1
        assert payload.metrics.form_completions == 0

    def test_context_manager_passed(self) -> None:
        result = RunResult()
        with MetricsCollector(WIDGET, sink=result) as collector:
            collector.metrics.impressions += 1

        assert collector.finalize().status == "passed"

    def test_rates_frozen_after_finalize(self) -> None:
        collector = MetricsCollector(WIDGET)
        collector.metrics.impressions = 2
        collector.metrics.clicks = 1
        attachment = collector.finalize()

        collector.metrics.clicks += 1
        assert attachment.metrics.ctr == 0.5
        assert collector.finalize().metrics.ctr == 0.5

    def test_device_and_vitals(self) -> None:
        collector = MetricsCollector(WIDGET)
        collector.record_device({"width": 1280, "height": 720}, "Mozilla/5.0")
        collector.metrics.apply_vitals(WebVitals(lcp=1200.5, cls=0.02))

        payload = json.loads(collector.finalize().to_json())
        assert payload["metrics"]["viewport"] == {"width": 1280, "height": 720}
        assert payload["metrics"]["userAgent"] == "Mozilla/5.0"
        assert payload["metrics"]["lcp"] == 1200.5
        assert payload["metrics"]["fid"] == 0.0

    def test_artifacts_written(self, temp_dir: Path) -> None:
        collector = MetricsCollector(WIDGET, run_id="run-1", artifacts_dir=temp_dir)
        _ = collector.finalize()

        path = temp_dir / "run-1" / f"{METRICS_ATTACHMENT}.json"
        assert path.exists()
        assert json.loads(path.read_text())["runId"] == "run-1"

    def test_run_ids_are_unique(self) -> None:
        ids = {generate_run_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(run_id.startswith("run-") for run_id in ids)


class TestEventTracker:
    """Tests for EventTracker."""

    def test_events_in_call_order(self) -> None:
        clock = FakeClock()
        tracker = EventTracker("widget", clock=clock)

        _ = tracker.track_event("page_view")
        clock.advance(0.5)
        _ = tracker("cta_click", {"from": "welcome"})

        events = tracker.events
        assert [e.name for e in events] == ["page_view", "cta_click"]
        assert events[0].timestamp == 0
        assert events[1].timestamp == pytest.approx(500)
        assert events[1].data == {"from": "welcome"}
        assert all(e.variant == "widget" for e in events)

    def test_finalize_attaches_timeline(self) -> None:
        result = RunResult()
        tracker = EventTracker("modal")
        _ = tracker.track_event("form_start")

        events = tracker.finalize(result)

        assert len(events) == 1
        stored = result.find_attachment(EVENTS_ATTACHMENT)
        assert stored is not None
        payload = json.loads(stored.text())
        assert payload[0]["name"] == "form_start"
        assert payload[0]["variant"] == "modal"
        assert "timestamp" in payload[0]

    def test_empty_log_not_attached(self) -> None:
        result = RunResult()
        assert EventTracker("modal").finalize(result) == []
        assert result.attachments == []

    def test_no_events_after_finalize(self) -> None:
        tracker = EventTracker("modal")
        _ = tracker.finalize()
        with pytest.raises(RuntimeError, match="finished run"):
            _ = tracker.track_event("late")

    def test_events_logged_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        tracker = EventTracker("widget")
        with caplog.at_level(logging.DEBUG, logger="abfunnel.collector"):
            _ = tracker.track_event("cta_click")

        assert "[AB-TEST:widget] cta_click" in caplog.text

    def test_artifacts_written(self, temp_dir: Path) -> None:
        tracker = EventTracker("widget", run_id="run-2", artifacts_dir=temp_dir)
        _ = tracker.track_event("page_view")
        _ = tracker.finalize()

        assert (temp_dir / "run-2" / f"{EVENTS_ATTACHMENT}.json").exists()
