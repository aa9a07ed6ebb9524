# Copyright (c) Syntropy Systems
"""End-to-end tests for the pytest plugin."""

from __future__ import annotations

import json

import pytest

from abfunnel.config import EVENTS_ATTACHMENT, HTML_REPORT_NAME, JSON_REPORT_NAME

FUNNEL_TESTS = """
import pytest


@pytest.mark.ab_project("widget-desktop")
@pytest.mark.parametrize("i", range(3))
def test_widget_checkout(ab_collector, ab_metrics, track_event, i):
    ab_metrics.impressions += 1
    track_event("cta_click", {"i": i})
    ab_metrics.clicks += 1
    ab_metrics.form_starts += 1
    ab_metrics.form_completions += 1
    ab_collector.mark("time_to_submit")


@pytest.mark.ab_project("control-desktop")
@pytest.mark.parametrize("i", range(2))
def test_control_checkout(ab_metrics, i):
    ab_metrics.impressions += 1
"""


def load_summary(pytester: pytest.Pytester, report_dir: str = "ab-report") -> dict:
    return json.loads((pytester.path / report_dir / JSON_REPORT_NAME).read_text())


class TestPluginReport:
    """Aggregation through a real pytest session."""

    def test_end_to_end(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(test_funnel=FUNNEL_TESTS)

        result = pytester.runpytest("-p", "abfunnel.plugin", "--ab-report")

        result.assert_outcomes(passed=5)
        result.stdout.fnmatch_lines(["*A/B Test Results Summary*", "*Winner:*widget*"])

        data = load_summary(pytester)
        variants = {v["variant"]: v for v in data["variants"]}
        assert [v["variant"] for v in data["variants"]] == ["control", "widget"]
        assert variants["widget"]["metrics"]["conversionRate"] == 1.0
        assert variants["widget"]["project"] == "widget-desktop"
        assert variants["control"]["metrics"]["conversionRate"] == 0.0
        assert data["comparison"]["winner"] == "widget"
        assert data["projects"]["widget-desktop"]["passed"] == 3
        assert (pytester.path / "ab-report" / HTML_REPORT_NAME).exists()

    def test_failed_run_keeps_partial_funnel(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(
            """
            import pytest

            @pytest.mark.ab_project("modal-mobile")
            def test_abandoned(ab_metrics):
                ab_metrics.impressions += 1
                ab_metrics.clicks += 1
                assert False, "form never opened"
            """
        )

        result = pytester.runpytest("-p", "abfunnel.plugin", "--ab-report")

        result.assert_outcomes(failed=1)
        data = load_summary(pytester)
        modal = data["variants"][0]
        assert modal["variant"] == "modal"
        assert modal["metrics"]["clicks"] == 1
        assert modal["failed"] == 1
        assert data["projects"]["modal-mobile"]["failed"] == 1

    def test_disabled_without_flag(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(test_funnel=FUNNEL_TESTS)

        result = pytester.runpytest("-p", "abfunnel.plugin")

        result.assert_outcomes(passed=5)
        assert not (pytester.path / "ab-report").exists()

    def test_ini_enables_report(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makeini(
            """
            [pytest]
            ab_report = true
            ab_project = modal-suite
            """
        )
        _ = pytester.makepyfile(
            """
            def test_variant(ab_variant, ab_metrics):
                assert ab_variant.name == "modal"
                ab_metrics.impressions += 1
            """
        )

        result = pytester.runpytest("-p", "abfunnel.plugin")

        result.assert_outcomes(passed=1)
        assert load_summary(pytester)["variants"][0]["variant"] == "modal"

    def test_command_line_options(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(test_funnel=FUNNEL_TESTS)

        result = pytester.runpytest(
            "-p",
            "abfunnel.plugin",
            "--ab-report",
            "--ab-report-dir",
            "reports",
            "--ab-control",
            "widget",
        )

        result.assert_outcomes(passed=5)
        data = load_summary(pytester, "reports")
        assert data["comparison"]["controlVariant"] == "widget"
        assert [v["variant"] for v in data["variants"]] == ["widget", "control"]

    def test_config_file(self, pytester: pytest.Pytester) -> None:
        config_dir = pytester.path / ".abfunnel"
        config_dir.mkdir()
        _ = (config_dir / "config.yaml").write_text(
            "report_dir: out\n"
            "default_variant: legacy\n"
            "variants:\n"
            "  - name: beta\n"
            "    match: [beta]\n"
            "  - name: legacy\n"
        )
        _ = pytester.makepyfile(
            """
            import pytest

            @pytest.mark.ab_project("beta-users")
            def test_beta(ab_variant, ab_metrics):
                assert ab_variant.name == "beta"
                ab_metrics.impressions += 1

            def test_unmatched(ab_variant):
                assert ab_variant.name == "legacy"
            """
        )

        result = pytester.runpytest("-p", "abfunnel.plugin", "--ab-report")

        result.assert_outcomes(passed=2)
        assert load_summary(pytester, "out")["variants"][0]["variant"] == "beta"

    def test_artifacts_dir(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(test_funnel=FUNNEL_TESTS)

        result = pytester.runpytest("-p", "abfunnel.plugin", "--ab-artifacts-dir", "artifacts")

        result.assert_outcomes(passed=5)
        runs = sorted((pytester.path / "artifacts").iterdir())
        assert len(runs) == 5
        events = list((pytester.path / "artifacts").glob(f"*/{EVENTS_ATTACHMENT}.json"))
        assert len(events) == 3
        timeline = json.loads(events[0].read_text())
        assert timeline[0]["name"] == "cta_click"
        assert timeline[0]["variant"] == "widget"


class TestWebVitalsFixture:
    """The measure_web_vitals fixture with a stand-in page."""

    def test_measure(self, pytester: pytest.Pytester) -> None:
        _ = pytester.makepyfile(
            """
            import pytest

            class Page:
                def evaluate(self, expression, arg=None):
                    assert "PerformanceObserver" in expression
                    return {"lcp": 900, "fid": 8, "cls": 0.1, "ttfb": 150}

            @pytest.fixture
            def page():
                return Page()

            def test_vitals(measure_web_vitals, ab_metrics):
                vitals = measure_web_vitals()
                ab_metrics.apply_vitals(vitals)
                assert ab_metrics.lcp == 900
                assert ab_metrics.ttfb == 150
            """
        )

        result = pytester.runpytest("-p", "abfunnel.plugin")

        result.assert_outcomes(passed=1)
