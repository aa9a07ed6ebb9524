# Copyright (c) Syntropy Systems
"""pytest integration: per-test fixtures and the suite-level reporter.

Activate with ``-p abfunnel.plugin`` (or ``pytest_plugins``). Fixtures are
always available; aggregation and report files need ``--ab-report``.

Each test's attachments travel in ``item.user_properties``, which pytest
copies into every report and pytest-xdist ships back to the controlling
process. The teardown report of a test is its run-ended notification.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from rich.console import Console

from abfunnel.aggregator import ReportAggregator
from abfunnel.collector import EventTracker, MetricsCollector, generate_run_id
from abfunnel.config import EVENTS_ATTACHMENT, METRICS_ATTACHMENT, ReportConfig, load_config
from abfunnel.results import Attachment, RunInfo, RunResult, SuiteInfo, SuiteOutcome
from abfunnel.variants import VariantResolver
from abfunnel.web_vitals import WebVitalsSampler

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from _pytest.terminal import TerminalReporter

    from abfunnel.models.run import RunMetrics, Variant, WebVitals

ATTACHMENT_NAMES = (METRICS_ATTACHMENT, EVENTS_ATTACHMENT)

config_key = pytest.StashKey[ReportConfig]()
resolver_key = pytest.StashKey[VariantResolver]()
run_id_key = pytest.StashKey[str]()
call_failed_key = pytest.StashKey[bool]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("abfunnel", "A/B funnel metrics")
    group.addoption(
        "--ab-report",
        action="store_true",
        default=None,
        help="Aggregate A/B metrics attachments and write the comparison reports.",
    )
    group.addoption(
        "--ab-report-dir",
        default=None,
        help="Directory for ab-test-summary.json and ab-test-comparison.html.",
    )
    group.addoption(
        "--ab-control",
        default=None,
        help="Variant used as the baseline for uplift and significance.",
    )
    group.addoption(
        "--ab-project",
        default=None,
        help="Project identifier used to resolve each test's variant.",
    )
    group.addoption(
        "--ab-config",
        default=None,
        help="Path to an abfunnel YAML config file.",
    )
    group.addoption(
        "--ab-artifacts-dir",
        default=None,
        help="Also write each run's attachments under this directory.",
    )
    parser.addini("ab_report", "Enable A/B report aggregation.", type="bool", default=False)
    parser.addini("ab_project", "Default project identifier for variant resolution.")


def _resolve_path(config: pytest.Config, value: str | Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else config.rootpath / path


def _build_config(config: pytest.Config) -> ReportConfig:
    config_path = config.getoption("ab_config")
    report_config = load_config(_resolve_path(config, config_path) if config_path else None)

    report_dir = config.getoption("ab_report_dir")
    report_config.report_dir = _resolve_path(config, report_dir or report_config.report_dir)
    control = config.getoption("ab_control")
    if control:
        report_config.control_variant = control
    artifacts_dir = config.getoption("ab_artifacts_dir") or report_config.artifacts_dir
    if artifacts_dir:
        report_config.artifacts_dir = _resolve_path(config, artifacts_dir)

    return report_config


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "ab_project(name): project identifier used to pick the test's A/B variant",
    )

    report_config = _build_config(config)
    config.stash[config_key] = report_config
    config.stash[resolver_key] = VariantResolver.from_config(report_config)

    enabled = config.getoption("ab_report") or config.getini("ab_report")
    # Only the controlling process aggregates; xdist workers just attach.
    if enabled and not hasattr(config, "workerinput"):
        _ = config.pluginmanager.register(ABReportPlugin(config), "abfunnel-reporter")


class _TerminalStream:
    """File-like adapter so rich output goes through pytest's terminal."""

    def __init__(self, config: pytest.Config) -> None:
        self._config = config

    def write(self, text: str) -> int:
        reporter: TerminalReporter | None = self._config.pluginmanager.get_plugin(
            "terminalreporter"
        )
        if reporter is not None:
            reporter.write(text)
        return len(text)

    def flush(self) -> None:
        reporter = self._config.pluginmanager.get_plugin("terminalreporter")
        if reporter is not None:
            reporter.flush()

    def isatty(self) -> bool:
        return False


class _UserPropertiesSink:
    """Stores attachments on the test item so they reach the reports."""

    def __init__(self, item: pytest.Item) -> None:
        self._item = item

    def attach(self, attachment: Attachment) -> None:
        self._item.user_properties.append((attachment.name, attachment.text()))


def _project_for(item: pytest.Item) -> str:
    marker = item.get_closest_marker("ab_project")
    if marker is not None and marker.args:
        return str(marker.args[0])
    project = item.config.getoption("ab_project") or item.config.getini("ab_project")
    if project:
        return str(project)
    return item.nodeid


def _run_id_for(item: pytest.Item) -> str:
    if run_id_key not in item.stash:
        item.stash[run_id_key] = generate_run_id()
    return item.stash[run_id_key]


@pytest.fixture
def ab_variant(request: pytest.FixtureRequest) -> Variant:
    """The experiment variant this test runs under."""
    item = request.node
    project = _project_for(item)
    variant = request.config.stash[resolver_key].resolve(project)
    item.user_properties.append(("ab-project", project))
    item.user_properties.append(("ab-variant", variant.name))
    return variant


@pytest.fixture
def ab_collector(
    request: pytest.FixtureRequest,
    ab_variant: Variant,
) -> Generator[MetricsCollector, None, None]:
    """Funnel collector for this test; finalized at teardown even on failure."""
    item = request.node
    report_config = request.config.stash[config_key]
    collector = MetricsCollector(
        ab_variant,
        run_title=item.name,
        project=_project_for(item),
        run_id=_run_id_for(item),
        artifacts_dir=report_config.artifacts_dir,
    )
    yield collector

    failed = item.stash.get(call_failed_key, False)
    _ = collector.finalize(_UserPropertiesSink(item), status="failed" if failed else "passed")


@pytest.fixture
def ab_metrics(ab_collector: MetricsCollector) -> RunMetrics:
    """The mutable metrics record; increment counters directly."""
    return ab_collector.metrics


@pytest.fixture
def track_event(
    request: pytest.FixtureRequest,
    ab_variant: Variant,
) -> Generator[EventTracker, None, None]:
    """Callable event log: ``track_event("cta_click", {"from": "welcome"})``."""
    item = request.node
    tracker = EventTracker(
        ab_variant.name,
        run_id=_run_id_for(item),
        artifacts_dir=request.config.stash[config_key].artifacts_dir,
    )
    yield tracker
    _ = tracker.finalize(_UserPropertiesSink(item))


@pytest.fixture
def measure_web_vitals(request: pytest.FixtureRequest) -> Callable[[], WebVitals]:
    """Return a callable sampling Web Vitals from the Playwright ``page``."""
    window_ms = request.config.stash[config_key].web_vitals_window_ms
    sampler = WebVitalsSampler(window_ms)

    def measure() -> WebVitals:
        page = request.getfixturevalue("page")
        return sampler.sample(page)

    return measure


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None, None, None]:
    outcome = yield
    report: pytest.TestReport = outcome.get_result()
    if report.when == "call" and report.failed:
        item.stash[call_failed_key] = True


class ABReportPlugin:
    """Feeds pytest's lifecycle into a ReportAggregator owned by this session."""

    def __init__(self, config: pytest.Config) -> None:
        self.config = config
        self.report_config = config.stash[config_key]
        self.console = Console(file=_TerminalStream(config), soft_wrap=True)
        self.aggregator = ReportAggregator(console=self.console)
        self._outcomes: dict[str, str] = {}
        self._durations: dict[str, float] = {}
        self._started = time.monotonic()

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self._started = time.monotonic()
        self.aggregator.on_suite_begin(self.report_config, SuiteInfo(name=session.name))

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        nodeid = report.nodeid
        self._durations[nodeid] = self._durations.get(nodeid, 0.0) + report.duration

        if report.when == "call" or (report.when == "setup" and not report.passed):
            self._outcomes[nodeid] = report.outcome
        elif report.when == "teardown" and report.failed:
            self._outcomes[nodeid] = "failed"

        if report.when != "teardown":
            return

        attachments = [
            Attachment(name=name, body=str(value).encode("utf-8"))
            for name, value in report.user_properties
            if name in ATTACHMENT_NAMES
        ]
        project = next(
            (str(value) for name, value in report.user_properties if name == "ab-project"),
            None,
        )
        run = RunInfo(
            title=report.head_line or nodeid,
            project=project or _project_label(nodeid),
        )
        result = RunResult(
            status=self._outcomes.pop(nodeid, "passed"),
            duration_ms=self._durations.pop(nodeid, 0.0) * 1000,
            attachments=attachments,
        )
        self.aggregator.on_run_end(run, result)

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        status = "passed" if exitstatus == 0 else "failed"
        _ = self.aggregator.on_suite_end(
            SuiteOutcome(
                status=status,
                duration_ms=(time.monotonic() - self._started) * 1000,
            )
        )


def _project_label(nodeid: str) -> str:
    return nodeid.split("::", 1)[0]
