# Copyright (c) Syntropy Systems
"""Pytest fixtures for abfunnel tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from abfunnel.collector import compute_rates
from abfunnel.config import METRICS_ATTACHMENT, ReportConfig
from abfunnel.models.run import RunAttachment, RunMetrics
from abfunnel.results import Attachment, RunInfo, RunResult

RunFactory = Callable[..., "tuple[RunInfo, RunResult]"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_dir(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run inside an empty project with no user-level config."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(temp_dir)
    return temp_dir


@pytest.fixture
def report_config(temp_dir: Path) -> ReportConfig:
    """Default config writing reports into the temp directory."""
    return ReportConfig(report_dir=temp_dir / "ab-report")


def build_attachment(
    variant: str,
    *,
    title: str = "",
    project: str = "e2e",
    run_id: str | None = None,
    status: str = "passed",
    duration_ms: float = 0.0,
    **counters: float,
) -> RunAttachment:
    """Build a finalized metrics payload from raw counters and timers."""
    metrics = RunMetrics(**counters)
    compute_rates(metrics)
    return RunAttachment(
        variant=variant,
        metrics=metrics,
        timestamp=1700000000000,
        run_title=title or f"{variant} run",
        project=project,
        run_id=run_id,
        status=status,
        duration_ms=duration_ms,
    )


@pytest.fixture
def make_run() -> RunFactory:
    """Factory for (RunInfo, RunResult) pairs carrying a metrics attachment."""

    def factory(
        variant: str,
        *,
        status: str = "passed",
        body: bytes | None = None,
        **kwargs: float | str | None,
    ) -> tuple[RunInfo, RunResult]:
        attachment = build_attachment(variant, status=status, **kwargs)  # pyright: ignore[reportArgumentType]
        if body is None:
            body = attachment.to_json().encode("utf-8")
        run = RunInfo(title=attachment.run_title, project=attachment.project)
        result = RunResult(
            status=status,
            duration_ms=attachment.duration_ms,
            attachments=[Attachment(name=METRICS_ATTACHMENT, body=body)],
        )
        return run, result

    return factory
