# Copyright (c) Syntropy Systems
"""Per-run instrumentation: funnel metrics and the event timeline."""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import TypeAdapter
from typing_extensions import Self

from abfunnel.config import EVENTS_ATTACHMENT, METRICS_ATTACHMENT
from abfunnel.models.run import TIMER_FIELDS, RunAttachment, RunEvent, RunMetrics, Viewport
from abfunnel.results import Attachment

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path
    from types import TracebackType

    from abfunnel.models.base import JSONValue
    from abfunnel.models.run import Variant
    from abfunnel.results import AttachmentSink

logger = logging.getLogger(__name__)
_EVENTS_ADAPTER = TypeAdapter(list[RunEvent])


def generate_run_id() -> str:
    """Generate a unique, sortable run ID."""
    now = datetime.now(timezone.utc)
    rand = str(uuid.uuid4())[:6]
    return f"run-{now.strftime('%Y%m%d-%H%M%S')}-{rand}"


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def compute_rates(metrics: RunMetrics) -> None:
    """Fill in the derived funnel rates from the raw counters."""
    metrics.ctr = _ratio(metrics.clicks, metrics.impressions)
    metrics.start_rate = _ratio(metrics.form_starts, metrics.clicks)
    metrics.completion_rate = _ratio(metrics.form_completions, metrics.form_starts)
    metrics.overall_conversion = _ratio(metrics.form_completions, metrics.impressions)


def write_artifact(artifacts_dir: Path, run_id: str, name: str, body: bytes) -> Path:
    """Write one attachment body under ``<artifacts_dir>/<run_id>/<name>.json``."""
    run_dir = artifacts_dir / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / f"{name}.json"
    _ = path.write_bytes(body)
    return path


class MetricsCollector:
    """Funnel instrumentation for a single run.

    The run body mutates ``metrics`` directly (``metrics.clicks += 1``).
    Timers are set once through :meth:`mark`. At teardown :meth:`finalize`
    computes the derived rates and attaches the serialized payload to the
    run's result. Used as a context manager, finalize runs on every exit
    path so a failed run still reports its partial funnel.
    """

    variant: Variant
    run_title: str
    project: str
    run_id: str
    metrics: RunMetrics

    def __init__(  # noqa: PLR0913
        self,
        variant: Variant,
        run_title: str = "",
        project: str = "unknown",
        run_id: str | None = None,
        sink: AttachmentSink | None = None,
        artifacts_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.variant = variant
        self.run_title = run_title
        self.project = project
        self.run_id = run_id or generate_run_id()
        self.metrics = RunMetrics()

        self._sink = sink
        self._artifacts_dir = artifacts_dir
        self._clock = clock
        self._started = clock()
        self._attachment: RunAttachment | None = None

    def elapsed_ms(self) -> float:
        """Milliseconds since the collector was created."""
        return (self._clock() - self._started) * 1000

    def mark(self, timer: str) -> float:
        """Set a timing field to the elapsed time, at most once.

        Args:
            timer: One of time_to_engage, time_to_form_start, time_to_submit

        Returns:
            The timer's value (the earlier one if it was already set)

        """
        if timer not in TIMER_FIELDS:
            msg = f"Unknown timer: {timer}"
            raise ValueError(msg)

        current: float = getattr(self.metrics, timer)
        if current:
            return current

        value = self.elapsed_ms()
        setattr(self.metrics, timer, value)
        return value

    def record_device(
        self,
        viewport: Mapping[str, int] | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Record device details for the run."""
        if viewport:
            self.metrics.viewport = Viewport.model_validate(dict(viewport))
        if user_agent:
            self.metrics.user_agent = user_agent

    def finalize(
        self,
        sink: AttachmentSink | None = None,
        status: str = "passed",
    ) -> RunAttachment:
        """Compute derived rates and attach the metrics payload.

        Calling finalize again returns the first payload without attaching
        it a second time.
        """
        if self._attachment is not None:
            return self._attachment

        compute_rates(self.metrics)
        snapshot = self.metrics.model_copy(deep=True)

        attachment = RunAttachment(
            variant=self.variant.name,
            metrics=snapshot,
            timestamp=int(time.time() * 1000),
            run_title=self.run_title,
            project=self.project,
            run_id=self.run_id,
            status=status,
            duration_ms=self.elapsed_ms(),
        )
        self._attachment = attachment

        body = attachment.to_json().encode("utf-8")
        target = sink or self._sink
        if target is not None:
            target.attach(Attachment(name=METRICS_ATTACHMENT, body=body))
        if self._artifacts_dir is not None:
            _ = write_artifact(self._artifacts_dir, self.run_id, METRICS_ATTACHMENT, body)

        return attachment

    @property
    def finalized(self) -> bool:
        """Return whether the payload has been produced."""
        return self._attachment is not None

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Finalize with a status reflecting how the body exited."""
        status = "failed" if exc_type is not None else "passed"
        _ = self.finalize(status=status)


class EventTracker:
    """Ordered, append-only event log for a single run.

    Purely diagnostic: the timeline is attached for humans reading the
    report artifacts and never feeds the statistics.
    """

    def __init__(
        self,
        variant: str,
        run_id: str | None = None,
        artifacts_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.variant = variant
        self.run_id = run_id or generate_run_id()
        self._artifacts_dir = artifacts_dir
        self._clock = clock
        self._started = clock()
        self._events: list[RunEvent] = []
        self._finished = False

    def track_event(
        self,
        name: str,
        data: Mapping[str, JSONValue] | None = None,
    ) -> RunEvent:
        """Append an event stamped relative to run start."""
        if self._finished:
            msg = "Cannot track events on a finished run"
            raise RuntimeError(msg)

        event = RunEvent(
            name=name,
            timestamp=(self._clock() - self._started) * 1000,
            data=dict(data) if data is not None else None,
            variant=self.variant,
        )
        self._events.append(event)
        logger.debug("[AB-TEST:%s] %s %s", self.variant, name, data or "")
        return event

    __call__ = track_event

    @property
    def events(self) -> list[RunEvent]:
        """Return a copy of the events in call order."""
        return list(self._events)

    def finalize(self, sink: AttachmentSink | None = None) -> list[RunEvent]:
        """Attach the timeline if any events were tracked."""
        if self._finished:
            return self.events
        self._finished = True

        if not self._events:
            return []

        body = _EVENTS_ADAPTER.dump_json(self._events, by_alias=True, indent=2)
        if sink is not None:
            sink.attach(Attachment(name=EVENTS_ATTACHMENT, body=body))
        if self._artifacts_dir is not None:
            _ = write_artifact(self._artifacts_dir, self.run_id, EVENTS_ATTACHMENT, body)

        return self.events
