# Copyright (c) Syntropy Systems
"""Runner-neutral lifecycle types exchanged with the aggregator."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class Attachment:
    """A named payload attached to a run's result."""

    name: str
    body: bytes
    content_type: str = "application/json"

    def text(self) -> str:
        """Decode the body as UTF-8."""
        return self.body.decode("utf-8")


class AttachmentSink(Protocol):
    def attach(self, attachment: Attachment) -> None:
        ...


@dataclass
class RunInfo:
    """Identity of one executed run."""

    title: str
    project: str = "unknown"
    run_id: str | None = None


@dataclass
class RunResult:
    """Outcome of one run as reported by the runner."""

    status: str = "passed"  # passed, failed, skipped
    duration_ms: float = 0.0
    attachments: list[Attachment] = field(default_factory=list)

    def attach(self, attachment: Attachment) -> None:
        """Add an attachment to this result."""
        self.attachments.append(attachment)

    def find_attachment(self, name: str) -> Attachment | None:
        """Return the first attachment with the given name."""
        for attachment in self.attachments:
            if attachment.name == name:
                return attachment
        return None


@dataclass
class SuiteInfo:
    """What the runner knows about the suite when it begins."""

    name: str = ""
    total_runs: int | None = None


@dataclass
class SuiteOutcome:
    """Final status of the whole suite."""

    status: str = "passed"
    duration_ms: float = 0.0
