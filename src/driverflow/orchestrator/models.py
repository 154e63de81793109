"""Domain models for work items, results and progress events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class FailureClass(str, Enum):
    """Normalized failure classes used by the resilient chain."""

    TRANSIENT = "transient"
    ENVIRONMENT = "environment"
    TERMINAL = "terminal"
    NOT_STARTED = "not_started"
    WORKER_FAULT = "worker_fault"
    MANIFEST = "manifest"


class ProgressKind(str, Enum):
    """State transitions reported through the progress channel."""

    QUEUED = "queued"
    RUNNING = "running"
    ATTEMPT = "attempt"
    RETRY = "retry"
    OUTCOME = "outcome"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ProgressKind.SUCCEEDED, ProgressKind.FAILED}


@dataclass(slots=True)
class InstallerRegistration:
    """Manifest contribution made by a successfully staged item."""

    name: str
    command_line: str
    arguments: str = ""
    dependency_for: str | None = None
    package_identifier: str | None = None


@dataclass(slots=True)
class WorkItem:
    """One independently schedulable staging operation."""

    identifier: str
    source: str | None
    destination: Path
    category: str = "default"
    variant: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    registration: InstallerRegistration | None = None

    @property
    def display_label(self) -> str:
        if self.variant:
            return f"{self.identifier} ({self.variant})"
        return self.identifier


@dataclass(slots=True)
class OperationMetrics:
    """Transfer counters captured for one operation."""

    bytes_transferred: int = 0
    duration_seconds: float = 0.0
    attempts: int = 0


@dataclass(slots=True)
class OperationResult:
    """Tagged result shared by method strategies and the aggregator."""

    identifier: str
    success: bool
    method: str | None = None
    error: str | None = None
    metrics: OperationMetrics = field(default_factory=OperationMetrics)
    category: str = "default"
    failure_class: FailureClass | None = None

    @classmethod
    def failed(
        cls,
        item: WorkItem,
        error: str,
        *,
        failure_class: FailureClass,
        method: str | None = None,
        metrics: OperationMetrics | None = None,
    ) -> OperationResult:
        return cls(
            identifier=item.identifier,
            success=False,
            method=method,
            error=error,
            metrics=metrics or OperationMetrics(),
            category=item.category,
            failure_class=failure_class,
        )


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """Ephemeral status update for one work item."""

    identifier: str
    display_label: str
    status_text: str
    category: str
    kind: ProgressKind
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def for_item(cls, item: WorkItem, kind: ProgressKind, status_text: str) -> ProgressEvent:
        return cls(
            identifier=item.identifier,
            display_label=item.display_label,
            status_text=status_text,
            category=item.category,
            kind=kind,
        )


@dataclass(slots=True)
class AttemptRecord:
    """One method attempt as seen by the executor."""

    method: str
    attempt_no: int
    succeeded: bool
    failure_class: FailureClass | None = None
    error: str | None = None
