"""Method strategy interface for retrieving one work item."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from driverflow.orchestrator.context import WorkerContext
from driverflow.orchestrator.models import OperationMetrics, OperationResult, WorkItem

ArtifactStamp = tuple[int, int, int]


class MethodStrategy(Protocol):
    """Protocol implemented by retrieval methods."""

    name: str

    def run(self, item: WorkItem, context: WorkerContext) -> OperationResult:
        """Run one attempt and return its tagged result.

        Raise ``TransientMethodError``, ``MethodEnvironmentError`` or
        ``TerminalError`` to steer the resilient chain.
        """


def destination_present(item: WorkItem) -> bool:
    """Default side-effect check: the destination exists and is non-empty."""

    destination = item.destination
    return destination.is_file() and destination.stat().st_size > 0


def artifact_stamp(path: Path) -> ArtifactStamp | None:
    """Identity of the file at ``path`` (inode, size, mtime), or ``None`` if absent."""

    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return (stat.st_ino, stat.st_size, stat.st_mtime_ns)


def destination_produced(item: WorkItem, before: ArtifactStamp | None) -> bool:
    """Destination is present and differs from what was there before the attempt."""

    if not destination_present(item):
        return False
    return before is None or artifact_stamp(item.destination) != before


def succeeded(item: WorkItem, method: str, *, bytes_transferred: int) -> OperationResult:
    return OperationResult(
        identifier=item.identifier,
        success=True,
        method=method,
        metrics=OperationMetrics(bytes_transferred=bytes_transferred),
        category=item.category,
    )


def partial_path(destination: Path) -> Path:
    """Temporary sibling used while a transfer is in flight."""

    return destination.with_name(f"{destination.name}.part")
