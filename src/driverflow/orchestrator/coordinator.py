"""Coordinator loop: forwards progress to the observer and assembles results."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from driverflow.orchestrator.errors import SchedulingError
from driverflow.orchestrator.models import (
    OperationResult,
    ProgressEvent,
    ProgressKind,
    WorkItem,
)
from driverflow.orchestrator.pool import CompletedWork, WorkerFn, WorkerPool
from driverflow.orchestrator.progress import ProgressChannel, ProgressObserver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CoordinatorStats:
    """Counters describing one coordinator run."""

    delivered_events: int = 0
    suppressed_events: int = 0
    final_events: int = 0
    idle_waits: int = 0
    results: dict[str, OperationResult] = field(default_factory=dict)


class Coordinator:
    """Single consumer of the progress channel.

    The loop drains the channel completely before and after recording each
    finished worker. Once an identifier is recorded as finished, any later
    event for it is dropped, and the observer receives exactly one final
    status per item, built from its result.
    """

    def __init__(
        self,
        *,
        channel: ProgressChannel,
        worker: WorkerFn,
        concurrency: int,
        observer: ProgressObserver | None = None,
        idle_wait_seconds: float = 0.25,
        pool: WorkerPool | None = None,
    ) -> None:
        self.channel = channel
        self.observer = observer or (lambda _event: None)
        self.idle_wait_seconds = idle_wait_seconds
        self.pool = pool or WorkerPool(
            worker,
            concurrency=concurrency,
            on_change=channel.wakeup.notify,
        )
        self.stats = CoordinatorStats()
        self._finished: set[str] = set()
        self._final_text: dict[str, str] = {}

    def request_stop(self) -> None:
        self.pool.request_stop()

    def run(self, items: Sequence[WorkItem]) -> list[OperationResult]:
        """Run ``items`` to completion and return one result per item, in input order.

        Raises ``SchedulingError`` (carrying the failed results) when the pool
        itself could not be started.
        """

        _ensure_unique(items)
        for item in items:
            self.channel.report(item, ProgressKind.QUEUED, "queued")
        self.pool.start(items)
        try:
            self._loop()
        finally:
            self.pool.shutdown()

        results = [self.stats.results[item.identifier] for item in items]
        if self.pool.start_error is not None:
            raise SchedulingError(self.pool.start_error, results=results)
        return results

    def _loop(self) -> None:
        wakeup = self.channel.wakeup
        while True:
            wakeup.clear()
            self._drain()
            completed = self.pool.collect_completed()
            for done in completed:
                self._drain()
                self._finalize(done)
                self._drain()
            if self.pool.is_idle and self.channel.empty():
                return
            if not completed and self.channel.empty():
                self.stats.idle_waits += 1
                wakeup.wait(self.idle_wait_seconds)

    def _drain(self) -> None:
        for event in self.channel.drain():
            self._deliver(event)

    def _deliver(self, event: ProgressEvent) -> None:
        if event.identifier in self._finished:
            self.stats.suppressed_events += 1
            return
        if event.kind.is_terminal:
            # folded into the single final status emitted by _finalize
            self._final_text[event.identifier] = event.status_text
            return
        self._emit(event)
        self.stats.delivered_events += 1

    def _finalize(self, done: CompletedWork) -> None:
        item, result = done.item, done.result
        if item.identifier in self._finished:
            logger.error("Duplicate result for %s ignored", item.identifier)
            return
        self._finished.add(item.identifier)
        self.stats.results[item.identifier] = result

        kind = ProgressKind.SUCCEEDED if result.success else ProgressKind.FAILED
        status_text = self._final_text.pop(item.identifier, None) or _final_status_text(result)
        self._emit(ProgressEvent.for_item(item, kind, status_text))
        self.stats.final_events += 1

    def _emit(self, event: ProgressEvent) -> None:
        try:
            self.observer(event)
        except Exception:
            logger.exception("Progress observer failed for %s", event.identifier)


def _final_status_text(result: OperationResult) -> str:
    if result.success:
        return f"done via {result.method}"
    return f"failed: {result.error}"


def _ensure_unique(items: Sequence[WorkItem]) -> None:
    seen: set[str] = set()
    for item in items:
        if item.identifier in seen:
            raise ValueError(f"Duplicate work item identifier: {item.identifier}")
        seen.add(item.identifier)
