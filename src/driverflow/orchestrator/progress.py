"""Thread-safe progress channel shared by workers and the coordinator."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable

from driverflow.orchestrator.models import ProgressEvent, ProgressKind, WorkItem

ProgressObserver = Callable[[ProgressEvent], None]


class WakeupSignal:
    """Edge signal the coordinator sleeps on while nothing is pending."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def notify(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout=timeout)


class ProgressChannel:
    """Unbounded FIFO queue with many producers and a single consumer.

    ``publish`` never blocks: the underlying queue has no size limit, so
    ``put_nowait`` cannot raise ``queue.Full``.
    """

    def __init__(self, wakeup: WakeupSignal | None = None) -> None:
        self._queue: queue.SimpleQueue[ProgressEvent] = queue.SimpleQueue()
        self.wakeup = wakeup or WakeupSignal()

    def publish(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)
        self.wakeup.notify()

    def report(self, item: WorkItem, kind: ProgressKind, status_text: str) -> None:
        self.publish(ProgressEvent.for_item(item, kind, status_text))

    def drain(self) -> list[ProgressEvent]:
        """Return every event queued so far, oldest first."""

        events: list[ProgressEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def empty(self) -> bool:
        return self._queue.empty()
