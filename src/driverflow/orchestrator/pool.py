"""Bounded worker pool with continuous replenishment."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass

from driverflow.orchestrator.models import FailureClass, OperationResult, WorkItem

logger = logging.getLogger(__name__)

WorkerFn = Callable[[WorkItem], OperationResult]
ExecutorFactory = Callable[[int], Executor]


def _thread_pool(max_workers: int) -> Executor:
    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="driverflow-worker")


@dataclass(slots=True)
class CompletedWork:
    """One finished work item and its single result."""

    item: WorkItem
    result: OperationResult


class WorkerPool:
    """Keep up to ``concurrency`` workers busy until every item has a result.

    The next queued item is submitted from the completion callback of the
    worker that just finished, so capacity never waits for a whole wave.
    Every submitted or pending item ends up in ``collect_completed`` exactly
    once: worker faults, submission failures and stop requests all turn into
    failed results.
    """

    def __init__(
        self,
        worker: WorkerFn,
        *,
        concurrency: int,
        executor_factory: ExecutorFactory = _thread_pool,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be a positive integer")
        self._worker = worker
        self.concurrency = concurrency
        self._executor_factory = executor_factory
        self._on_change = on_change or (lambda: None)
        self._lock = threading.RLock()
        self._pending: deque[WorkItem] = deque()
        self._active: dict[Future[OperationResult], WorkItem] = {}
        self._completed: deque[CompletedWork] = deque()
        self._executor: Executor | None = None
        self._stop_requested = False
        self.start_error: str | None = None
        self.max_observed_active = 0

    def start(self, items: Sequence[WorkItem]) -> None:
        """Queue ``items`` and start the first ``concurrency`` workers.

        If the executor cannot be created every item is completed as
        failed-to-start and ``start_error`` is set.
        """

        with self._lock:
            self._pending.extend(items)
            try:
                self._executor = self._executor_factory(self.concurrency)
            except (RuntimeError, OSError) as error:
                self.start_error = f"worker pool failed to start: {error}"
                logger.error("%s", self.start_error)
                self._abandon_pending(self.start_error)
            else:
                self._fill()
        self._on_change()

    def request_stop(self) -> None:
        """Decline to start new workers; running ones finish normally."""

        with self._lock:
            if self._stop_requested:
                return
            self._stop_requested = True
            self._abandon_pending("not started: stop requested")
        self._on_change()

    def collect_completed(self) -> list[CompletedWork]:
        with self._lock:
            completed = list(self._completed)
            self._completed.clear()
            return completed

    @property
    def is_idle(self) -> bool:
        """No running workers, no queued items and no uncollected results."""

        with self._lock:
            return not self._active and not self._pending and not self._completed

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _fill(self) -> None:
        while (
            self._pending
            and not self._stop_requested
            and self._executor is not None
            and len(self._active) < self.concurrency
        ):
            item = self._pending.popleft()
            try:
                future = self._executor.submit(self._run_guarded, item)
            except RuntimeError as error:
                message = f"worker failed to start: {error}"
                logger.error("%s (item %s)", message, item.identifier)
                self._completed.append(
                    CompletedWork(
                        item=item,
                        result=OperationResult.failed(
                            item,
                            message,
                            failure_class=FailureClass.NOT_STARTED,
                        ),
                    ),
                )
                self._abandon_pending(message)
                return
            self._active[future] = item
            self.max_observed_active = max(self.max_observed_active, len(self._active))
            future.add_done_callback(self._on_done)

    def _run_guarded(self, item: WorkItem) -> OperationResult:
        try:
            return self._worker(item)
        except Exception as error:  # noqa: BLE001
            logger.exception("Worker for %s raised", item.identifier)
            return OperationResult.failed(
                item,
                f"worker fault: {type(error).__name__}: {error}",
                failure_class=FailureClass.WORKER_FAULT,
            )

    def _on_done(self, future: Future[OperationResult]) -> None:
        with self._lock:
            item = self._active.pop(future)
            try:
                result = future.result()
            except BaseException as error:  # noqa: BLE001
                result = OperationResult.failed(
                    item,
                    f"worker fault: {type(error).__name__}: {error}",
                    failure_class=FailureClass.WORKER_FAULT,
                )
            self._completed.append(CompletedWork(item=item, result=result))
            self._fill()
        self._on_change()

    def _abandon_pending(self, reason: str) -> None:
        while self._pending:
            item = self._pending.popleft()
            self._completed.append(
                CompletedWork(
                    item=item,
                    result=OperationResult.failed(
                        item,
                        reason,
                        failure_class=FailureClass.NOT_STARTED,
                    ),
                ),
            )
