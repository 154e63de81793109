from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Executor
from pathlib import Path

import allure
import pytest
from conftest import make_item

from driverflow.orchestrator.coordinator import Coordinator
from driverflow.orchestrator.errors import SchedulingError
from driverflow.orchestrator.models import (
    FailureClass,
    OperationResult,
    ProgressEvent,
    ProgressKind,
    WorkItem,
)
from driverflow.orchestrator.pool import WorkerPool
from driverflow.orchestrator.progress import ProgressChannel

pytestmark = [
    allure.epic("Staging Runtime"),
    allure.feature("Progress Coordinator"),
]


class _Recorder:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            self.events.append(event)

    def finals(self) -> Counter[str]:
        return Counter(event.identifier for event in self.events if event.kind.is_terminal)


def test_results_follow_input_order_with_one_final_event_each(tmp_path: Path) -> None:
    channel = ProgressChannel()
    items = [make_item(tmp_path, f"item-{index}") for index in range(6)]

    def _worker(item: WorkItem) -> OperationResult:
        channel.report(item, ProgressKind.RUNNING, "started")
        channel.report(item, ProgressKind.SUCCEEDED, "done via stub")
        if item.identifier == "item-3":
            return OperationResult.failed(item, "boom", failure_class=FailureClass.TERMINAL)
        return OperationResult(identifier=item.identifier, success=True, method="stub")

    recorder = _Recorder()
    coordinator = Coordinator(
        channel=channel,
        worker=_worker,
        concurrency=2,
        observer=recorder,
        idle_wait_seconds=0.05,
    )

    results = coordinator.run(items)

    assert [result.identifier for result in results] == [item.identifier for item in items]
    assert recorder.finals() == Counter({item.identifier: 1 for item in items})
    final_kinds = {
        event.identifier: event.kind for event in recorder.events if event.kind.is_terminal
    }
    assert final_kinds["item-3"] == ProgressKind.FAILED
    assert final_kinds["item-0"] == ProgressKind.SUCCEEDED
    assert coordinator.stats.final_events == len(items)


def test_final_event_is_the_last_event_per_item(tmp_path: Path) -> None:
    channel = ProgressChannel()
    items = [make_item(tmp_path, f"item-{index}") for index in range(4)]

    def _worker(item: WorkItem) -> OperationResult:
        for step in range(3):
            channel.report(item, ProgressKind.ATTEMPT, f"step {step}")
        return OperationResult(identifier=item.identifier, success=True, method="stub")

    recorder = _Recorder()
    Coordinator(channel=channel, worker=_worker, concurrency=3, observer=recorder).run(items)

    for item in items:
        kinds = [event.kind for event in recorder.events if event.identifier == item.identifier]
        assert kinds[0] == ProgressKind.QUEUED
        assert kinds[-1] == ProgressKind.SUCCEEDED
        assert kinds.count(ProgressKind.ATTEMPT) == 3


def test_events_after_completion_are_suppressed(tmp_path: Path) -> None:
    channel = ProgressChannel()
    fast = make_item(tmp_path, "fast")
    slow = make_item(tmp_path, "slow")
    fast_finished = threading.Event()

    def _observer(event: ProgressEvent) -> None:
        recorder(event)
        if event.identifier == "fast" and event.kind.is_terminal:
            fast_finished.set()

    def _worker(item: WorkItem) -> OperationResult:
        if item.identifier == "slow":
            assert fast_finished.wait(timeout=5)
            # late update still tagged with the finished item
            channel.report(fast, ProgressKind.RUNNING, "stale")
        return OperationResult(identifier=item.identifier, success=True, method="stub")

    recorder = _Recorder()
    coordinator = Coordinator(
        channel=channel,
        worker=_worker,
        concurrency=2,
        observer=_observer,
        idle_wait_seconds=0.05,
    )

    results = coordinator.run([fast, slow])

    assert all(result.success for result in results)
    assert "stale" not in [event.status_text for event in recorder.events]
    assert coordinator.stats.suppressed_events == 1
    assert recorder.finals() == Counter({"fast": 1, "slow": 1})


def test_observer_failure_is_logged_and_run_continues(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    channel = ProgressChannel()
    items = [make_item(tmp_path, "a"), make_item(tmp_path, "b")]

    def _observer(event: ProgressEvent) -> None:
        raise RuntimeError("display closed")

    def _worker(item: WorkItem) -> OperationResult:
        return OperationResult(identifier=item.identifier, success=True, method="stub")

    with caplog.at_level(logging.ERROR, logger="driverflow.orchestrator.coordinator"):
        results = Coordinator(
            channel=channel,
            worker=_worker,
            concurrency=2,
            observer=_observer,
        ).run(items)

    assert [result.success for result in results] == [True, True]
    assert "Progress observer failed" in caplog.text


def test_duplicate_identifiers_are_rejected(tmp_path: Path) -> None:
    coordinator = Coordinator(
        channel=ProgressChannel(),
        worker=lambda item: OperationResult(identifier=item.identifier, success=True),
        concurrency=1,
    )

    with pytest.raises(ValueError, match="Duplicate work item identifier"):
        coordinator.run([make_item(tmp_path, "a"), make_item(tmp_path, "a")])


def test_empty_batch_returns_no_results() -> None:
    coordinator = Coordinator(
        channel=ProgressChannel(),
        worker=lambda item: OperationResult(identifier=item.identifier, success=True),
        concurrency=2,
    )

    assert coordinator.run([]) == []


def test_pool_start_failure_raises_scheduling_error_with_results(tmp_path: Path) -> None:
    channel = ProgressChannel()

    def _broken_factory(max_workers: int) -> Executor:
        raise RuntimeError("thread limit reached")

    def _worker(item: WorkItem) -> OperationResult:
        raise AssertionError("worker must not run")

    pool = WorkerPool(
        _worker,
        concurrency=2,
        executor_factory=_broken_factory,
        on_change=channel.wakeup.notify,
    )
    recorder = _Recorder()
    coordinator = Coordinator(
        channel=channel,
        worker=_worker,
        concurrency=2,
        observer=recorder,
        pool=pool,
    )

    with pytest.raises(SchedulingError, match="thread limit reached") as error_info:
        coordinator.run([make_item(tmp_path, "a"), make_item(tmp_path, "b")])

    assert [result.identifier for result in error_info.value.results] == ["a", "b"]
    assert {result.failure_class for result in error_info.value.results} == {
        FailureClass.NOT_STARTED,
    }
    assert recorder.finals() == Counter({"a": 1, "b": 1})
