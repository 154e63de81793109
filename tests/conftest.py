"""Shared test fixtures and method doubles."""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

from driverflow.config import ExecutionSettings, ManifestSettings, Settings
from driverflow.orchestrator.context import RunContext, WorkerContext
from driverflow.orchestrator.models import OperationMetrics, OperationResult, WorkItem
from driverflow.orchestrator.progress import ProgressChannel

OK = "ok"
CLAIM_ONLY = "claim-only"
SILENT = "silent"


class ScriptedMethod:
    """Method double replaying scripted outcomes per item identifier.

    Each outcome is ``OK`` (write the destination), ``CLAIM_ONLY`` (report
    success without writing), ``SILENT`` (unsuccessful result with no error)
    or an exception instance to raise. The last outcome repeats.
    """

    def __init__(
        self,
        name: str,
        script: dict[str, Sequence[object]] | None = None,
        *,
        default: Sequence[object] = (OK,),
        delay_seconds: float = 0.0,
    ) -> None:
        self.name = name
        self._script = {key: list(value) for key, value in (script or {}).items()}
        self._default = list(default)
        self._delay = threading.Event()
        self._delay_seconds = delay_seconds
        self._lock = threading.Lock()
        self.calls: list[str] = []

    def run(self, item: WorkItem, context: WorkerContext) -> OperationResult:
        with self._lock:
            self.calls.append(item.identifier)
            queue = self._script.setdefault(item.identifier, list(self._default))
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if self._delay_seconds:
            self._delay.wait(self._delay_seconds)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == SILENT:
            return OperationResult(identifier=item.identifier, success=False, method=self.name)
        if outcome == OK:
            item.destination.parent.mkdir(parents=True, exist_ok=True)
            staged = item.destination.with_name(f"{item.destination.name}.{threading.get_ident()}")
            staged.write_bytes(b"payload:" + item.identifier.encode())
            os.replace(staged, item.destination)
        return OperationResult(
            identifier=item.identifier,
            success=True,
            method=self.name,
            metrics=OperationMetrics(bytes_transferred=8 + len(item.identifier)),
            category=item.category,
        )

    def calls_for(self, identifier: str) -> int:
        with self._lock:
            return self.calls.count(identifier)


class SleepRecorder:
    """Stand-in for ``time.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_item(tmp_path: Path, identifier: str, **kwargs: object) -> WorkItem:
    return WorkItem(
        identifier=identifier,
        source=kwargs.pop("source", f"https://example.com/{identifier}.zip"),  # type: ignore[arg-type]
        destination=tmp_path / "staging" / f"{identifier}.bin",
        **kwargs,  # type: ignore[arg-type]
    )


def make_worker_context(
    item: WorkItem,
    *,
    channel: ProgressChannel | None = None,
    sleep: SleepRecorder | None = None,
) -> WorkerContext:
    run_context = RunContext(
        settings=Settings(),
        channel=channel or ProgressChannel(),
        sleep=sleep or SleepRecorder(),
    )
    return run_context.for_item(item)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        execution=ExecutionSettings(
            concurrency=2,
            retries=2,
            backoff_base_seconds=0.0,
            coordinator_idle_seconds=0.05,
        ),
        manifest=ManifestSettings(
            path=tmp_path / "install_manifest.json",
            lock_timeout_seconds=5.0,
            lock_dir=tmp_path / "locks",
        ),
    )
