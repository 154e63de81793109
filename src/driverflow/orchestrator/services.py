"""Use-case services: stage a batch of items and register their installers."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from driverflow.config import Settings
from driverflow.manifest.store import ManifestStore, desired_order
from driverflow.orchestrator.context import RunContext
from driverflow.orchestrator.coordinator import Coordinator
from driverflow.orchestrator.errors import (
    AmbiguousSelectionError,
    ManifestLockTimeout,
    OperationError,
    TerminalError,
)
from driverflow.orchestrator.executor import ResilientExecutor
from driverflow.orchestrator.methods import MethodStrategy, build_methods
from driverflow.orchestrator.models import (
    AttemptRecord,
    FailureClass,
    OperationMetrics,
    OperationResult,
    ProgressKind,
    WorkItem,
)
from driverflow.orchestrator.progress import ProgressChannel, ProgressObserver
from driverflow.orchestrator.selection import (
    CatalogResolver,
    SelectionPolicy,
    select_candidate,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchReport:
    """Results of one staging batch, ordered as submitted."""

    results: list[OperationResult]
    manifest_reordered: bool = False

    @property
    def succeeded(self) -> list[OperationResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> list[OperationResult]:
        return [result for result in self.results if not result.success]


class StagingWorker:
    """Body of one worker: resolve, run the resilient chain, register."""

    def __init__(
        self,
        *,
        executor: ResilientExecutor,
        run_context: RunContext,
        resolver: CatalogResolver | None = None,
        selection_policy: SelectionPolicy = SelectionPolicy.LATEST,
    ) -> None:
        self.executor = executor
        self.run_context = run_context
        self.resolver = resolver
        self.selection_policy = selection_policy

    def __call__(self, item: WorkItem) -> OperationResult:
        started = time.monotonic()
        context = self.run_context.for_item(item)
        context.report(ProgressKind.RUNNING, "started")
        attempts: list[AttemptRecord] = []

        try:
            if not item.source:
                item = self._resolve_source(item)
                context = self.run_context.for_item(item)
            outcome = self.executor.run(context, attempts)
        except (OperationError, AmbiguousSelectionError) as error:
            failure_class = getattr(error, "failure_class", FailureClass.TERMINAL)
            context.log.warning("Staging failed: %s", error)
            context.report(ProgressKind.FAILED, f"failed: {error}")
            return OperationResult.failed(
                item,
                str(error),
                failure_class=failure_class,
                method=getattr(error, "method", None),
                metrics=_metrics(started, attempts),
            )

        result = outcome.result
        result.metrics.duration_seconds = time.monotonic() - started
        result.metrics.attempts = len(attempts)

        if item.registration is not None and context.manifest is not None:
            try:
                appended = context.manifest.append_entry(
                    item.registration.package_identifier,
                    item.registration,
                )
            except ManifestLockTimeout as error:
                context.log.error("Manifest registration failed: %s", error)
                context.report(ProgressKind.FAILED, f"registration failed: {error}")
                return OperationResult.failed(
                    item,
                    str(error),
                    failure_class=FailureClass.MANIFEST,
                    method=result.method,
                    metrics=result.metrics,
                )
            context.log.info(
                "Registration %s: %s",
                appended.entry.name,
                appended.outcome.value,
            )

        context.report(ProgressKind.SUCCEEDED, f"done via {result.method}")
        return result

    def _resolve_source(self, item: WorkItem) -> WorkItem:
        if self.resolver is None:
            raise TerminalError(f"Work item {item.identifier} has no source and no catalog")
        candidates = self.resolver.resolve(item)
        chosen = select_candidate(item.identifier, candidates, self.selection_policy)
        return replace(item, source=chosen.locator)


class StagingService:
    """Stages a batch of work items under bounded concurrency."""

    def __init__(
        self,
        *,
        settings: Settings,
        methods: Sequence[MethodStrategy] | None = None,
        manifest: ManifestStore | None = None,
        resolver: CatalogResolver | None = None,
        log_sink: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings.validate()
        self.settings = settings
        self.methods = list(methods) if methods is not None else build_methods(
            settings.execution.methods,
        )
        self.manifest = manifest
        self.resolver = resolver
        self.log_sink = log_sink or logger
        self.sleep = sleep
        self._coordinator: Coordinator | None = None

    def run(
        self,
        items: Sequence[WorkItem],
        observer: ProgressObserver | None = None,
    ) -> BatchReport:
        """Stage every item and return exactly one result per item.

        After all workers finish, manifest entries are reordered to follow the
        submission order of the items that registered them.
        """

        execution = self.settings.execution
        run_context = RunContext(
            settings=self.settings,
            channel=ProgressChannel(),
            manifest=self.manifest,
            log_sink=self.log_sink,
            sleep=self.sleep,
        )
        worker = StagingWorker(
            executor=ResilientExecutor(
                self.methods,
                retries=execution.retries,
                backoff_base_seconds=execution.backoff_base_seconds,
            ),
            run_context=run_context,
            resolver=self.resolver,
            selection_policy=SelectionPolicy(self.settings.selection.policy),
        )
        self._coordinator = Coordinator(
            channel=run_context.channel,
            worker=worker,
            concurrency=execution.concurrency,
            observer=observer,
            idle_wait_seconds=execution.coordinator_idle_seconds,
        )
        results = self._coordinator.run(items)
        return BatchReport(results=results, manifest_reordered=self._finalize_manifest(items))

    def request_stop(self) -> None:
        if self._coordinator is not None:
            self._coordinator.request_stop()

    def _finalize_manifest(self, items: Sequence[WorkItem]) -> bool:
        if self.manifest is None:
            return False
        keys = [item.registration.name for item in items if item.registration is not None]
        if not keys:
            return False
        try:
            return self.manifest.reorder_to_match(desired_order(keys))
        except ManifestLockTimeout as error:
            self.log_sink.error("Final manifest reorder skipped: %s", error)
            return False


def _metrics(started: float, attempts: list[AttemptRecord]) -> OperationMetrics:
    return OperationMetrics(
        duration_seconds=time.monotonic() - started,
        attempts=len(attempts),
    )
