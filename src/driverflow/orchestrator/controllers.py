"""Controllers for staging and manifest CLI commands."""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from driverflow.config import Settings
from driverflow.manifest.store import ManifestStore, desired_order
from driverflow.orchestrator.errors import ManifestLockTimeout, SchedulingError
from driverflow.orchestrator.models import (
    InstallerRegistration,
    OperationResult,
    ProgressEvent,
    WorkItem,
)
from driverflow.orchestrator.services import BatchReport, StagingService

logger = logging.getLogger(__name__)

_SENTINEL = object()


@dataclass(slots=True)
class StageRunCommand:
    """CLI input for a staging batch."""

    items_path: Path
    manifest_path: Path | None = None
    concurrency: int | None = None
    retries: int | None = None
    backoff_base_seconds: float | None = None
    methods: tuple[str, ...] = ()


@dataclass(slots=True)
class ManifestShowCommand:
    """CLI input for manifest listing."""

    manifest_path: Path | None = None


@dataclass(slots=True)
class ManifestReorderCommand:
    """CLI input for manifest reorder."""

    manifest_path: Path | None = None
    order: tuple[str, ...] = ()


@dataclass(slots=True)
class StageRunOutcome:
    """Streamed lines plus the final success flag, filled once the stream ends."""

    success: bool = False
    results: list[OperationResult] = field(default_factory=list)


class StagingCliController:
    """CLI controller for staging and manifest operations."""

    def run_batch(self, command: StageRunCommand, outcome: StageRunOutcome) -> Iterator[str]:
        """Stage items from ``command.items_path``, yielding real-time progress lines."""

        try:
            settings = _settings_for(command)
            settings.validate()
            items = load_work_items(command.items_path)
        except (ValueError, OSError) as error:
            yield f"Error: {error}"
            return
        if not items:
            yield "No work items found."
            outcome.success = True
            return

        manifest = ManifestStore.from_settings(settings.manifest)
        service = StagingService(settings=settings, manifest=manifest)
        yield (
            f"Staging {len(items)} items with concurrency {settings.execution.concurrency} "
            f"via {', '.join(settings.execution.methods)}"
        )

        progress_q: queue.Queue[str | object] = queue.Queue()
        report_holder: list[BatchReport] = []
        error_holder: list[Exception] = []

        def _on_progress(event: ProgressEvent) -> None:
            progress_q.put(format_event(event))

        def _run() -> None:
            try:
                report_holder.append(service.run(items, observer=_on_progress))
            except SchedulingError as exc:
                report_holder.append(BatchReport(results=exc.results))
                error_holder.append(exc)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Staging batch failed")
                error_holder.append(exc)
            finally:
                progress_q.put(_SENTINEL)

        worker_thread = threading.Thread(target=_run, daemon=True, name="driverflow-batch")
        worker_thread.start()
        try:
            while True:
                line = progress_q.get()
                if line is _SENTINEL:
                    break
                yield str(line)
        finally:
            service.request_stop()
            worker_thread.join(timeout=10)

        if error_holder:
            yield f"Staging failed with error: {error_holder[0]}"
        if report_holder:
            report = report_holder[0]
            outcome.results = report.results
            outcome.success = not error_holder and not report.failed
            yield from render_summary_lines(report, manifest_path=settings.manifest.path)

    def show_manifest(self, command: ManifestShowCommand) -> Iterator[str]:
        settings = Settings.from_env(manifest_path=command.manifest_path)
        entries = ManifestStore.from_settings(settings.manifest).load()
        if not entries:
            yield f"Manifest {settings.manifest.path} is empty."
            return
        yield f"Manifest {settings.manifest.path} ({len(entries)} entries)"
        for entry in entries:
            suffix = f"  (before {entry.dependency_for})" if entry.dependency_for else ""
            identity = f" [{entry.package_identifier}]" if entry.package_identifier else ""
            yield (
                f"  {entry.priority:>3}. {entry.name}{identity}: "
                f"{entry.command_line} {entry.arguments}".rstrip() + suffix
            )

    def reorder_manifest(self, command: ManifestReorderCommand) -> Iterator[str]:
        settings = Settings.from_env(manifest_path=command.manifest_path)
        if not command.order:
            yield "Error: specify at least one --order entry."
            return
        store = ManifestStore.from_settings(settings.manifest)
        try:
            changed = store.reorder_to_match(desired_order(command.order))
        except ManifestLockTimeout as error:
            yield f"Error: {error}"
            return
        yield "Manifest reordered." if changed else "Manifest already in requested order."
        yield from self.show_manifest(ManifestShowCommand(manifest_path=command.manifest_path))


def load_work_items(path: Path) -> list[WorkItem]:
    """Parse a JSON array of work item descriptors."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of work items in {path}")
    items: list[WorkItem] = []
    for index, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise ValueError(f"Work item #{index} must be an object")
        items.append(_work_item_from_json(raw, index=index))
    return items


def _work_item_from_json(raw: dict[str, Any], *, index: int) -> WorkItem:
    try:
        identifier = str(raw["identifier"])
        destination = Path(raw["destination"])
    except KeyError as error:
        raise ValueError(f"Work item #{index} is missing {error}") from error

    registration = None
    raw_registration = raw.get("registration")
    if isinstance(raw_registration, dict):
        try:
            registration = InstallerRegistration(
                name=str(raw_registration["name"]),
                command_line=str(raw_registration["command_line"]),
                arguments=str(raw_registration.get("arguments", "")),
                dependency_for=raw_registration.get("dependency_for"),
                package_identifier=raw_registration.get("package_identifier"),
            )
        except KeyError as error:
            raise ValueError(f"Registration of {identifier} is missing {error}") from error

    return WorkItem(
        identifier=identifier,
        source=raw.get("source"),
        destination=destination,
        category=str(raw.get("category", "default")),
        variant=raw.get("variant"),
        payload=dict(raw.get("payload") or {}),
        registration=registration,
    )


def format_event(event: ProgressEvent) -> str:
    return f"[{event.kind.value:>9}] {event.display_label}: {event.status_text}"


def render_summary_lines(report: BatchReport, *, manifest_path: Path) -> Iterator[str]:
    """Summarize a finished batch by outcome and category."""

    results = report.results
    yield ""
    yield f"Succeeded: {len(report.succeeded)}/{len(results)}"
    total_bytes = sum(result.metrics.bytes_transferred for result in report.succeeded)
    yield f"Transferred: {total_bytes} bytes"
    by_category = Counter(
        (result.category, "ok" if result.success else "failed") for result in results
    )
    for (category, status), count in sorted(by_category.items()):
        yield f"  {category:<16} {status:<6} {count}"
    by_method = Counter(result.method for result in report.succeeded)
    for method, count in sorted(by_method.items(), key=lambda pair: str(pair[0])):
        yield f"  via {method}: {count}"
    for result in report.failed:
        reason = result.failure_class.value if result.failure_class else "unknown"
        yield f"  FAILED {result.identifier} ({reason}): {result.error}"
    if report.manifest_reordered:
        yield f"Manifest {manifest_path} reordered."


def _settings_for(command: StageRunCommand) -> Settings:
    settings = Settings.from_env(manifest_path=command.manifest_path)
    execution = settings.execution
    overrides: dict[str, Any] = {}
    if command.concurrency is not None:
        overrides["concurrency"] = command.concurrency
    if command.retries is not None:
        overrides["retries"] = command.retries
    if command.backoff_base_seconds is not None:
        overrides["backoff_base_seconds"] = command.backoff_base_seconds
    if command.methods:
        overrides["methods"] = tuple(method.lower() for method in command.methods)
    if overrides:
        settings.execution = replace(execution, **overrides)
    return settings
