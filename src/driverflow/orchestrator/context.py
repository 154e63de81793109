"""Explicit run and per-worker contexts handed to every worker."""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from driverflow.config import ExecutionSettings, Settings
from driverflow.orchestrator.models import ProgressKind, WorkItem
from driverflow.orchestrator.progress import ProgressChannel

if TYPE_CHECKING:
    from driverflow.manifest.store import ManifestStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerContext:
    """Everything one worker may touch; built fresh for each work item."""

    item: WorkItem
    execution: ExecutionSettings
    log: logging.LoggerAdapter
    channel: ProgressChannel
    manifest: ManifestStore | None = None
    sleep: Callable[[float], None] = time.sleep

    def report(self, kind: ProgressKind, status_text: str) -> None:
        self.channel.report(self.item, kind, status_text)


@dataclass(slots=True)
class RunContext:
    """Shared services for one batch run.

    Only ``channel`` and the manifest lock are shared across workers; each
    worker receives its own copy of the execution settings.
    """

    settings: Settings
    channel: ProgressChannel = field(default_factory=ProgressChannel)
    manifest: ManifestStore | None = None
    log_sink: logging.Logger = logger
    sleep: Callable[[float], None] = time.sleep

    def for_item(self, item: WorkItem) -> WorkerContext:
        return WorkerContext(
            item=item,
            execution=copy.deepcopy(self.settings.execution),
            log=logging.LoggerAdapter(self.log_sink, {"work_item": item.identifier}),
            channel=self.channel,
            manifest=self.manifest,
            sleep=self.sleep,
        )
