"""Copy method for local paths and ``file://`` sources."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

from driverflow.orchestrator.context import WorkerContext
from driverflow.orchestrator.errors import (
    MethodEnvironmentError,
    TerminalError,
    TransientMethodError,
)
from driverflow.orchestrator.methods.base import partial_path, succeeded
from driverflow.orchestrator.models import OperationResult, WorkItem


class LocalCopyMethod:
    """Copy a file reachable through the local filesystem (including shares)."""

    name = "copy"

    def run(self, item: WorkItem, context: WorkerContext) -> OperationResult:
        source_path = resolve_local_source(item.source)
        if source_path is None:
            raise MethodEnvironmentError(
                f"Source is not a local path: {item.source!r}",
                method=self.name,
            )
        if not source_path.exists():
            raise TerminalError(f"Source not found: {source_path}", method=self.name)
        if not source_path.is_file():
            raise TerminalError(f"Source is not a file: {source_path}", method=self.name)

        target = partial_path(item.destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(source_path, target)
        except PermissionError as error:
            raise TerminalError(
                f"Permission denied copying {source_path}: {error}",
                method=self.name,
            ) from error
        except OSError as error:
            raise TransientMethodError(
                f"Copy failed for {source_path}: {error}",
                method=self.name,
            ) from error

        size = target.stat().st_size
        os.replace(target, item.destination)
        context.log.debug("Copied %s bytes from %s", size, source_path)
        return succeeded(item, self.name, bytes_transferred=size)


def resolve_local_source(source: str | None) -> Path | None:
    """Return a filesystem path for ``source`` or ``None`` for remote locators."""

    if not source:
        return None
    parsed = urlparse(source)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    # drive letters parse as one-character schemes
    if not parsed.scheme or len(parsed.scheme) == 1:
        return Path(source)
    return None
