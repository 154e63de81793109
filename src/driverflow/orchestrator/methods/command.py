"""Method that delegates the transfer to an external command-line tool."""

from __future__ import annotations

import os
import shlex
import subprocess
from pathlib import Path

from driverflow.orchestrator.context import WorkerContext
from driverflow.orchestrator.errors import (
    MethodEnvironmentError,
    TerminalError,
    TransientMethodError,
)
from driverflow.orchestrator.failure_classifier import classify_failure
from driverflow.orchestrator.methods.base import partial_path, succeeded
from driverflow.orchestrator.models import FailureClass, OperationResult, WorkItem

_STDERR_TAIL_CHARS = 400


class CommandMethod:
    """Run a command template such as ``curl -fsSL -o {destination} {source}``.

    The command writes to a temporary sibling of the destination, which is
    renamed into place only after a zero exit code.
    """

    name = "command"

    def __init__(self, command_template: str | None = None) -> None:
        self.command_template = command_template

    def run(self, item: WorkItem, context: WorkerContext) -> OperationResult:
        template = (
            item.payload.get("command_template")
            or self.command_template
            or context.execution.command_template
        )
        if not item.source:
            raise TerminalError("Work item has no source locator.", method=self.name)
        if "://" not in item.source:
            raise MethodEnvironmentError(
                f"Source is not a URL: {item.source!r}",
                method=self.name,
            )

        target = partial_path(item.destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        run_args, command_head = build_run_args(
            command_template=str(template),
            source=item.source,
            destination=target,
        )

        timeout_seconds = context.execution.request_timeout_seconds
        try:
            completed = subprocess.run(  # noqa: S603
                run_args,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise MethodEnvironmentError(
                f"Transfer tool not installed: {command_head}",
                method=self.name,
            ) from error
        except subprocess.TimeoutExpired as error:
            _discard(target)
            raise TransientMethodError(
                f"Transfer command timed out after {timeout_seconds:.0f}s: {command_head}",
                method=self.name,
            ) from error
        except OSError as error:
            raise MethodEnvironmentError(
                f"Transfer tool failed to start: {error}",
                method=self.name,
            ) from error

        if completed.returncode != 0:
            _discard(target)
            stderr_tail = (completed.stderr or "").strip()[-_STDERR_TAIL_CHARS:]
            message = f"{command_head} exited with code {completed.returncode}: {stderr_tail}"
            classification = classify_failure(method=self.name, message=stderr_tail)
            context.log.debug("Command failure classified: %s", classification.reason_code)
            if classification.failure_class == FailureClass.TERMINAL:
                raise TerminalError(message, method=self.name)
            if classification.failure_class == FailureClass.ENVIRONMENT:
                raise MethodEnvironmentError(message, method=self.name)
            raise TransientMethodError(message, method=self.name)

        if not target.exists():
            # reported success without producing the artifact
            return OperationResult(
                identifier=item.identifier,
                success=True,
                method=self.name,
                category=item.category,
            )
        size = target.stat().st_size
        os.replace(target, item.destination)
        return succeeded(item, self.name, bytes_transferred=size)


def build_run_args(
    *,
    command_template: str,
    source: str,
    destination: Path,
    os_name: str | None = None,
) -> tuple[str | list[str], str]:
    """Render the command template into argv (POSIX) or a command line (Windows)."""

    stripped = command_template.strip()
    if not stripped:
        raise MethodEnvironmentError("Command template is empty.", method=CommandMethod.name)
    if "{source}" not in stripped or "{destination}" not in stripped:
        raise MethodEnvironmentError(
            "Command template must include {source} and {destination}.",
            method=CommandMethod.name,
        )

    current_os_name = os_name or os.name
    try:
        if current_os_name == "nt":
            rendered = stripped.format(
                source=subprocess.list2cmdline([source]),
                destination=subprocess.list2cmdline([str(destination)]),
            )
            return rendered, rendered.split(maxsplit=1)[0]

        rendered = stripped.format(
            source=shlex.quote(source),
            destination=shlex.quote(str(destination)),
        )
    except KeyError as error:
        raise MethodEnvironmentError(
            f"Unsupported command template placeholder: {error}",
            method=CommandMethod.name,
        ) from error

    argv = shlex.split(rendered)
    return argv, argv[0]


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
