"""Error taxonomy for resilient staging and the shared manifest."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from driverflow.orchestrator.models import FailureClass

if TYPE_CHECKING:
    from driverflow.orchestrator.models import OperationResult


class OperationError(RuntimeError):
    """Method failure with a retry classification."""

    failure_class: FailureClass = FailureClass.TRANSIENT

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class TransientMethodError(OperationError):
    """Retry the same method after backoff."""

    failure_class = FailureClass.TRANSIENT


class MethodEnvironmentError(OperationError):
    """Method cannot work in this environment; advance to the next method."""

    failure_class = FailureClass.ENVIRONMENT


class TerminalError(OperationError):
    """Resource is absent or forbidden; no retry or fallback helps."""

    failure_class = FailureClass.TERMINAL


class MethodChainExhausted(OperationError):
    """Every configured method was tried without producing an error or a result."""

    def __init__(self, methods: Sequence[str]) -> None:
        names = ", ".join(methods) if methods else "<none>"
        super().__init__(f"All methods exhausted without success: {names}")
        self.methods = tuple(methods)


class SchedulingError(RuntimeError):
    """Worker pool could not be started; every pending item is reported failed."""

    def __init__(self, message: str, *, results: list[OperationResult]) -> None:
        super().__init__(message)
        self.results = results


class AmbiguousSelectionError(RuntimeError):
    """More than one catalog candidate matched under the strict policy."""

    def __init__(self, identifier: str, candidates: Sequence[str]) -> None:
        super().__init__(
            f"Ambiguous candidate selection for {identifier}: {', '.join(candidates)}",
        )
        self.identifier = identifier
        self.candidates = tuple(candidates)


class ManifestError(RuntimeError):
    """Shared manifest mutation failure."""


class ManifestCorruption(ManifestError):
    """Existing manifest document could not be parsed."""


class ManifestLockTimeout(ManifestError):
    """Named manifest lock was not acquired within the timeout."""

    def __init__(self, lock_name: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Timed out after {timeout_seconds:.1f}s waiting for manifest lock {lock_name}",
        )
        self.lock_name = lock_name
        self.timeout_seconds = timeout_seconds
