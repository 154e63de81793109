"""Resilient executor: ordered method chain with retry, backoff and fallback."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

from driverflow.orchestrator.context import WorkerContext
from driverflow.orchestrator.errors import (
    MethodChainExhausted,
    MethodEnvironmentError,
    OperationError,
    TerminalError,
    TransientMethodError,
)
from driverflow.orchestrator.failure_classifier import classify_failure
from driverflow.orchestrator.methods.base import (
    ArtifactStamp,
    MethodStrategy,
    artifact_stamp,
    destination_produced,
)
from driverflow.orchestrator.models import (
    AttemptRecord,
    FailureClass,
    OperationResult,
    ProgressKind,
    WorkItem,
)

Verifier = Callable[[WorkItem, ArtifactStamp | None], bool]


@dataclass(slots=True)
class ChainOutcome:
    """Successful chain run with its attempt history."""

    result: OperationResult
    attempts: list[AttemptRecord] = field(default_factory=list)


class AttemptOutcome(NamedTuple):
    result: OperationResult | None
    error: OperationError | None


class ResilientExecutor:
    """Run one work item through ``methods`` in order.

    Each method gets up to ``retries`` attempts (zero means a single attempt),
    separated by ``backoff_base_seconds * attempt_no``. Terminal failures stop
    the whole chain, environment failures move on to the next method and
    transient failures retry the same one. A reported success counts only if
    the destination was written or replaced during that attempt. The executor
    holds no per-run state, so one instance may serve many workers.
    """

    def __init__(
        self,
        methods: Sequence[MethodStrategy],
        *,
        retries: int,
        backoff_base_seconds: float,
        verifier: Verifier = destination_produced,
    ) -> None:
        self.methods = tuple(methods)
        self.retries = retries
        self.backoff_base_seconds = backoff_base_seconds
        self.verifier = verifier

    @property
    def attempts_per_method(self) -> int:
        return max(1, self.retries)

    def run(
        self,
        context: WorkerContext,
        attempts: list[AttemptRecord] | None = None,
    ) -> ChainOutcome:
        """Execute the chain, returning on the first verified success.

        Pass ``attempts`` to observe the attempt history even when the chain
        raises. Raises the last observed error when every method fails, or
        ``MethodChainExhausted`` if no attempt produced one.
        """

        history = attempts if attempts is not None else []
        if not self.methods:
            raise TerminalError("No retrieval methods configured.")

        last_error: OperationError | None = None
        tried: list[str] = []
        for index, method in enumerate(self.methods):
            tried.append(method.name)
            if index > 0:
                context.report(ProgressKind.FALLBACK, f"falling back to {method.name}")
            for attempt_no in range(1, self.attempts_per_method + 1):
                context.report(
                    ProgressKind.ATTEMPT,
                    f"{method.name} attempt {attempt_no}/{self.attempts_per_method}",
                )
                outcome = self._attempt(method, context)
                if outcome.result is not None:
                    history.append(
                        AttemptRecord(method=method.name, attempt_no=attempt_no, succeeded=True),
                    )
                    context.report(
                        ProgressKind.OUTCOME,
                        f"{method.name} attempt {attempt_no} succeeded",
                    )
                    return ChainOutcome(result=outcome.result, attempts=history)

                error = outcome.error
                failure_class = error.failure_class if error else FailureClass.TRANSIENT
                history.append(
                    AttemptRecord(
                        method=method.name,
                        attempt_no=attempt_no,
                        succeeded=False,
                        failure_class=failure_class,
                        error=str(error) if error else None,
                    ),
                )
                context.report(
                    ProgressKind.OUTCOME,
                    f"{method.name} attempt {attempt_no} failed ({failure_class.value})"
                    + (f": {error}" if error else ""),
                )
                if error is not None:
                    last_error = error
                    context.log.info(
                        "%s attempt %s failed (%s): %s",
                        method.name,
                        attempt_no,
                        error.failure_class.value,
                        error,
                    )
                if isinstance(error, TerminalError):
                    raise error
                if isinstance(error, MethodEnvironmentError):
                    break
                if attempt_no < self.attempts_per_method:
                    delay = self.backoff_base_seconds * attempt_no
                    context.report(
                        ProgressKind.RETRY,
                        f"{method.name} failed, retrying in {delay:.1f}s",
                    )
                    if delay > 0:
                        context.sleep(delay)

        if last_error is not None:
            raise last_error
        raise MethodChainExhausted(tried)

    def _attempt(self, method: MethodStrategy, context: WorkerContext) -> AttemptOutcome:
        """Run one attempt and classify its failure, if any.

        An unsuccessful result without error text yields neither a result nor
        an error; the caller records it as an anonymous transient failure.
        """

        item = context.item
        before = artifact_stamp(item.destination)
        try:
            result = method.run(item, context)
        except OperationError as error:
            if error.method is None:
                error.method = method.name
            return AttemptOutcome(None, error)
        except Exception as error:  # noqa: BLE001
            return AttemptOutcome(None, _classified(method.name, error))

        if not result.success:
            if result.error:
                return AttemptOutcome(None, _classified(method.name, RuntimeError(result.error)))
            return AttemptOutcome(None, None)
        if not self.verifier(item, before):
            return AttemptOutcome(
                None,
                TransientMethodError(
                    f"{method.name} reported success but did not produce {item.destination}",
                    method=method.name,
                ),
            )
        result.method = result.method or method.name
        return AttemptOutcome(result, None)


def _classified(method: str, error: BaseException) -> OperationError:
    message = str(error) or type(error).__name__
    classification = classify_failure(method=method, message=message)
    error_type = {
        FailureClass.TERMINAL: TerminalError,
        FailureClass.ENVIRONMENT: MethodEnvironmentError,
    }.get(classification.failure_class, TransientMethodError)
    classified = error_type(message, method=method)
    classified.__cause__ = error
    return classified
