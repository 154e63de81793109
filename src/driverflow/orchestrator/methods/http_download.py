"""Download method backed by the streaming HTTP client."""

from __future__ import annotations

import os
from collections.abc import Callable

import httpx

from driverflow.http.fetcher import HttpFetcher
from driverflow.orchestrator.context import WorkerContext
from driverflow.orchestrator.errors import (
    MethodEnvironmentError,
    TerminalError,
    TransientMethodError,
)
from driverflow.orchestrator.failure_classifier import classify_failure, classify_status_code
from driverflow.orchestrator.methods.base import partial_path, succeeded
from driverflow.orchestrator.models import FailureClass, OperationResult, WorkItem

_ERRORS_BY_CLASS = {
    FailureClass.TERMINAL: TerminalError,
    FailureClass.ENVIRONMENT: MethodEnvironmentError,
    FailureClass.TRANSIENT: TransientMethodError,
}


class HttpDownloadMethod:
    """Fetch ``http(s)://`` sources directly into the item destination."""

    name = "http"

    def __init__(
        self,
        *,
        transport: httpx.BaseTransport | None = None,
        fetcher_factory: Callable[[float], HttpFetcher] | None = None,
    ) -> None:
        self._transport = transport
        self._fetcher_factory = fetcher_factory

    def run(self, item: WorkItem, context: WorkerContext) -> OperationResult:
        source = item.source or ""
        if not source.startswith(("http://", "https://")):
            raise MethodEnvironmentError(
                f"Source is not an HTTP URL: {source!r}",
                method=self.name,
            )

        target = partial_path(item.destination)
        with self._build_fetcher(context.execution.request_timeout_seconds) as fetcher:
            result = fetcher.download(
                source,
                target,
                headers=item.payload.get("headers"),
                auth=_auth_from_payload(item.payload),
            )

        if not result.is_success:
            if result.timed_out:
                raise TransientMethodError(f"Download timed out: {source}", method=self.name)
            if result.status_code:
                failure_class = classify_status_code(result.status_code)
            else:
                failure_class = classify_failure(
                    method=self.name,
                    message=result.error or "",
                ).failure_class
            error_type = _ERRORS_BY_CLASS[failure_class]
            raise error_type(f"{result.error} for {source}", method=self.name)

        os.replace(target, item.destination)
        context.log.debug("Downloaded %s bytes from %s", result.bytes_written, source)
        return succeeded(item, self.name, bytes_transferred=result.bytes_written)

    def _build_fetcher(self, timeout_seconds: float) -> HttpFetcher:
        if self._fetcher_factory is not None:
            return self._fetcher_factory(timeout_seconds)
        return HttpFetcher(timeout_seconds=timeout_seconds, transport=self._transport)


def _auth_from_payload(payload: dict[str, object]) -> tuple[str, str] | None:
    credentials = payload.get("credentials")
    if isinstance(credentials, dict):
        return (str(credentials.get("username", "")), str(credentials.get("password", "")))
    if isinstance(credentials, list | tuple) and len(credentials) == 2:
        return (str(credentials[0]), str(credentials[1]))
    return None
