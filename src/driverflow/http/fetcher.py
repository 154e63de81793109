"""Streaming HTTP client used by the download method."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_USER_AGENT = "driverflow/0.1 (+https://pypi.org/project/driverflow/)"


@dataclass(slots=True)
class DownloadResult:
    """Result of a streamed download."""

    url: str
    status_code: int
    bytes_written: int
    is_success: bool
    error: str | None = None
    timed_out: bool = False


class HttpFetcher:
    """HTTP client wrapper with timeout, user-agent and opaque auth pass-through."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.Client(
            timeout=self._timeout,
            headers=base_headers,
            transport=transport,
            follow_redirects=True,
        )

    def download(
        self,
        url: str,
        target: Path,
        *,
        headers: dict[str, str] | None = None,
        auth: Any = None,
    ) -> DownloadResult:
        """Stream ``url`` into ``target``; a failed transfer leaves no file behind."""

        target.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        try:
            with self._client.stream("GET", url, headers=headers, auth=auth) as response:
                if not response.is_success:
                    return DownloadResult(
                        url=url,
                        status_code=response.status_code,
                        bytes_written=0,
                        is_success=False,
                        error=f"HTTP {response.status_code}",
                    )
                with target.open("wb") as handle:
                    for chunk in response.iter_bytes(chunk_size=DEFAULT_CHUNK_SIZE):
                        handle.write(chunk)
                        written += len(chunk)
                return DownloadResult(
                    url=url,
                    status_code=response.status_code,
                    bytes_written=written,
                    is_success=True,
                )
        except httpx.TimeoutException:
            logger.warning("Timeout downloading %s", url)
            _discard(target)
            return DownloadResult(
                url=url,
                status_code=0,
                bytes_written=0,
                is_success=False,
                error="timeout",
                timed_out=True,
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error downloading %s: %s", url, exc)
            _discard(target)
            return DownloadResult(
                url=url,
                status_code=0,
                bytes_written=0,
                is_success=False,
                error=str(exc) or type(exc).__name__,
            )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _discard(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
