"""Named cross-process lock keyed by a stable hash of the guarded path."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from driverflow.orchestrator.errors import ManifestLockTimeout

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None  # type: ignore[assignment]

try:
    import msvcrt
except ImportError:  # pragma: no cover - POSIX
    msvcrt = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 0.02

_registry_guard = threading.Lock()
_thread_locks: dict[str, threading.Lock] = {}


def lock_name_for(path: Path) -> str:
    """Stable lock name: unrelated paths never share it, the same path always does."""

    digest = hashlib.sha256(str(path.resolve()).encode("utf-8")).hexdigest()
    return f"driverflow-manifest-{digest[:24]}"


@contextmanager
def named_lock(name: str, *, lock_dir: Path, timeout_seconds: float) -> Iterator[None]:
    """Hold ``name`` exclusively across threads and processes.

    Raises ``ManifestLockTimeout`` when the lock is not acquired in time.
    """

    deadline = time.monotonic() + timeout_seconds
    thread_lock = _thread_lock(name)
    if not thread_lock.acquire(timeout=max(0.0, timeout_seconds)):
        raise ManifestLockTimeout(name, timeout_seconds)
    try:
        lock_dir.mkdir(parents=True, exist_ok=True)
        with (lock_dir / f"{name}.lock").open("a+b") as handle:
            _ensure_lock_byte(handle)
            while not _try_lock(handle):
                if time.monotonic() >= deadline:
                    raise ManifestLockTimeout(name, timeout_seconds)
                time.sleep(_POLL_INTERVAL_SECONDS)
            try:
                yield
            finally:
                _unlock(handle)
    finally:
        thread_lock.release()


def _thread_lock(name: str) -> threading.Lock:
    with _registry_guard:
        lock = _thread_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _thread_locks[name] = lock
        return lock


def _ensure_lock_byte(handle: IO[bytes]) -> None:
    handle.seek(0, os.SEEK_END)
    if handle.tell() == 0:
        handle.write(b"0")
        handle.flush()


def _try_lock(handle: IO[bytes]) -> bool:
    try:
        if fcntl is not None:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        elif msvcrt is not None:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    except OSError:
        return False
    return True


def _unlock(handle: IO[bytes]) -> None:
    try:
        if fcntl is not None:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        elif msvcrt is not None:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError as error:
        logger.warning("Failed to release lock file %s: %s", handle.name, error)
