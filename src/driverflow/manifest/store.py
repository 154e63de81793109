"""Shared install manifest mutated by many workers under a named lock."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from driverflow.config import ManifestSettings
from driverflow.manifest.entries import ManifestEntry
from driverflow.manifest.locking import lock_name_for, named_lock
from driverflow.orchestrator.errors import ManifestCorruption
from driverflow.orchestrator.models import InstallerRegistration

logger = logging.getLogger(__name__)

SortKey = Callable[[ManifestEntry], float | None]


class AppendOutcome(str, Enum):
    """Result of an append request."""

    APPENDED = "appended"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class AppendResult:
    """Append outcome with the entry now present in the manifest."""

    outcome: AppendOutcome
    entry: ManifestEntry


class ManifestStore:
    """JSON-backed manifest whose every mutation runs under one named lock.

    Writes go to a temporary sibling that replaces the document atomically.
    A corrupt document is moved aside under a timestamped name and treated
    as empty. Entries are never deleted.
    """

    def __init__(
        self,
        path: Path,
        *,
        lock_timeout_seconds: float = 30.0,
        lock_dir: Path | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self.path = path
        self.lock_timeout_seconds = lock_timeout_seconds
        self.lock_dir = lock_dir or ManifestSettings().lock_dir
        self.lock_name = lock_name_for(path)
        self._log = log or logger

    @classmethod
    def from_settings(
        cls,
        settings: ManifestSettings,
        *,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> ManifestStore:
        return cls(
            settings.path,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            lock_dir=settings.lock_dir,
            log=log,
        )

    def load(self) -> list[ManifestEntry]:
        """Read the current entries without taking the lock or repairing anything."""

        try:
            return self._parse(self.path)
        except ManifestCorruption as error:
            self._log.warning("Manifest %s is unreadable: %s", self.path, error)
            return []

    def append_entry(
        self,
        identity_key: str | None,
        fields: InstallerRegistration,
    ) -> AppendResult:
        """Append one entry unless its identity key or significant fields already exist."""

        identity = identity_key or fields.package_identifier
        with self._locked():
            entries = self._load_for_update()
            candidate = ManifestEntry(
                priority=len(entries) + 1,
                name=fields.name,
                command_line=fields.command_line,
                arguments=fields.arguments,
                dependency_for=fields.dependency_for,
                package_identifier=identity,
            )
            for existing in entries:
                same_identity = identity is not None and existing.identity_key == identity
                if same_identity or existing.significant_fields() == candidate.significant_fields():
                    self._log.info(
                        "Manifest entry %s already present at priority %s",
                        existing.name,
                        existing.priority,
                    )
                    return AppendResult(outcome=AppendOutcome.DUPLICATE, entry=existing)

            entries.append(candidate)
            self._write(entries)
            self._log.info(
                "Manifest entry %s appended at priority %s",
                candidate.name,
                candidate.priority,
            )
            return AppendResult(outcome=AppendOutcome.APPENDED, entry=candidate)

    def reorder_to_match(self, sort_key: SortKey) -> bool:
        """Reorder entries by ``sort_key`` and renumber priorities.

        Returns ``True`` when the document was rewritten.
        """

        with self._locked():
            entries = self._load_for_update(renumber=False)
            ordered = plan_order(entries, sort_key)
            unchanged = all(
                current is planned and planned.priority == index
                for index, (current, planned) in enumerate(zip(entries, ordered, strict=True), 1)
            )
            if unchanged:
                return False
            for index, entry in enumerate(ordered, 1):
                entry.priority = index
            self._write(ordered)
            self._log.info("Manifest %s reordered (%s entries)", self.path, len(ordered))
            return True

    def _locked(self) -> AbstractContextManager[None]:
        return named_lock(
            self.lock_name,
            lock_dir=self.lock_dir,
            timeout_seconds=self.lock_timeout_seconds,
        )

    def _load_for_update(self, *, renumber: bool = True) -> list[ManifestEntry]:
        try:
            entries = self._parse(self.path)
        except ManifestCorruption as error:
            backup = self._backup_corrupt()
            self._log.warning(
                "Manifest %s was corrupt (%s); moved to %s and rebuilt",
                self.path,
                error,
                backup,
            )
            return []
        if renumber:
            for index, entry in enumerate(entries, 1):
                entry.priority = index
        return entries

    @staticmethod
    def _parse(path: Path) -> list[ManifestEntry]:
        try:
            raw = path.read_text("utf-8")
        except FileNotFoundError:
            return []
        except UnicodeDecodeError as error:
            raise ManifestCorruption(f"not UTF-8: {error}") from error
        if not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as error:
            raise ManifestCorruption(f"invalid JSON: {error}") from error
        if not isinstance(payload, list):
            raise ManifestCorruption("top-level JSON value must be an array")
        return [ManifestEntry.from_json(item) for item in payload]

    def _backup_corrupt(self) -> Path:
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")
        backup = self.path.with_name(f"{self.path.stem}.corrupt-{stamp}{self.path.suffix}")
        os.replace(self.path, backup)
        return backup

    def _write(self, entries: Sequence[ManifestEntry]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f".{self.path.name}.{uuid4().hex}.tmp")
        document = json.dumps([entry.to_json() for entry in entries], ensure_ascii=False, indent=2)
        try:
            with temp_path.open("w", encoding="utf-8") as handle:
                handle.write(document + "\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        finally:
            if temp_path.exists():
                temp_path.unlink()


def plan_order(entries: Sequence[ManifestEntry], sort_key: SortKey) -> list[ManifestEntry]:
    """Order entries by key (unknown last, ties by position), dependents before targets."""

    position = {id(entry): index for index, entry in enumerate(entries)}
    by_name: dict[str, ManifestEntry] = {}
    for entry in entries:
        by_name.setdefault(entry.name, entry)

    def rank(entry: ManifestEntry) -> tuple[bool, float, int]:
        key = sort_key(entry)
        return (key is None, key if key is not None else 0.0, position[id(entry)])

    dependents: dict[str, list[ManifestEntry]] = {}
    attached: set[int] = set()
    for entry in entries:
        target = by_name.get(entry.dependency_for) if entry.dependency_for else None
        if target is None or target is entry:
            continue
        dependents.setdefault(target.name, []).append(entry)
        attached.add(id(entry))
    for group in dependents.values():
        group.sort(key=rank)

    ordered: list[ManifestEntry] = []
    placed: set[int] = set()

    def place(entry: ManifestEntry, path: set[int]) -> None:
        if id(entry) in placed:
            return
        path.add(id(entry))
        for dependent in dependents.get(entry.name, ()):
            if id(dependent) not in path:
                place(dependent, path)
        placed.add(id(entry))
        ordered.append(entry)

    for root in sorted((e for e in entries if id(e) not in attached), key=rank):
        place(root, set())
    # dependency cycles have no root
    for leftover in sorted((e for e in entries if id(e) not in placed), key=rank):
        place(leftover, set())
    return ordered


def desired_order(keys: Sequence[str]) -> SortKey:
    """Sort key ranking entries by the position of their name or identity in ``keys``."""

    ranks: dict[str, int] = {}
    for index, key in enumerate(keys):
        ranks.setdefault(key, index)

    def sort_key(entry: ManifestEntry) -> float | None:
        for candidate in (entry.name, entry.package_identifier):
            if candidate is not None and candidate in ranks:
                return float(ranks[candidate])
        return None

    return sort_key
