"""Runtime configuration for staging runs and the shared install manifest."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_METHODS: tuple[str, ...] = ("http", "command", "copy")
SUPPORTED_SELECTION_POLICIES: tuple[str, ...] = ("latest", "first", "strict")

DEFAULT_COMMAND_TEMPLATE = "curl -fsSL -o {destination} {source}"


@dataclass(slots=True)
class ExecutionSettings:
    """Worker pool and resilient chain settings."""

    concurrency: int = 5
    retries: int = 3
    backoff_base_seconds: float = 2.0
    methods: tuple[str, ...] = SUPPORTED_METHODS
    request_timeout_seconds: float = 60.0
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    coordinator_idle_seconds: float = 0.25


@dataclass(slots=True)
class ManifestSettings:
    """Shared install manifest settings."""

    path: Path = Path("install_manifest.json")
    lock_timeout_seconds: float = 30.0
    lock_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "driverflow-locks")


@dataclass(slots=True)
class SelectionSettings:
    """Candidate selection settings for catalog-resolved items."""

    policy: str = "latest"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    manifest: ManifestSettings = field(default_factory=ManifestSettings)
    selection: SelectionSettings = field(default_factory=SelectionSettings)

    @classmethod
    def from_env(cls, manifest_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local runs."""

        lock_dir_raw = os.getenv("DRIVERFLOW_LOCK_DIR", "").strip()
        return cls(
            execution=ExecutionSettings(
                concurrency=int(os.getenv("DRIVERFLOW_CONCURRENCY", "5")),
                retries=int(os.getenv("DRIVERFLOW_RETRIES", "3")),
                backoff_base_seconds=float(os.getenv("DRIVERFLOW_BACKOFF_BASE_SECONDS", "2.0")),
                methods=_collect_methods(),
                request_timeout_seconds=float(
                    os.getenv("DRIVERFLOW_REQUEST_TIMEOUT_SECONDS", "60.0"),
                ),
                command_template=os.getenv(
                    "DRIVERFLOW_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                coordinator_idle_seconds=float(
                    os.getenv("DRIVERFLOW_COORDINATOR_IDLE_SECONDS", "0.25"),
                ),
            ),
            manifest=ManifestSettings(
                path=manifest_path
                or Path(os.getenv("DRIVERFLOW_MANIFEST_PATH", "install_manifest.json")),
                lock_timeout_seconds=float(
                    os.getenv("DRIVERFLOW_MANIFEST_LOCK_TIMEOUT_SECONDS", "30.0"),
                ),
                lock_dir=(
                    Path(lock_dir_raw)
                    if lock_dir_raw
                    else Path(tempfile.gettempdir()) / "driverflow-locks"
                ),
            ),
            selection=SelectionSettings(
                policy=os.getenv("DRIVERFLOW_SELECTION_POLICY", "latest").strip().lower(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        execution = self.execution
        if execution.concurrency <= 0:
            raise ValueError("DRIVERFLOW_CONCURRENCY must be a positive integer.")
        if execution.retries < 0:
            raise ValueError("DRIVERFLOW_RETRIES must be >= 0.")
        if execution.backoff_base_seconds < 0:
            raise ValueError("DRIVERFLOW_BACKOFF_BASE_SECONDS must be >= 0.")
        if execution.request_timeout_seconds <= 0:
            raise ValueError("DRIVERFLOW_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if execution.coordinator_idle_seconds <= 0:
            raise ValueError("DRIVERFLOW_COORDINATOR_IDLE_SECONDS must be > 0.")
        for method in execution.methods:
            if method not in SUPPORTED_METHODS:
                raise ValueError(
                    f"Unsupported method in DRIVERFLOW_METHODS: {method!r}. "
                    f"Expected one of: {', '.join(SUPPORTED_METHODS)}.",
                )
        if self.manifest.lock_timeout_seconds <= 0:
            raise ValueError("DRIVERFLOW_MANIFEST_LOCK_TIMEOUT_SECONDS must be > 0.")
        if self.selection.policy not in SUPPORTED_SELECTION_POLICIES:
            raise ValueError(
                f"Invalid DRIVERFLOW_SELECTION_POLICY: {self.selection.policy!r}. "
                f"Expected one of: {', '.join(SUPPORTED_SELECTION_POLICIES)}.",
            )


def _collect_methods() -> tuple[str, ...]:
    raw = os.getenv("DRIVERFLOW_METHODS", "").strip()
    if not raw:
        return SUPPORTED_METHODS
    return _normalize_methods(raw.split(","))


def _normalize_methods(values: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip().lower()
        if not normalized:
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)
