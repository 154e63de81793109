"""Shared install manifest consumed by the downstream installer."""

from driverflow.manifest.entries import ManifestEntry
from driverflow.manifest.store import (
    AppendOutcome,
    AppendResult,
    ManifestStore,
    desired_order,
    plan_order,
)

__all__ = [
    "AppendOutcome",
    "AppendResult",
    "ManifestEntry",
    "ManifestStore",
    "desired_order",
    "plan_order",
]
