"""Install manifest entries and their on-disk JSON shape."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from driverflow.orchestrator.errors import ManifestCorruption


@dataclass(slots=True)
class ManifestEntry:
    """One installer step consumed in ascending ``priority`` order."""

    priority: int
    name: str
    command_line: str
    arguments: str = ""
    dependency_for: str | None = None
    package_identifier: str | None = None

    @property
    def identity_key(self) -> str | None:
        return self.package_identifier

    def significant_fields(self) -> tuple[str, str, str]:
        return (self.name, self.command_line, self.arguments)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "Priority": self.priority,
            "Name": self.name,
            "CommandLine": self.command_line,
            "Arguments": self.arguments,
        }
        if self.dependency_for is not None:
            payload["DependencyFor"] = self.dependency_for
        if self.package_identifier is not None:
            payload["PackageIdentifier"] = self.package_identifier
        return payload

    @classmethod
    def from_json(cls, payload: object) -> ManifestEntry:
        if not isinstance(payload, dict):
            raise ManifestCorruption(f"Manifest entry must be an object, got {type(payload).__name__}")
        try:
            priority = payload["Priority"]
            name = payload["Name"]
        except KeyError as error:
            raise ManifestCorruption(f"Manifest entry is missing {error}") from error
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise ManifestCorruption(f"Manifest entry {name!r} has non-integer Priority")
        if not isinstance(name, str) or not name:
            raise ManifestCorruption("Manifest entry has an empty Name")
        return cls(
            priority=priority,
            name=name,
            command_line=str(payload.get("CommandLine", "")),
            arguments=str(payload.get("Arguments", "")),
            dependency_for=_optional_str(payload.get("DependencyFor")),
            package_identifier=_optional_str(payload.get("PackageIdentifier")),
        )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
