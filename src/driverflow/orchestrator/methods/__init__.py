"""Retrieval method strategies for the resilient chain."""

from __future__ import annotations

from collections.abc import Sequence

from driverflow.orchestrator.methods.base import (
    MethodStrategy,
    artifact_stamp,
    destination_present,
    destination_produced,
)
from driverflow.orchestrator.methods.command import CommandMethod
from driverflow.orchestrator.methods.http_download import HttpDownloadMethod
from driverflow.orchestrator.methods.local_copy import LocalCopyMethod


def build_methods(names: Sequence[str]) -> list[MethodStrategy]:
    """Instantiate method strategies in the configured order."""

    factories = {
        HttpDownloadMethod.name: HttpDownloadMethod,
        CommandMethod.name: CommandMethod,
        LocalCopyMethod.name: LocalCopyMethod,
    }
    methods: list[MethodStrategy] = []
    for name in names:
        try:
            factory = factories[name]
        except KeyError as error:
            raise ValueError(f"Unknown method strategy: {name!r}") from error
        methods.append(factory())
    return methods


__all__ = [
    "CommandMethod",
    "HttpDownloadMethod",
    "LocalCopyMethod",
    "MethodStrategy",
    "artifact_stamp",
    "build_methods",
    "destination_present",
    "destination_produced",
]
