"""Candidate selection for items whose source comes from a vendor catalog."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from driverflow.orchestrator.errors import AmbiguousSelectionError, TerminalError
from driverflow.orchestrator.models import WorkItem

logger = logging.getLogger(__name__)


class SelectionPolicy(str, Enum):
    """How to pick among several matching catalog candidates."""

    LATEST = "latest"
    FIRST = "first"
    STRICT = "strict"


@dataclass(slots=True, frozen=True)
class CandidateDescriptor:
    """One downloadable candidate returned by a catalog resolver."""

    name: str
    locator: str
    published_at: datetime | None = None
    version: str | None = None


class CatalogResolver(Protocol):
    """Black-box catalog lookup; parsing and supersedence live behind it."""

    def resolve(self, item: WorkItem) -> Sequence[CandidateDescriptor]:
        """Return candidates for ``item`` in catalog order."""


def select_candidate(
    identifier: str,
    candidates: Sequence[CandidateDescriptor],
    policy: SelectionPolicy,
) -> CandidateDescriptor:
    """Pick one candidate according to ``policy``.

    ``latest`` prefers the newest ``published_at`` and falls back to catalog
    order when no candidate carries a timestamp; ``strict`` refuses to guess.
    """

    if not candidates:
        raise TerminalError(f"No catalog candidates for {identifier}")
    if len(candidates) == 1:
        return candidates[0]

    if policy == SelectionPolicy.STRICT:
        raise AmbiguousSelectionError(identifier, [candidate.name for candidate in candidates])
    if policy == SelectionPolicy.FIRST:
        logger.info("Selecting first of %s candidates for %s", len(candidates), identifier)
        return candidates[0]

    dated = [candidate for candidate in candidates if candidate.published_at is not None]
    if not dated:
        logger.warning(
            "No candidate timestamps for %s; falling back to first of %s",
            identifier,
            len(candidates),
        )
        return candidates[0]
    chosen = dated[0]
    for candidate in dated[1:]:
        if candidate.published_at > chosen.published_at:  # type: ignore[operator]
            chosen = candidate
    logger.info("Selected %s (latest of %s) for %s", chosen.name, len(candidates), identifier)
    return chosen
