"""Deterministic failure classification for the resilient method chain."""

from __future__ import annotations

import re
from dataclasses import dataclass

from driverflow.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 2

_TERMINAL_PATTERNS: tuple[str, ...] = (
    "404",
    "410",
    "not found",
    "no such file",
    "does not exist",
    "403",
    "forbidden",
    "access denied",
    "permission denied",
    "gone",
)
_ENVIRONMENT_PATTERNS: tuple[str, ...] = (
    "401",
    "407",
    "unauthorized",
    "authentication required",
    "proxy authentication",
    "credentials",
    "command not found",
    "not installed",
    "unsupported protocol",
    "ssl certificate",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
    "try again",
)

# status codes and short words only count as whole tokens, so "16403 bytes" stays transient
_WHOLE_WORD_PATTERNS = frozenset({"gone"})

_TERMINAL_STATUS_CODES = frozenset({403, 404, 410})
_ENVIRONMENT_STATUS_CODES = frozenset({401, 407})


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self, *, method: str) -> dict[str, object]:
        """Serialize classifier diagnostics for logs and progress text."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "method": method,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_status_code(status_code: int) -> FailureClass:
    """Map an HTTP status of a failed response to a failure class."""

    if status_code in _TERMINAL_STATUS_CODES:
        return FailureClass.TERMINAL
    if status_code in _ENVIRONMENT_STATUS_CODES:
        return FailureClass.ENVIRONMENT
    return FailureClass.TRANSIENT


def classify_failure(*, method: str, message: str) -> FailureClassification:
    """Classify a failure message into a deterministic chain class.

    Environment patterns win over terminal ones, which win over transient ones,
    so "command not found" reads as a missing tool rather than a missing resource.
    Unrecognized failures are treated as transient so the method is retried.
    """

    haystack = message.lower()

    pattern = _first_match(haystack, _ENVIRONMENT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.ENVIRONMENT,
            reason_code=f"{method}_environment",
            matched_rule="environment",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TERMINAL_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TERMINAL,
            reason_code=f"{method}_resource_unavailable",
            matched_rule="terminal",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=f"{method}_transient",
            matched_rule="transient",
            matched_pattern=pattern,
        )

    return FailureClassification(
        failure_class=FailureClass.TRANSIENT,
        reason_code=f"{method}_unclassified",
        matched_rule="fallback_transient",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern.isdigit() or pattern in _WHOLE_WORD_PATTERNS:
            if re.search(rf"(?<![\w.]){re.escape(pattern)}(?![\w])", haystack):
                return pattern
        elif pattern in haystack:
            return pattern
    return None
