"""Deterministic classification of collaborator failures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from tee_dispatch.dispatch.errors import OrderbookUnavailableError, TaskNotFoundError

FAILURE_CLASSIFIER_VERSION = 2


class FailureKind(str, Enum):
    """Normalized failure kinds used by the matcher and the monitor."""

    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    PRICE_MISMATCH = "price_mismatch"
    VOLUME_MISMATCH = "volume_mismatch"
    CATEGORY_MISMATCH = "category_mismatch"
    TAG_MISMATCH = "tag_mismatch"
    NON_RETRYABLE = "non_retryable"


_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "not found",
    "no task",
    "does not exist",
    "unknown task",
)
_PRICE_PATTERNS: tuple[str, ...] = (
    "exceeds",
    "maxprice",
    "price too low",
    "price too high",
    "price mismatch",
    "insufficient balance",
    "insufficient funds",
)
_VOLUME_PATTERNS: tuple[str, ...] = (
    "volume",
    "consumed",
    "fully matched",
)
_CATEGORY_PATTERNS: tuple[str, ...] = ("category",)
_TAG_PATTERNS: tuple[str, ...] = (
    "tag mismatch",
    "invalid tag",
    "incompatible tag",
    "tag not",
    "trust",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network error",
    "too many requests",
    "rate limit",
    "429",
    "502",
    "503",
    "504",
    "nonce too low",
)

_RULES: tuple[tuple[FailureKind, str, tuple[str, ...]], ...] = (
    (FailureKind.PRICE_MISMATCH, "price_mismatch", _PRICE_PATTERNS),
    (FailureKind.VOLUME_MISMATCH, "volume_mismatch", _VOLUME_PATTERNS),
    (FailureKind.CATEGORY_MISMATCH, "category_mismatch", _CATEGORY_PATTERNS),
    (FailureKind.TAG_MISMATCH, "tag_mismatch", _TAG_PATTERNS),
    (FailureKind.TRANSIENT, "generic_transient", _TRANSIENT_PATTERNS),
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self) -> dict[str, object]:
        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "kind": self.kind.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_submission_failure(error: BaseException) -> FailureClassification:
    """Classify a match-orders failure: revert reasons first, then transport problems."""

    if isinstance(error, (TimeoutError, ConnectionError, OrderbookUnavailableError)):
        return FailureClassification(
            kind=FailureKind.TRANSIENT,
            reason_code="match_network",
            matched_rule="transport_exception",
            matched_pattern=None,
        )

    haystack = _normalize_text(error)
    for kind, rule, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            suffix = "network" if kind is FailureKind.TRANSIENT else kind.value
            return FailureClassification(
                kind=kind,
                reason_code=f"match_{suffix}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    return FailureClassification(
        kind=FailureKind.NON_RETRYABLE,
        reason_code="match_unknown",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def classify_status_fetch_failure(error: BaseException) -> FailureClassification:
    """Split status fetch errors into 'not indexed yet' and transient failures."""

    if isinstance(error, TaskNotFoundError):
        return FailureClassification(
            kind=FailureKind.NOT_FOUND,
            reason_code="task_not_indexed",
            matched_rule="not_found_exception",
            matched_pattern=None,
        )

    pattern = _first_match(_normalize_text(error), _NOT_FOUND_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.NOT_FOUND,
            reason_code="task_not_indexed",
            matched_rule="not_found_message",
            matched_pattern=pattern,
        )

    # Every other fetch error is retried with backoff until the attempt budget runs out.
    return FailureClassification(
        kind=FailureKind.TRANSIENT,
        reason_code="status_fetch_transient",
        matched_rule="fallback_transient",
        matched_pattern=None,
    )


def _normalize_text(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
