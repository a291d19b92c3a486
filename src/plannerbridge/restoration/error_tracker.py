"""Structured error tracking and classification for restoration runs.

The tracker keeps attempted/succeeded/failed counters per entity kind,
classifies every failure into a coarse category, and renders the final
machine-readable report together with the process exit code:

- ``2`` if a plan could not be created,
- ``1`` if anything else failed,
- ``0`` otherwise.

Unresolved identities are reported separately and never affect the exit
code: dropping an assignment is an expected outcome of a cross-tenant move.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from plannerbridge.constants import (
    EXIT_PARTIAL_FAILURE,
    EXIT_PLAN_FAILURE,
    EXIT_SUCCESS,
    MAX_FAILURE_EXAMPLES_PER_KIND,
)
from plannerbridge.planner.models import EntityKind

logger = logging.getLogger(__name__)


class ErrorCategory(StrEnum):
    """Coarse failure categories used for report totals."""

    NETWORK = "network"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# Fallback patterns for errors that carry no status code. Substring matching is
# approximate: a message mentioning "invalid token" reads as validation, not permission.
_MESSAGE_PATTERNS: tuple[tuple[ErrorCategory, re.Pattern[str]], ...] = (
    (
        ErrorCategory.NETWORK,
        re.compile(
            r"timed? ?out|timeout|connection|network|name resolution|dns|"
            r"too many requests|rate limit|service unavailable|unreachable",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorCategory.PERMISSION,
        re.compile(
            r"forbidden|unauthori[sz]ed|access denied|insufficient privileges|permission",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorCategory.VALIDATION,
        re.compile(r"invalid|validation|bad request|required|malformed", re.IGNORECASE),
    ),
)


def classify_error(status_code: int | None, message: str) -> ErrorCategory:
    """Classify a failure, preferring the status code over the message text.

    Args:
        status_code: HTTP status code, or None when the failure carried none
        message: Error message, used only when the status is missing or inconclusive

    Returns:
        ErrorCategory for report totals
    """
    if status_code is not None:
        if status_code in (408, 429) or 500 <= status_code <= 599:
            return ErrorCategory.NETWORK
        if status_code in (401, 403):
            return ErrorCategory.PERMISSION
        if status_code in (400, 422):
            return ErrorCategory.VALIDATION

    for category, pattern in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return category
    return ErrorCategory.UNKNOWN


def error_type_of(error: BaseException) -> str:
    """Taxonomy name of an error (``ConcurrencyConflict``, ``TransientNetwork``, ...)."""
    return getattr(error, "error_type", None) or type(error).__name__


@dataclass(frozen=True)
class ErrorRecord:
    """One failed operation. Never mutated after creation."""

    entity_kind: EntityKind
    entity_name: str
    context: str
    category: ErrorCategory
    error_type: str
    message: str
    status_code: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_document(self) -> dict[str, Any]:
        return {
            "EntityKind": str(self.entity_kind),
            "EntityName": self.entity_name,
            "Context": self.context,
            "Category": str(self.category),
            "ErrorType": self.error_type,
            "StatusCode": self.status_code,
            "Message": self.message,
            "Timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class UnresolvedIdentityEvent:
    """An assignee dropped from a task because no target user was found."""

    source_user_id: str
    task_name: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_document(self) -> dict[str, Any]:
        return {
            "SourceUserId": self.source_user_id,
            "Task": self.task_name,
            "Reason": self.reason,
            "Timestamp": self.timestamp.isoformat(),
        }


@dataclass
class KindCounters:
    """Attempted/succeeded/failed counters for one entity kind."""

    attempted: int = 0
    succeeded: int = 0
    failed: list[ErrorRecord] = field(default_factory=list)


@dataclass
class ErrorReport:
    """Final, structured outcome of a run."""

    timestamp: datetime
    total_attempted: int
    total_succeeded: int
    total_failed: int
    kinds: dict[str, dict[str, Any]]
    categories: dict[str, int]
    unresolved_identities: list[dict[str, Any]]
    exit_code: int

    def to_document(self) -> dict[str, Any]:
        return {
            "Timestamp": self.timestamp.isoformat(),
            "Summary": {
                "TotalAttempted": self.total_attempted,
                "TotalSucceeded": self.total_succeeded,
                "TotalFailed": self.total_failed,
            },
            "Details": {
                "Kinds": self.kinds,
                "Categories": self.categories,
                "UnresolvedIdentities": self.unresolved_identities,
            },
            "ExitCode": self.exit_code,
        }


class ErrorTracker:
    """Collects per-kind outcomes and failures for one run.

    Not thread-safe; a run is single-threaded.

    Examples:
        >>> tracker = ErrorTracker()
        >>> tracker.attempt(EntityKind.BUCKET)
        >>> tracker.record(EntityKind.BUCKET, "Backlog", error, context="create bucket")
        >>> report, exit_code = tracker.finalize()
        >>> exit_code
        1
    """

    def __init__(self, max_examples: int = MAX_FAILURE_EXAMPLES_PER_KIND):
        self.max_examples = max_examples
        self.counters: dict[EntityKind, KindCounters] = {
            kind: KindCounters() for kind in EntityKind
        }
        self.by_category: dict[ErrorCategory, list[ErrorRecord]] = {
            category: [] for category in ErrorCategory
        }
        self.unresolved_identities: list[UnresolvedIdentityEvent] = []

    def attempt(self, kind: EntityKind) -> None:
        self.counters[kind].attempted += 1

    def succeed(self, kind: EntityKind) -> None:
        self.counters[kind].succeeded += 1

    def record(
        self,
        kind: EntityKind,
        entity_name: str,
        error: BaseException | str,
        context: str = "",
    ) -> ErrorRecord:
        """Record one failed operation.

        Args:
            kind: Entity kind that failed
            entity_name: Human-readable name of the item (title, bucket name)
            error: The exception raised, or a plain message
            context: What was being done, e.g. "create task"

        Returns:
            The appended ErrorRecord
        """
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            status_code = getattr(error, "status_code", None)
            error_type = error_type_of(error)
        else:
            message = error
            status_code = None
            error_type = "Error"

        record = ErrorRecord(
            entity_kind=kind,
            entity_name=entity_name,
            context=context,
            category=classify_error(status_code, message),
            error_type=error_type,
            message=message,
            status_code=status_code,
        )
        self.counters[kind].failed.append(record)
        self.by_category[record.category].append(record)

        logger.error(
            f"{kind} '{entity_name}' failed ({context or 'no context'}): "
            f"[{record.category}/{record.error_type}] {message}"
        )
        return record

    def record_unresolved_identity(
        self, source_user_id: str, task_name: str, reason: str
    ) -> UnresolvedIdentityEvent:
        event = UnresolvedIdentityEvent(
            source_user_id=source_user_id, task_name=task_name, reason=reason
        )
        self.unresolved_identities.append(event)
        logger.warning(
            f"Dropping assignee {source_user_id} from task '{task_name}': {reason}"
        )
        return event

    def failures(self, kind: EntityKind | None = None) -> list[ErrorRecord]:
        if kind is not None:
            return list(self.counters[kind].failed)
        return [record for counters in self.counters.values() for record in counters.failed]

    @property
    def has_failures(self) -> bool:
        return any(counters.failed for counters in self.counters.values())

    def exit_code(self) -> int:
        if self.counters[EntityKind.PLAN].failed:
            return EXIT_PLAN_FAILURE
        if self.has_failures:
            return EXIT_PARTIAL_FAILURE
        return EXIT_SUCCESS

    def finalize(self) -> tuple[ErrorReport, int]:
        """Build the final report and exit code. Does not reset the tracker."""
        exit_code = self.exit_code()
        kinds = {
            str(kind): {
                "Attempted": counters.attempted,
                "Succeeded": counters.succeeded,
                "Failed": len(counters.failed),
                "Examples": [
                    record.to_document() for record in counters.failed[: self.max_examples]
                ],
            }
            for kind, counters in self.counters.items()
        }
        report = ErrorReport(
            timestamp=datetime.now(UTC),
            total_attempted=sum(c.attempted for c in self.counters.values()),
            total_succeeded=sum(c.succeeded for c in self.counters.values()),
            total_failed=sum(len(c.failed) for c in self.counters.values()),
            kinds=kinds,
            categories={str(cat): len(records) for cat, records in self.by_category.items()},
            unresolved_identities=[event.to_document() for event in self.unresolved_identities],
            exit_code=exit_code,
        )
        logger.info(
            f"Run finished: attempted={report.total_attempted}, "
            f"succeeded={report.total_succeeded}, failed={report.total_failed}, "
            f"unresolved identities={len(self.unresolved_identities)}, exit code={exit_code}"
        )
        return report, exit_code
