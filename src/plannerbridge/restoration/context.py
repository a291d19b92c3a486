"""Per-run mutable state shared by restoration components."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from plannerbridge.restoration.error_tracker import ErrorTracker

if TYPE_CHECKING:
    from plannerbridge.identity.resolver import IdentityRecord


@dataclass
class RunContext:
    """State owned by one restoration run.

    Components receive the context at construction instead of reaching for
    module-level globals, so every test can start from a fresh run.

    The identity cache and the tracker are the only shared mutable state. No
    locking is done: runs are single-threaded. Introducing worker threads
    requires a lock around both first.

    Attributes:
        run_id: Unique run identifier (used in logs)
        started_at: When the run started (UTC)
        dry_run: Walk the restoration without mutating the target tenant
        tracker: Outcome counters and failure records
        identity_cache: Source user id -> resolved IdentityRecord
    """

    run_id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    dry_run: bool = False
    tracker: ErrorTracker = field(default_factory=ErrorTracker)
    identity_cache: dict[str, "IdentityRecord"] = field(default_factory=dict)
