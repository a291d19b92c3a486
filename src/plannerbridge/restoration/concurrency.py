"""Optimistic-concurrency updates for Planner detail resources.

Planner rejects updates that do not carry the resource's current ETag in an
``If-Match`` header. ``ConcurrencyGuard`` does the read-modify-write: read the
resource, build the patch from what was read, submit it conditionally.

A stale token surfaces as ``ConcurrencyConflictError`` and is never retried
here: re-reading and re-applying blindly would clobber whatever changed the
resource in between. Callers decide whether to retry.
"""

import logging
from collections.abc import Callable
from typing import Any

from plannerbridge.exceptions import (
    PermanentClientError,
    RestorationError,
    RetryExhaustedError,
)
from plannerbridge.transport.executor import ApiOperation, RequestExecutor

logger = logging.getLogger(__name__)

MutationBuilder = Callable[[dict[str, Any]], dict[str, Any]]


class ConcurrencyToken:
    """Opaque version marker for one resource, valid for a single update."""

    def __init__(self, resource_path: str, etag: str):
        self.resource_path = resource_path
        self._etag = etag
        self._used = False

    @property
    def used(self) -> bool:
        return self._used

    def consume(self) -> dict[str, str]:
        """Return the precondition header and invalidate the token.

        Raises:
            RestorationError: If the token was already used
        """
        if self._used:
            raise RestorationError(f"Concurrency token for {self.resource_path} already used")
        self._used = True
        return {"If-Match": self._etag}

    def __repr__(self) -> str:
        return f"ConcurrencyToken({self.resource_path}, used={self._used})"


class ConcurrencyGuard:
    """Read-modify-write wrapper for conditional PATCH operations.

    Only follow-up updates go through the guard (task details, plan category
    descriptions); creates never need a token.

    Examples:
        >>> guard = ConcurrencyGuard(executor)
        >>> guard.update_with_concurrency(
        ...     f"/planner/tasks/{task_id}/details",
        ...     lambda current: {"description": "Restored"},
        ... )
    """

    def __init__(self, executor: RequestExecutor):
        self.executor = executor

    def read_token(self, resource_path: str) -> tuple[dict[str, Any], ConcurrencyToken]:
        """Fetch the resource and a fresh token for it.

        Raises:
            PermanentClientError: If the resource came back without an ETag
        """
        current = self.executor.execute(ApiOperation("GET", resource_path)) or {}
        etag = current.get("@odata.etag")
        if not etag:
            raise PermanentClientError(f"GET {resource_path} returned no @odata.etag")
        return current, ConcurrencyToken(resource_path, etag)

    def update_with_concurrency(
        self, resource_path: str, mutation_builder: MutationBuilder
    ) -> Any:
        """Read the resource, build a patch from it and submit it with ``If-Match``.

        Args:
            resource_path: Graph path of the resource, e.g. ``/planner/plans/{id}/details``
            mutation_builder: Called with the current resource; returns the patch body

        Returns:
            The PATCH response body, or None if the builder produced an empty patch
            (in which case no PATCH is sent)

        Raises:
            ConcurrencyConflictError: If the token was stale (HTTP 409/412)
            PermanentClientError: For other client errors
            RetryExhaustedError: If transient failures outlast the retry budget

        A token is sent at most once. When the conditional PATCH fails with a
        rate limit or transient error, the next attempt starts over from a fresh
        read so that it carries a fresh token.
        """
        max_rounds = self.executor.config.max_retries
        for round_number in range(1, max_rounds + 1):
            current, token = self.read_token(resource_path)
            payload = mutation_builder(current)
            if not payload:
                logger.debug(f"Skipping update of {resource_path}: empty payload")
                return None

            logger.debug(f"Conditional update of {resource_path}: fields={sorted(payload)}")
            operation = ApiOperation(
                "PATCH", resource_path, payload=payload, headers=token.consume()
            )
            try:
                return self.executor.execute(operation, attempts=1)
            except RetryExhaustedError as e:
                if round_number >= max_rounds:
                    raise
                wait = self.executor.wait_for(e.__cause__, round_number)
                logger.warning(
                    f"Conditional update of {resource_path} failed (round {round_number}/"
                    f"{max_rounds}), re-reading in {wait:g}s: {e}"
                )
                self.executor.sleep(wait)

        raise RestorationError(f"No update attempt made for {resource_path}")
