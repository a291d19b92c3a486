"""Cross-tenant user identity resolution with a run-scoped cache.

The same person has a different object id in every tenant. To re-assign a
restored task, each source-tenant user id is translated to a target-tenant
id by trying, in order:

1. the explicit mapping table supplied by the operator,
2. a lookup by user principal name,
3. a lookup by mail address (only when it differs from the principal name),
4. the source id itself (same-tenant restores share ids).

Every lookup goes through ``RequestExecutor`` and returns a tagged
``LookupOutcome``. The final outcome, resolved or not, is cached for the run
and never retried.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from plannerbridge.constants import PERCENTAGE_MULTIPLIER
from plannerbridge.exceptions import GraphRequestError
from plannerbridge.planner.models import UserHint
from plannerbridge.restoration.context import RunContext
from plannerbridge.transport.executor import ApiOperation, RequestExecutor

logger = logging.getLogger(__name__)


class ResolutionStrategy(StrEnum):
    """Where a resolution outcome came from."""

    EXPLICIT_MAP = "explicit-map"
    PRINCIPAL_NAME = "principal-name"
    MAIL = "mail"
    SOURCE_ID = "source-id"
    NONE = "none"


@dataclass(frozen=True)
class LookupOutcome:
    """Tagged result of one resolution strategy."""

    strategy: ResolutionStrategy
    target_id: str | None = None
    reason: str = ""
    calls: int = 0

    @property
    def resolved(self) -> bool:
        return self.target_id is not None


@dataclass(frozen=True)
class IdentityRecord:
    """Final, cached resolution of one source user.

    Attributes:
        source_user_id: User id in the source tenant
        principal_name: UPN hint from the export, if any
        mail: Mail hint from the export, if any
        target_user_id: Resolved id in the target tenant, None when unresolved
        strategy: Strategy that resolved the user (``NONE`` when unresolved)
        reason: Why resolution failed, one entry per strategy tried
        lookup_calls: Graph calls spent resolving this user
    """

    source_user_id: str
    principal_name: str | None
    mail: str | None
    target_user_id: str | None
    strategy: ResolutionStrategy
    reason: str = ""
    lookup_calls: int = 0

    @property
    def resolved(self) -> bool:
        return self.target_user_id is not None


@dataclass
class ResolverStats:
    """Aggregate resolver counters for the run."""

    lookups: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    successes: int = 0
    failures: int = 0
    calls_avoided: int = 0

    @property
    def hit_rate(self) -> float:
        if self.lookups == 0:
            return 0.0
        return self.cache_hits / self.lookups * PERCENTAGE_MULTIPLIER

    def to_document(self) -> dict[str, int | float]:
        return {
            "TotalLookups": self.lookups,
            "CacheHits": self.cache_hits,
            "CacheMisses": self.cache_misses,
            "HitRatePercent": round(self.hit_rate, 1),
            "Resolved": self.successes,
            "Unresolved": self.failures,
            "EstimatedCallsAvoided": self.calls_avoided,
        }


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


class IdentityResolver:
    """Resolves source-tenant user ids to target-tenant user ids.

    Examples:
        >>> resolver = IdentityResolver(executor, context, explicit_map={"src-1": "dst-9"})
        >>> record = resolver.resolve("src-2", UserHint(userPrincipalName="ana@contoso.com"))
        >>> record.target_user_id if record.resolved else "unresolved"
    """

    def __init__(
        self,
        executor: RequestExecutor,
        context: RunContext,
        explicit_map: Mapping[str, str] | None = None,
    ):
        self.executor = executor
        self.context = context
        self.explicit_map = dict(explicit_map or {})
        self.stats = ResolverStats()

    @property
    def cache(self) -> dict[str, IdentityRecord]:
        return self.context.identity_cache

    def resolve(self, source_user_id: str, hints: UserHint | None = None) -> IdentityRecord:
        """Resolve one user, consulting the run cache first.

        Args:
            source_user_id: User id in the source tenant
            hints: Principal name / mail hints from the export's UserMap

        Returns:
            IdentityRecord; ``record.resolved`` is False when every strategy failed
        """
        self.stats.lookups += 1
        cached = self.cache.get(source_user_id)
        if cached is not None:
            self.stats.cache_hits += 1
            self.stats.calls_avoided += cached.lookup_calls
            logger.debug(
                f"Identity cache hit for {source_user_id}: "
                f"{cached.target_user_id or 'unresolved'}"
            )
            return cached

        self.stats.cache_misses += 1
        hints = hints or UserHint()
        record = self._resolve_uncached(source_user_id, hints)
        self.cache[source_user_id] = record

        if record.resolved:
            self.stats.successes += 1
            logger.info(
                f"Resolved user {source_user_id} -> {record.target_user_id} via {record.strategy}"
            )
        else:
            self.stats.failures += 1
            logger.warning(f"Could not resolve user {source_user_id}: {record.reason}")
        return record

    def _resolve_uncached(self, source_user_id: str, hints: UserHint) -> IdentityRecord:
        upn = (hints.user_principal_name or "").strip() or None
        mail = (hints.mail or "").strip() or None

        strategies: list[Callable[[], LookupOutcome]] = [
            lambda: self._from_explicit_map(source_user_id),
        ]
        if upn:
            strategies.append(lambda: self._lookup_by_principal_name(upn))
        if mail and (upn is None or mail.lower() != upn.lower()):
            strategies.append(lambda: self._lookup_by_mail(mail))
        strategies.append(lambda: self._lookup_by_id(source_user_id))

        reasons: list[str] = []
        calls = 0
        for strategy in strategies:
            outcome = strategy()
            calls += outcome.calls
            if outcome.resolved:
                return IdentityRecord(
                    source_user_id=source_user_id,
                    principal_name=upn,
                    mail=mail,
                    target_user_id=outcome.target_id,
                    strategy=outcome.strategy,
                    lookup_calls=calls,
                )
            if outcome.reason:
                reasons.append(f"{outcome.strategy}: {outcome.reason}")

        return IdentityRecord(
            source_user_id=source_user_id,
            principal_name=upn,
            mail=mail,
            target_user_id=None,
            strategy=ResolutionStrategy.NONE,
            reason="; ".join(reasons) or "no strategy applicable",
            lookup_calls=calls,
        )

    def _from_explicit_map(self, source_user_id: str) -> LookupOutcome:
        target = self.explicit_map.get(source_user_id)
        if target:
            return LookupOutcome(ResolutionStrategy.EXPLICIT_MAP, target_id=target)
        return LookupOutcome(ResolutionStrategy.EXPLICIT_MAP)

    def _lookup(self, strategy: ResolutionStrategy, operation: ApiOperation) -> LookupOutcome:
        try:
            body = self.executor.execute(operation)
        except GraphRequestError as e:
            return LookupOutcome(strategy, reason=f"{e.error_type}: {e}", calls=1)

        if isinstance(body, dict) and "value" in body:
            matches = body.get("value") or []
            if len(matches) != 1:
                return LookupOutcome(strategy, reason=f"{len(matches)} matching users", calls=1)
            body = matches[0]

        target_id = body.get("id") if isinstance(body, dict) else None
        if not target_id:
            return LookupOutcome(strategy, reason="response carried no user id", calls=1)
        return LookupOutcome(strategy, target_id=target_id, calls=1)

    def _lookup_by_principal_name(self, upn: str) -> LookupOutcome:
        return self._lookup(
            ResolutionStrategy.PRINCIPAL_NAME,
            ApiOperation("GET", f"/users/{upn}", params={"$select": "id"}),
        )

    def _lookup_by_mail(self, mail: str) -> LookupOutcome:
        return self._lookup(
            ResolutionStrategy.MAIL,
            ApiOperation(
                "GET",
                "/users",
                params={"$filter": f"mail eq '{_odata_quote(mail)}'", "$select": "id"},
            ),
        )

    def _lookup_by_id(self, source_user_id: str) -> LookupOutcome:
        return self._lookup(
            ResolutionStrategy.SOURCE_ID,
            ApiOperation("GET", f"/users/{source_user_id}", params={"$select": "id"}),
        )

    def get_stats(self) -> dict[str, int | float]:
        return self.stats.to_document()
