"""Cross-tenant identity resolution."""

from plannerbridge.identity.mapping import load_user_map
from plannerbridge.identity.resolver import (
    IdentityRecord,
    IdentityResolver,
    LookupOutcome,
    ResolutionStrategy,
)

__all__ = [
    "IdentityRecord",
    "IdentityResolver",
    "LookupOutcome",
    "ResolutionStrategy",
    "load_user_map",
]
