"""Value objects package."""
from .observed import ActionResult, ObservedAction, ObservedUserQuery, ObservedUsersPage
from .resolution import (
    AccessDecision,
    IdentityPool,
    MatchCandidate,
    MatchStatus,
    NoMatch,
    ObservedMatch,
    RegisteredMatch,
    ResolutionError,
    ResolutionOutcome,
    SubjectType,
)

__all__ = [
    "AccessDecision",
    "ActionResult",
    "IdentityPool",
    "MatchCandidate",
    "MatchStatus",
    "NoMatch",
    "ObservedAction",
    "ObservedMatch",
    "ObservedUserQuery",
    "ObservedUsersPage",
    "RegisteredMatch",
    "ResolutionError",
    "ResolutionOutcome",
    "SubjectType",
]
