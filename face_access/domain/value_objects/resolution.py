"""Identity resolution value objects."""
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from face_access.domain.entities.identity import ObservedUserRecord, RegisteredProfile


class IdentityPool(str, Enum):
    """Embedding pools the matcher can search."""
    REGISTERED = "registered"
    OBSERVED = "observed"


class MatchCandidate(BaseModel):
    """Nearest neighbor returned by an embedding index."""
    identity_id: str = Field(..., description="Registered user or observed user identifier")
    distance: float = Field(..., description="Cosine distance to the query embedding", ge=0.0)


class MatchStatus(str, Enum):
    """Classification recorded for every resolution attempt."""
    REGISTERED_USER_MATCHED = "registered_user_matched"
    REGISTERED_USER_ACCESS_DENIED = "registered_user_access_denied"
    REGISTERED_USER_DETAILS_MISSING = "registered_user_details_missing"
    OBSERVED_USER_UPDATED = "observed_user_updated"
    OBSERVED_USER_ACCESS_DENIED_EXPIRED = "observed_user_access_denied_expired"
    OBSERVED_USER_ACCESS_DENIED_BLOCKED = "observed_user_access_denied_blocked"
    OBSERVED_USER_ACCESS_DENIED_OTHER_STATUS = "observed_user_access_denied_other_status"
    NEW_OBSERVED_USER_REGISTERED = "new_observed_user_registered"
    NO_MATCH_FOUND = "no_match_found"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


class AccessDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    ERROR = "error"
    UNKNOWN = "unknown"


class SubjectType(str, Enum):
    REGISTERED = "registered"
    OBSERVED = "observed"
    NEW_OBSERVED = "new_observed"
    UNKNOWN = "unknown"


class _OutcomeBase(BaseModel):
    """Fields shared by every resolution outcome and copied verbatim to the audit log."""
    decision: AccessDecision
    match_status: MatchStatus
    reason: str
    subject_type: SubjectType
    confidence_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    requested_zone_id: Optional[str] = None
    camera_id: Optional[str] = None

    @property
    def has_access(self) -> bool:
        return self.decision == AccessDecision.GRANTED


class RegisteredMatch(_OutcomeBase):
    """Embedding matched a registered identity."""
    kind: Literal["registered"] = "registered"
    profile: RegisteredProfile
    distance: float


class ObservedMatch(_OutcomeBase):
    """Embedding matched, or created, an observed identity."""
    kind: Literal["observed"] = "observed"
    observed: ObservedUserRecord
    distance: float
    created: bool = False


class NoMatch(_OutcomeBase):
    """Nothing matched and automatic enrollment is disabled."""
    kind: Literal["no_match"] = "no_match"


class ResolutionError(_OutcomeBase):
    """Resolution aborted; nothing was created or mutated."""
    kind: Literal["error"] = "error"
    error_type: str = Field(..., description="Exception class that aborted the resolution")
    subject_id: Optional[str] = Field(None, description="Registered user id when the failure followed a match")


ResolutionOutcome = Annotated[
    Union[RegisteredMatch, ObservedMatch, NoMatch, ResolutionError],
    Field(discriminator="kind"),
]
