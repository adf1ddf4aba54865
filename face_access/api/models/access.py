"""API models for access validation."""
from typing import List, Optional

from pydantic import BaseModel, Field

from face_access.domain.entities.embedding import similarity_from_distance
from face_access.domain.entities.identity import CatalogItem
from face_access.domain.value_objects.resolution import (
    ObservedMatch,
    RegisteredMatch,
    ResolutionOutcome,
)


class AccessValidationRequest(BaseModel):
    """Request model for the /access/validate endpoint.

    The embedding is validated by the resolver so a malformed one is
    recorded in the audit trail like any other attempt.
    """
    face_embedding: Optional[List[float]] = Field(
        None,
        alias="faceEmbedding",
        description="Face embedding produced by the capture agent"
    )
    zone_id: Optional[str] = Field(None, alias="zoneId", description="Zone the subject asks to enter")
    camera_id: Optional[str] = Field(None, alias="cameraId", description="Camera that captured the subject")

    model_config = {"populate_by_name": True}


class MatchedUser(BaseModel):
    """Registered identity payload."""
    id: str
    full_name: str
    role_name: Optional[str] = None
    status_name: Optional[str] = None
    access_zones: List[CatalogItem] = Field(default_factory=list)
    distance: float


class ObservedUser(BaseModel):
    """Observed identity payload."""
    id: str
    status_name: str
    distance: float
    access_count: int
    expires_at: str
    created: bool = False


class AccessValidationResponse(BaseModel):
    """Response model for the /access/validate endpoint."""
    type: str = Field(..., description="Match classification")
    has_access: bool = Field(..., alias="hasAccess")
    similarity: Optional[float] = Field(None, description="1 - distance/2 of the matched identity")
    reason: str
    matched_user: Optional[MatchedUser] = Field(None, alias="matchedUser")
    observed_user: Optional[ObservedUser] = Field(None, alias="observedUser")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_outcome(cls, outcome: ResolutionOutcome) -> "AccessValidationResponse":
        """Convert a non-error resolution outcome to the API response model."""
        response = cls(
            type=outcome.match_status.value,
            has_access=outcome.has_access,
            reason=outcome.reason,
        )
        if isinstance(outcome, RegisteredMatch):
            profile = outcome.profile
            response.similarity = similarity_from_distance(outcome.distance)
            response.matched_user = MatchedUser(
                id=profile.id,
                full_name=profile.full_name,
                role_name=profile.role.name if profile.role else None,
                status_name=profile.status_name,
                access_zones=profile.access_zones,
                distance=outcome.distance,
            )
        elif isinstance(outcome, ObservedMatch):
            observed = outcome.observed
            response.similarity = similarity_from_distance(outcome.distance)
            response.observed_user = ObservedUser(
                id=observed.id,
                status_name=observed.status,
                distance=outcome.distance,
                access_count=observed.access_count,
                expires_at=observed.expires_at.isoformat(),
                created=outcome.created,
            )
        return response
