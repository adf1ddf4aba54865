"""Access validation API endpoints."""
from typing import Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from face_access.api.models.access import AccessValidationRequest, AccessValidationResponse
from face_access.core.exceptions import DatastoreUnavailableError
from face_access.core.logging import get_logger
from face_access.domain.value_objects.resolution import MatchStatus, ResolutionError
from face_access.infrastructure.dependencies import get_identity_resolver
from face_access.services.identity_resolver import IdentityResolver

logger = get_logger(__name__)
router = APIRouter(
    tags=["access"],
    responses={
        400: {"description": "Invalid embedding"},
        500: {"description": "Internal server error"},
        503: {"description": "Datastore unavailable"},
    }
)


@router.post(
    "/validate",
    response_model=AccessValidationResponse,
    response_model_exclude_none=True,
    summary="Validate access for a face embedding",
    description=(
        "Resolves the embedding against registered and observed identities, "
        "enrolling a new observed identity when nothing matches."
    ),
    responses={
        200: {
            "description": "Identity resolved",
            "content": {
                "application/json": {
                    "example": {
                        "type": "observed_user_updated",
                        "hasAccess": True,
                        "similarity": 0.98,
                        "reason": "Observed user updated for zone: 0b7f7a52-3f4e-4c38-a2a4-1f0a4d1f6c11",
                        "observedUser": {
                            "id": "550e8400-e29b-41d4-a716-446655440000",
                            "status_name": "active_temporal",
                            "distance": 0.04,
                            "access_count": 3,
                            "expires_at": "2026-10-26T09:30:00+00:00",
                            "created": False,
                        },
                    }
                }
            },
        },
    },
)
async def validate_access(
    request: AccessValidationRequest,
    resolver: IdentityResolver = Depends(get_identity_resolver)
) -> Union[AccessValidationResponse, JSONResponse]:
    """Resolve a face embedding to an identity and an access decision.

    Errors carry an empty body; the capture agent only needs the status code
    to log and retry.

    Args:
        request: Embedding plus requested zone and camera
        resolver: Identity resolver provided by dependency injection

    Returns:
        AccessValidationResponse, or an empty JSON body with 400/500/503
    """
    outcome = await resolver.resolve(
        request.face_embedding,
        zone_id=request.zone_id,
        camera_id=request.camera_id,
    )
    if isinstance(outcome, ResolutionError):
        if outcome.match_status == MatchStatus.INVALID_INPUT:
            status_code = 400
        elif outcome.error_type == DatastoreUnavailableError.__name__:
            status_code = 503
        else:
            status_code = 500
        logger.warning(
            "Access validation failed",
            status_code=status_code,
            match_status=outcome.match_status.value,
            error_type=outcome.error_type
        )
        return JSONResponse(status_code=status_code, content={})

    return AccessValidationResponse.from_outcome(outcome)
