"""Observed identity administration API endpoints."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from face_access.api.models.observed import (
    ObservedUserActionRequest,
    ObservedUserActionResponse,
    ObservedUserLogItem,
    ObservedUsersQueryRequest,
    ObservedUsersQueryResponse,
    SweepResponse,
)
from face_access.core.exceptions import (
    DatastoreUnavailableError,
    InvalidTransitionError,
    ObservedIdentityNotFoundError,
)
from face_access.core.logging import get_logger
from face_access.infrastructure.dependencies import (
    get_action_handler,
    get_lifecycle_sweeper,
    get_query_service,
)
from face_access.services.lifecycle_sweeper import LifecycleSweeper
from face_access.services.observed_actions import ObservedActionHandler
from face_access.services.observed_query import ObservedUserQueryService

logger = get_logger(__name__)
router = APIRouter(
    tags=["observed-users"],
    responses={
        500: {"description": "Internal server error"},
        503: {"description": "Datastore unavailable"},
    }
)


@router.post(
    "/query",
    response_model=ObservedUsersQueryResponse,
    summary="List observed identities",
    description="Searches, filters, sorts and pages unregistered observed identities.",
)
async def query_observed_users(
    request: ObservedUsersQueryRequest,
    service: ObservedUserQueryService = Depends(get_query_service)
) -> ObservedUsersQueryResponse:
    """List observed identities with pool-wide aggregate counts.

    Raises:
        HTTPException: If the datastore fails
    """
    try:
        page = await service.list_observed(request.to_query())
        return ObservedUsersQueryResponse.from_page(page)
    except DatastoreUnavailableError as e:
        logger.error("Failed to list observed users", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")
    except Exception as e:
        logger.error("Unexpected error listing observed users", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@router.post(
    "/actions",
    response_model=ObservedUserActionResponse,
    summary="Apply an action to an observed identity",
    description="Blocks, extends the temporary access of, or registers an observed identity.",
    responses={
        404: {"description": "Observed user not found"},
        409: {"description": "Action not allowed for the current state"},
    },
)
async def apply_observed_user_action(
    request: ObservedUserActionRequest,
    handler: ObservedActionHandler = Depends(get_action_handler)
) -> ObservedUserActionResponse:
    """Apply block, extend or register to an observed identity.

    Raises:
        HTTPException: 404 for an unknown id, 409 for a refused transition
    """
    try:
        result = await handler.apply_action(request.observed_user_id, request.action_type)
        return ObservedUserActionResponse.from_result(result)
    except ObservedIdentityNotFoundError as e:
        logger.warning("Observed user not found", observed_user_id=request.observed_user_id)
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        logger.warning(
            "Observed user action refused",
            observed_user_id=request.observed_user_id,
            action=request.action_type.value,
            error=str(e)
        )
        raise HTTPException(status_code=409, detail=str(e))
    except DatastoreUnavailableError as e:
        logger.error("Failed to apply observed user action", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")
    except Exception as e:
        logger.error("Unexpected error applying observed user action", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Expire lapsed observed identities now",
    description="Runs one lifecycle sweep pass outside the periodic schedule.",
)
async def sweep_observed_users(
    sweeper: LifecycleSweeper = Depends(get_lifecycle_sweeper)
) -> SweepResponse:
    """Run one lifecycle sweep pass.

    Raises:
        HTTPException: If the datastore fails
    """
    try:
        expired = await sweeper.sweep()
        return SweepResponse(expired_count=expired)
    except DatastoreUnavailableError as e:
        logger.error("Manual sweep failed", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")


@router.get(
    "/{observed_user_id}/logs",
    response_model=List[ObservedUserLogItem],
    summary="List access decisions of an observed identity",
    responses={404: {"description": "Observed user not found"}},
)
async def list_observed_user_logs(
    observed_user_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, alias="pageSize", ge=1, le=100),
    service: ObservedUserQueryService = Depends(get_query_service)
) -> List[ObservedUserLogItem]:
    """List recorded access decisions of an observed identity, newest first.

    Raises:
        HTTPException: 404 for an unknown id
    """
    try:
        entries = await service.list_access_logs(observed_user_id, page=page, page_size=page_size)
        return [ObservedUserLogItem.from_entry(entry) for entry in entries]
    except ObservedIdentityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DatastoreUnavailableError as e:
        logger.error("Failed to list observed user logs", error=str(e))
        raise HTTPException(status_code=503, detail="Datastore unavailable")
