"""FastAPI dependency providers."""
from typing import AsyncGenerator

from fastapi import Depends

from face_access.core.container import ServiceContainer, container
from face_access.core.exceptions import ServiceNotInitializedError
from face_access.services.identity_resolver import IdentityResolver
from face_access.services.lifecycle_sweeper import LifecycleSweeper
from face_access.services.observed_actions import ObservedActionHandler
from face_access.services.observed_query import ObservedUserQueryService


async def get_container() -> ServiceContainer:
    """Dependency provider for the global ServiceContainer instance."""
    if not container.is_initialized:
        # Attempt to initialize if not already done (e.g., during testing)
        try:
            await container.initialize()
        except Exception as e:
            # Raise specific error if container is needed but fails init
            raise ServiceNotInitializedError(f"Service container could not be initialized: {e}")
    return container


async def get_identity_resolver(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[IdentityResolver, None]:
    """Provide the identity resolver.

    Raises:
        ServiceNotInitializedError: If the resolver is not initialized
    """
    if container.identity_resolver is None:
        raise ServiceNotInitializedError("IdentityResolver not found in initialized container")
    yield container.identity_resolver


async def get_query_service(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[ObservedUserQueryService, None]:
    """Provide the observed user query service."""
    if container.query_service is None:
        raise ServiceNotInitializedError("ObservedUserQueryService not found in initialized container")
    yield container.query_service


async def get_action_handler(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[ObservedActionHandler, None]:
    """Provide the observed user action handler."""
    if container.action_handler is None:
        raise ServiceNotInitializedError("ObservedActionHandler not found in initialized container")
    yield container.action_handler


async def get_lifecycle_sweeper(
    container: ServiceContainer = Depends(get_container),
) -> AsyncGenerator[LifecycleSweeper, None]:
    """Provide the lifecycle sweeper."""
    if container.lifecycle_sweeper is None:
        raise ServiceNotInitializedError("LifecycleSweeper not found in initialized container")
    yield container.lifecycle_sweeper
