"""Cached status catalog (status name <-> catalog id)."""
import asyncio
from typing import Dict, Optional

from face_access.core.exceptions import UnclassifiedError
from face_access.core.logging import get_logger
from face_access.domain.entities.identity import IdentityStatus
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory

logger = get_logger(__name__)

# Statuses the resolver, sweeper and action handler cannot work without
ESSENTIAL_STATUSES = (
    IdentityStatus.ACTIVE_TEMPORAL,
    IdentityStatus.EXPIRED,
    IdentityStatus.BLOCKED,
    IdentityStatus.IN_REVIEW_ADMIN,
)


class StatusCatalog:
    """Status catalog loaded once and cached until invalidated.

    Example:
        ```python
        catalog = StatusCatalog(uow_factory)
        expired_id = await catalog.id_for(IdentityStatus.EXPIRED)
        catalog.invalidate()  # after an administrator edits the catalog
        ```
    """

    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory
        self._ids_by_name: Optional[Dict[str, str]] = None
        self._names_by_id: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def seed(self) -> None:
        """Insert every known status name that is missing, then reload."""
        async with self._uow_factory() as uow:
            await uow.statuses.ensure(status.value for status in IdentityStatus)
        self.invalidate()
        await self.load()

    async def load(self) -> None:
        """Load the catalog if it is not cached yet.

        Raises:
            UnclassifiedError: If an essential status is missing from the catalog
            DatastoreUnavailableError: If the catalog cannot be read
        """
        if self._ids_by_name is not None:
            return
        async with self._lock:
            if self._ids_by_name is not None:
                return
            async with self._uow_factory() as uow:
                entries = await uow.statuses.list_all()

            ids_by_name = {entry.name: entry.id for entry in entries}
            missing = [status.value for status in ESSENTIAL_STATUSES if status.value not in ids_by_name]
            if missing:
                logger.error("Status catalog is missing essential statuses", missing=missing)
                raise UnclassifiedError(
                    "Missing essential status ids in user_statuses_catalog",
                    details={"missing": missing}
                )

            self._names_by_id = {entry_id: name for name, entry_id in ids_by_name.items()}
            self._ids_by_name = ids_by_name
            logger.info("Status catalog loaded", statuses=len(ids_by_name))

    def invalidate(self) -> None:
        """Drop the cached catalog; the next lookup reloads it."""
        self._ids_by_name = None
        self._names_by_id = {}

    async def id_for(self, status: IdentityStatus) -> str:
        """Catalog id of a status name.

        Raises:
            UnclassifiedError: If the status is not in the catalog
        """
        await self.load()
        try:
            return self._ids_by_name[status.value]
        except KeyError:
            raise UnclassifiedError(f"Status not in catalog: {status.value}")

    async def name_for(self, status_id: str) -> str:
        """Status name of a catalog id; unknown ids map to "unknown"."""
        await self.load()
        return self._names_by_id.get(status_id, "unknown")
