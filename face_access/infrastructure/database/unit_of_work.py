"""Unit of work pattern implementation."""
from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncGenerator, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from face_access.core.exceptions import DatastoreUnavailableError
from face_access.infrastructure.database.repositories import (
    AccessLogRepository,
    ObservedUserRepository,
    RegisteredUserRepository,
    StatusCatalogRepository,
    ZoneRepository,
)
from face_access.infrastructure.database.session import get_db_session


class UnitOfWork:
    """Unit of work for managing database transactions and repositories."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize unit of work.

        Args:
            session: Database session
        """
        self._session = session
        self.statuses = StatusCatalogRepository(session)
        self.zones = ZoneRepository(session)
        self.registered_users = RegisteredUserRepository(session)
        self.observed_users = ObservedUserRepository(session)
        self.access_logs = AccessLogRepository(session)

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    async def __aenter__(self) -> "UnitOfWork":
        """Enter async context manager.

        Returns:
            UnitOfWork: Self
        """
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Exit async context manager.

        Commits when the block succeeded, rolls back otherwise.
        """
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        await self._session.rollback()


class UnitOfWorkFactory:
    """Opens one transactional unit of work per call.

    SQLAlchemy failures, including failures during commit, are re-raised as
    DatastoreUnavailableError so callers deal with a single error type.

    Example:
        ```python
        uow_factory = UnitOfWorkFactory(session_factory)
        async with uow_factory() as uow:
            observed = await uow.observed_users.get(observed_id)
        ```
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self) -> AsyncGenerator[UnitOfWork, None]:
        try:
            async with get_db_session(self._session_factory) as session:
                async with UnitOfWork(session) as uow:
                    yield uow
        except SQLAlchemyError as e:
            raise DatastoreUnavailableError(f"Datastore operation failed: {e}") from e
