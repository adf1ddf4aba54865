"""Serialization of observed identity creation."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text

from face_access.core.logging import get_logger
from face_access.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)

# Arbitrary application-wide key for pg_advisory_xact_lock
OBSERVED_CREATION_LOCK_KEY = 42017713


class ObservedCreationGuard:
    """Lets one observed identity creation run at a time.

    Within a process an asyncio lock serializes creators. On PostgreSQL a
    transaction-scoped advisory lock extends this across worker processes;
    it is released when the creating transaction commits or rolls back.
    Callers must re-query the observed pool after `lock_database` so a row
    committed by the previous holder is found instead of duplicated.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def hold(self) -> AsyncGenerator[None, None]:
        async with self._lock:
            yield

    async def lock_database(self, uow: UnitOfWork) -> None:
        """Take the advisory lock inside the creating transaction (PostgreSQL only)."""
        if uow.dialect_name != "postgresql":
            return
        await uow.session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": OBSERVED_CREATION_LOCK_KEY},
        )
        logger.debug("Observed creation advisory lock acquired")
