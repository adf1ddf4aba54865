"""Database session management."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.pool import NullPool

from face_access.core.config import settings
from face_access.core.logging import get_logger
from face_access.infrastructure.database.models import Base

logger = get_logger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine.

    SQLite (used for local runs and tests) gets a connection per session,
    every other backend gets a sized connection pool. On asyncpg every
    statement is bounded by DATASTORE_TIMEOUT_SECONDS both client side
    (`command_timeout`) and server side (`statement_timeout`), so a slow
    statement fails and rolls back instead of committing late.

    Args:
        database_url: Override for settings.DATABASE_URL

    Returns:
        AsyncEngine: Configured engine
    """
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool)

    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        timeout = settings.DATASTORE_TIMEOUT_SECONDS
        connect_args = {
            "command_timeout": timeout,
            "server_settings": {"statement_timeout": str(int(timeout * 1000))},
        }

    return create_async_engine(
        url,
        connect_args=connect_args,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_pre_ping=True
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as connection:
        if connection.dialect.name == "postgresql":
            await connection.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await connection.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Args:
        session_factory: Factory producing sessions

    Yields:
        AsyncSession: Database session

    Example:
        ```python
        async with get_db_session(factory) as session:
            await session.execute(query)
            await session.commit()
        ```
    """
    session = session_factory()
    logger.debug("Creating new database session")
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error(
            "Database session error",
            error=str(e),
            exc_info=True
        )
        await session.rollback()
        raise
    except Exception:
        await session.rollback()
        raise
    finally:
        logger.debug("Closing database session")
        await session.close()
