"""Service container for dependency injection."""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from face_access.core.config import settings
from face_access.core.logging import get_logger
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.infrastructure.database.session import (
    create_engine,
    create_schema,
    create_session_factory,
)
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory
from face_access.infrastructure.matching import PineconeEmbeddingIndex, SqlEmbeddingIndex
from face_access.services.creation_guard import ObservedCreationGuard
from face_access.services.decision_logger import AccessDecisionLogger
from face_access.services.identity_resolver import IdentityResolver
from face_access.services.lifecycle_sweeper import LifecycleSweeper
from face_access.services.observed_actions import ObservedActionHandler
from face_access.services.observed_query import ObservedUserQueryService
from face_access.services.observed_store import ObservedIdentityStore
from face_access.services.status_catalog import StatusCatalog

logger = get_logger(__name__)


class ServiceContainer:
    """Container for application services.

    This container manages the lifecycle and dependencies of all services in the application.
    It ensures proper initialization order and provides a single source of truth for service instances.

    Example:
        ```python
        container = ServiceContainer()
        await container.initialize()

        resolver = container.identity_resolver
        sweeper = container.lifecycle_sweeper
        ```
    """

    def __init__(self) -> None:
        """Initialize empty container."""
        # Infrastructure
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.uow_factory: Optional[UnitOfWorkFactory] = None
        self.embedding_index: Optional[EmbeddingIndex] = None

        # Domain services
        self.status_catalog: Optional[StatusCatalog] = None
        self.observed_store: Optional[ObservedIdentityStore] = None
        self.decision_logger: Optional[AccessDecisionLogger] = None
        self.identity_resolver: Optional[IdentityResolver] = None
        self.lifecycle_sweeper: Optional[LifecycleSweeper] = None
        self.action_handler: Optional[ObservedActionHandler] = None
        self.query_service: Optional[ObservedUserQueryService] = None

    @property
    def is_initialized(self) -> bool:
        return self.identity_resolver is not None

    async def initialize(
        self,
        database_url: Optional[str] = None,
        create_tables: Optional[bool] = None,
    ) -> None:
        """Initialize all services in the correct order.

        Args:
            database_url: Override for settings.DATABASE_URL
            create_tables: Create missing tables and seed the status catalog
                (defaults to settings.DATABASE_AUTO_CREATE)
        """
        self.engine = create_engine(database_url)
        self.session_factory = create_session_factory(self.engine)
        self.uow_factory = UnitOfWorkFactory(self.session_factory)

        if settings.VECTOR_BACKEND == "pinecone":
            self.embedding_index = PineconeEmbeddingIndex()
        else:
            self.embedding_index = SqlEmbeddingIndex(self.uow_factory)

        self.status_catalog = StatusCatalog(self.uow_factory)
        if create_tables if create_tables is not None else settings.DATABASE_AUTO_CREATE:
            await create_schema(self.engine)
            await self.status_catalog.seed()
        else:
            await self.status_catalog.load()

        self.observed_store = ObservedIdentityStore(
            uow_factory=self.uow_factory,
            catalog=self.status_catalog,
            index=self.embedding_index,
            creation_guard=ObservedCreationGuard(),
        )
        self.decision_logger = AccessDecisionLogger(self.uow_factory)
        self.identity_resolver = IdentityResolver(
            index=self.embedding_index,
            uow_factory=self.uow_factory,
            store=self.observed_store,
            decision_logger=self.decision_logger,
        )
        self.lifecycle_sweeper = LifecycleSweeper(self.observed_store)
        self.action_handler = ObservedActionHandler(self.observed_store)
        self.query_service = ObservedUserQueryService(self.uow_factory, self.status_catalog)
        logger.info(
            "Service container initialized",
            vector_backend=settings.VECTOR_BACKEND,
            database=self.engine.dialect.name
        )

    async def cleanup(self) -> None:
        """Cleanup all services in reverse order of initialization."""
        if self.lifecycle_sweeper:
            await self.lifecycle_sweeper.stop()

        # Cleanup domain services
        self.query_service = None
        self.action_handler = None
        self.lifecycle_sweeper = None
        self.identity_resolver = None
        self.decision_logger = None
        self.observed_store = None
        self.status_catalog = None

        # Cleanup infrastructure services
        self.embedding_index = None
        self.uow_factory = None
        self.session_factory = None
        if self.engine:
            await self.engine.dispose()
            self.engine = None


# Global container instance
container = ServiceContainer()
