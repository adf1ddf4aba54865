"""Shared fixtures: a throwaway SQLite database and the services built on it."""
from typing import Iterable, Optional

import numpy as np
import pytest
from sqlalchemy import select

from face_access.domain.entities.identity import IdentityStatus
from face_access.infrastructure.database.models import (
    RegisteredFace,
    RegisteredUser,
    Role,
    Zone,
)
from face_access.infrastructure.database.session import (
    create_engine,
    create_schema,
    create_session_factory,
)
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory
from face_access.infrastructure.matching import SqlEmbeddingIndex
from face_access.services.decision_logger import AccessDecisionLogger
from face_access.services.identity_resolver import IdentityResolver
from face_access.services.lifecycle_sweeper import LifecycleSweeper
from face_access.services.observed_actions import ObservedActionHandler
from face_access.services.observed_query import ObservedUserQueryService
from face_access.services.observed_store import ObservedIdentityStore
from face_access.services.status_catalog import StatusCatalog

from helpers import DIMENSION, OBSERVED_THRESHOLD, REGISTERED_THRESHOLD, START, FakeClock


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'face_access.db'}"


@pytest.fixture
async def engine(database_url):
    engine = create_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine) -> UnitOfWorkFactory:
    return UnitOfWorkFactory(create_session_factory(engine))


@pytest.fixture
async def catalog(uow_factory) -> StatusCatalog:
    catalog = StatusCatalog(uow_factory)
    await catalog.seed()
    return catalog


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def index(uow_factory) -> SqlEmbeddingIndex:
    return SqlEmbeddingIndex(uow_factory, dimension=DIMENSION)


@pytest.fixture
def store(uow_factory, catalog, index) -> ObservedIdentityStore:
    return ObservedIdentityStore(uow_factory, catalog, index, ttl_days=7)


@pytest.fixture
def decision_logger(uow_factory) -> AccessDecisionLogger:
    return AccessDecisionLogger(uow_factory, timeout=5.0)


@pytest.fixture
def resolver(index, uow_factory, store, decision_logger, clock) -> IdentityResolver:
    return IdentityResolver(
        index=index,
        uow_factory=uow_factory,
        store=store,
        decision_logger=decision_logger,
        registered_threshold=REGISTERED_THRESHOLD,
        observed_threshold=OBSERVED_THRESHOLD,
        auto_enroll=True,
        timeout=5.0,
        dimension=DIMENSION,
        clock=clock,
    )


@pytest.fixture
def sweeper(store, clock) -> LifecycleSweeper:
    return LifecycleSweeper(store, interval_seconds=60, clock=clock)


@pytest.fixture
def action_handler(store, clock) -> ObservedActionHandler:
    return ObservedActionHandler(store, clock=clock)


@pytest.fixture
def query_service(uow_factory, catalog) -> ObservedUserQueryService:
    return ObservedUserQueryService(uow_factory, catalog, high_risk_threshold=3)


@pytest.fixture
def seed_registered(uow_factory, catalog):
    """Insert a registered user with one face embedding; returns the user id."""

    async def _seed(
        embedding: np.ndarray,
        zone_ids: Iterable[str] = ("zone-lobby",),
        status: IdentityStatus = IdentityStatus.ACTIVE,
        full_name: str = "Ada Lovelace",
        role_name: Optional[str] = "Engineer",
    ) -> str:
        status_id = await catalog.id_for(status)
        async with uow_factory() as uow:
            session = uow.session
            zones = []
            for zone_id in zone_ids:
                zone = await session.get(Zone, zone_id)
                if zone is None:
                    zone = Zone(id=zone_id, name=zone_id.replace("zone-", "").title())
                    session.add(zone)
                zones.append(zone)
            role = None
            if role_name:
                role = (
                    await session.execute(select(Role).where(Role.name == role_name))
                ).scalar_one_or_none() or Role(name=role_name)
            user = RegisteredUser(
                full_name=full_name,
                role=role,
                status_id=status_id,
                zones=zones,
                faces=[RegisteredFace(embedding=[float(value) for value in embedding])],
            )
            session.add(user)
            await session.flush()
            return user.id

    return _seed
