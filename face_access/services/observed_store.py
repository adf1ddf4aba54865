"""Observed identity store: the only writer of observed identity rows."""
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Tuple

import numpy as np

from face_access.core.config import settings
from face_access.core.exceptions import DatastoreUnavailableError
from face_access.core.logging import get_logger
from face_access.domain.entities.identity import IdentityStatus, ObservedUserRecord
from face_access.domain.interfaces.matching.embedding_index import EmbeddingIndex
from face_access.domain.value_objects.resolution import IdentityPool, MatchCandidate
from face_access.infrastructure.database.models import ObservedUser
from face_access.infrastructure.database.unit_of_work import UnitOfWork, UnitOfWorkFactory
from face_access.services.creation_guard import ObservedCreationGuard
from face_access.services.status_catalog import StatusCatalog

logger = get_logger(__name__)

TransitionCheck = Callable[[ObservedUserRecord], None]


class ObservedIdentityStore:
    """Persistence of observed identities.

    Every public method runs in its own transaction; on any error nothing is
    written. Datastore failures surface as DatastoreUnavailableError.

    The embedding index is written only after the row has committed, so a
    vector never becomes matchable before its row exists. If publishing the
    vector fails, the committed row is deleted again and the error propagates.

    Example:
        ```python
        store = ObservedIdentityStore(uow_factory, catalog, index)
        record = await store.create(embedding, seen_at=now, zone_id="zone-1")
        record = await store.touch(record.id, seen_at=later, zone_id="zone-2")
        ```
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        catalog: StatusCatalog,
        index: EmbeddingIndex,
        ttl_days: Optional[int] = None,
        creation_guard: Optional[ObservedCreationGuard] = None,
    ) -> None:
        """Initialize the store.

        Args:
            uow_factory: Opens transactional units of work
            catalog: Status name/id catalog
            index: Embedding index kept in sync with created and registered rows
            ttl_days: Temporary access window (defaults to settings.OBSERVED_TTL_DAYS)
            creation_guard: Serializes creation (a private guard is used when omitted)
        """
        self._uow_factory = uow_factory
        self._catalog = catalog
        self._index = index
        self._ttl = timedelta(days=ttl_days if ttl_days is not None else settings.OBSERVED_TTL_DAYS)
        self._guard = creation_guard or ObservedCreationGuard()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, observed_user_id: str) -> ObservedUserRecord:
        """Get an observed identity.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        async with self._uow_factory() as uow:
            row = await uow.observed_users.get(observed_user_id)
            return await self._to_record(row)

    async def create(
        self,
        embedding: np.ndarray,
        seen_at: datetime,
        zone_id: Optional[str] = None,
    ) -> ObservedUserRecord:
        """Create an observed identity with immediate temporary access.

        Args:
            embedding: Validated embedding of the first sighting
            seen_at: Time of the first sighting
            zone_id: Zone requested on the first sighting

        Returns:
            ObservedUserRecord: The created identity
        """
        async with self._uow_factory() as uow:
            record = await self._insert(uow, embedding, seen_at, zone_id)
        await self._publish(record, embedding)
        return record

    async def create_unless_matched(
        self,
        embedding: np.ndarray,
        seen_at: datetime,
        find_existing: Callable[[], Awaitable[Optional[MatchCandidate]]],
        zone_id: Optional[str] = None,
    ) -> Tuple[Optional[MatchCandidate], Optional[ObservedUserRecord]]:
        """Create an observed identity unless a concurrent creator got there first.

        `find_existing` is re-run while creation is serialized, so two
        near-identical first sightings produce one row. The vector is
        published before the guard is released, so the next creator's
        re-check can see it. Across processes this holds only when the
        embedding index is the database itself; an external index is
        serialized per process.

        Args:
            embedding: Validated embedding of the sighting
            seen_at: Time of the sighting
            find_existing: Observed pool lookup to repeat under the guard
            zone_id: Zone requested on the sighting

        Returns:
            (candidate, None) when the re-check matched an existing identity,
            (None, record) when a new identity was created
        """
        async with self._guard.hold():
            async with self._uow_factory() as uow:
                await self._guard.lock_database(uow)
                existing = await find_existing()
                if existing is not None:
                    logger.info(
                        "Observed identity appeared while waiting to create",
                        observed_user_id=existing.identity_id,
                        distance=existing.distance
                    )
                    return existing, None
                record = await self._insert(uow, embedding, seen_at, zone_id)
            await self._publish(record, embedding)
            return None, record

    async def touch(
        self,
        observed_user_id: str,
        seen_at: datetime,
        zone_id: Optional[str] = None,
    ) -> Optional[ObservedUserRecord]:
        """Record a re-sighting: bump access count, last seen and denial streak.

        The denial streak is decided from the row as it stands when the update
        takes its lock, and the returned record is that same row, so the
        caller's access decision and the stored counters always agree.

        Returns:
            ObservedUserRecord: The identity after the update, or None if it
            has been registered in the meantime

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        active_temporal_id = await self._catalog.id_for(IdentityStatus.ACTIVE_TEMPORAL)
        async with self._uow_factory() as uow:
            row = await uow.observed_users.touch(
                observed_user_id,
                seen_at=seen_at,
                active_temporal_id=active_temporal_id,
                zone_id=zone_id,
            )
            if row is None:
                return None
            return await self._to_record(row)

    async def set_status(
        self,
        observed_user_id: str,
        status: IdentityStatus,
        check: Optional[TransitionCheck] = None,
    ) -> ObservedUserRecord:
        """Set the status of an observed identity.

        Args:
            observed_user_id: Observed user identifier
            status: New status
            check: Raises to veto the change given the current state

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        status_id = await self._catalog.id_for(status)
        async with self._uow_factory() as uow:
            await self._check(uow, observed_user_id, check)
            row = await uow.observed_users.update_fields(observed_user_id, status_id=status_id)
            return await self._to_record(row)

    async def extend_expiry(
        self,
        observed_user_id: str,
        expires_at: datetime,
        check: Optional[TransitionCheck] = None,
    ) -> ObservedUserRecord:
        """Set a new expiry and put the identity back into active temporal status.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        status_id = await self._catalog.id_for(IdentityStatus.ACTIVE_TEMPORAL)
        async with self._uow_factory() as uow:
            await self._check(uow, observed_user_id, check)
            row = await uow.observed_users.update_fields(
                observed_user_id,
                expires_at=expires_at,
                status_id=status_id,
            )
            return await self._to_record(row)

    async def mark_registered(
        self,
        observed_user_id: str,
        check: Optional[TransitionCheck] = None,
    ) -> ObservedUserRecord:
        """Flag an identity as registered and drop it from the observed pool.

        The row is kept for audit. The flag is never cleared. The vector is
        removed after the flag commits; if that fails the stale vector is
        dropped by the resolver the next time it matches.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        async with self._uow_factory() as uow:
            await self._check(uow, observed_user_id, check)
            row = await uow.observed_users.update_fields(observed_user_id, is_registered=True)
            record = await self._to_record(row)
        try:
            await self._index.remove(IdentityPool.OBSERVED, observed_user_id)
        except DatastoreUnavailableError as e:
            logger.warning(
                "Registered identity left in observed index",
                observed_user_id=observed_user_id,
                error=str(e)
            )
        return record

    async def drop_from_index(self, observed_user_id: str) -> None:
        """Remove a vector whose identity is registered or no longer exists."""
        await self._index.remove(IdentityPool.OBSERVED, observed_user_id)
        logger.info("Stale observed vector dropped", observed_user_id=observed_user_id)

    async def expire_elapsed(self, now: datetime) -> int:
        """Transition every lapsed active temporal identity to expired.

        Returns:
            int: Number of identities expired
        """
        active_temporal_id = await self._catalog.id_for(IdentityStatus.ACTIVE_TEMPORAL)
        expired_id = await self._catalog.id_for(IdentityStatus.EXPIRED)
        async with self._uow_factory() as uow:
            return await uow.observed_users.expire_elapsed(active_temporal_id, expired_id, now)

    async def _insert(
        self,
        uow: UnitOfWork,
        embedding: np.ndarray,
        seen_at: datetime,
        zone_id: Optional[str],
    ) -> ObservedUserRecord:
        status_id = await self._catalog.id_for(IdentityStatus.ACTIVE_TEMPORAL)
        row = await uow.observed_users.create(
            embedding=[float(value) for value in embedding],
            status_id=status_id,
            seen_at=seen_at,
            expires_at=seen_at + self._ttl,
            zone_id=zone_id,
        )
        return await self._to_record(row)

    async def _publish(self, record: ObservedUserRecord, embedding: np.ndarray) -> None:
        try:
            await self._index.upsert(IdentityPool.OBSERVED, record.id, embedding)
        except Exception:
            await self._discard(record.id)
            raise
        logger.info(
            "Observed identity created",
            observed_user_id=record.id,
            expires_at=record.expires_at.isoformat()
        )

    async def _discard(self, observed_user_id: str) -> None:
        try:
            async with self._uow_factory() as uow:
                await uow.observed_users.remove(observed_user_id)
        except DatastoreUnavailableError as e:
            logger.error(
                "Could not delete unpublished observed identity",
                observed_user_id=observed_user_id,
                error=str(e)
            )

    async def _check(
        self,
        uow: UnitOfWork,
        observed_user_id: str,
        check: Optional[TransitionCheck],
    ) -> None:
        row = await uow.observed_users.get(observed_user_id)
        if check is not None:
            check(await self._to_record(row))

    async def _to_record(self, row: ObservedUser) -> ObservedUserRecord:
        return ObservedUserRecord(
            id=row.id,
            first_seen_at=row.first_seen_at,
            last_seen_at=row.last_seen_at,
            access_count=row.access_count,
            status=await self._catalog.name_for(row.status_id),
            expires_at=row.expires_at,
            alert_triggered=row.alert_triggered,
            consecutive_denied_accesses=row.consecutive_denied_accesses,
            potential_match_user_id=row.potential_match_user_id,
            last_accessed_zones=list(row.last_accessed_zones or []),
            is_registered=row.is_registered,
        )
