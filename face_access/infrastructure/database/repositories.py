"""Database repositories for the face access identity service."""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, String, and_, case, cast, delete, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement

from face_access.core.exceptions import ObservedIdentityNotFoundError
from face_access.infrastructure.database.models import (
    AccessLog,
    ObservedUser,
    RegisteredFace,
    RegisteredUser,
    StatusCatalogEntry,
    Zone,
)


def cosine_distance_to(column: Any, query: List[float]) -> ColumnElement[float]:
    """pgvector cosine distance (`<=>`) between a vector column and a query vector."""
    return column.op("<=>", return_type=Float)(literal(query, type_=Vector(len(query))))


class StatusCatalogRepository:
    """Repository for the status catalog."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def list_all(self) -> List[StatusCatalogEntry]:
        """Get every status catalog entry."""
        result = await self._session.execute(select(StatusCatalogEntry))
        return list(result.scalars().all())

    async def ensure(self, names: Iterable[str]) -> List[StatusCatalogEntry]:
        """Create missing catalog entries by name.

        Args:
            names: Status names that must exist

        Returns:
            List[StatusCatalogEntry]: Full catalog after the insert
        """
        existing = {entry.name for entry in await self.list_all()}
        for name in names:
            if name not in existing:
                self._session.add(StatusCatalogEntry(name=name))
                existing.add(name)
        await self._session.flush()
        return await self.list_all()


class ZoneRepository:
    """Repository for zone lookups."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_names(self, zone_ids: Sequence[str]) -> Dict[str, str]:
        """Map zone ids to names; unknown ids are omitted."""
        if not zone_ids:
            return {}
        stmt = select(Zone.id, Zone.name).where(Zone.id.in_(list(zone_ids)))
        result = await self._session.execute(stmt)
        return {zone_id: name for zone_id, name in result.all()}


class RegisteredUserRepository:
    """Read-only repository for registered identities."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def get_profile(self, user_id: str) -> Optional[RegisteredUser]:
        """Get a registered user with role, status and zones loaded.

        Args:
            user_id: Registered user identifier

        Returns:
            Optional[RegisteredUser]: The user, or None if it does not exist
        """
        stmt = (
            select(RegisteredUser)
            .where(RegisteredUser.id == user_id)
            .options(
                selectinload(RegisteredUser.role),
                selectinload(RegisteredUser.status),
                selectinload(RegisteredUser.zones),
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_embeddings(self) -> List[Tuple[str, List[float]]]:
        """Get (user_id, embedding) pairs for every registered face."""
        stmt = select(RegisteredFace.user_id, RegisteredFace.embedding)
        result = await self._session.execute(stmt)
        return [(user_id, embedding) for user_id, embedding in result.all()]

    async def nearest(
        self,
        query: List[float],
        distance_threshold: float,
        limit: int = 1,
    ) -> List[Tuple[str, float]]:
        """Closest registered faces within a cosine distance, nearest first (PostgreSQL only)."""
        distance = cosine_distance_to(RegisteredFace.embedding, query)
        stmt = (
            select(RegisteredFace.user_id, distance.label("distance"))
            .where(distance <= distance_threshold)
            .order_by(distance)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [(user_id, float(value)) for user_id, value in result.all()]


class ObservedUserRepository:
    """Repository for observed identity rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def create(
        self,
        embedding: List[float],
        status_id: str,
        seen_at: datetime,
        expires_at: datetime,
        zone_id: Optional[str] = None,
    ) -> ObservedUser:
        """Create a new observed identity.

        Args:
            embedding: Face embedding of the first sighting
            status_id: Catalog id of the initial status
            seen_at: Time of the first sighting
            expires_at: End of the temporary access window
            zone_id: Zone requested on the first sighting

        Returns:
            ObservedUser: Created row
        """
        observed = ObservedUser(
            embedding=embedding,
            first_seen_at=seen_at,
            last_seen_at=seen_at,
            access_count=1,
            status_id=status_id,
            expires_at=expires_at,
            alert_triggered=False,
            consecutive_denied_accesses=0,
            potential_match_user_id=None,
            last_accessed_zones=[zone_id] if zone_id else [],
            is_registered=False,
        )
        self._session.add(observed)
        await self._session.flush()
        return observed

    async def get(self, observed_user_id: str) -> ObservedUser:
        """Get an observed identity by id.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        stmt = (
            select(ObservedUser)
            .where(ObservedUser.id == observed_user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        observed = result.scalar_one_or_none()
        if observed is None:
            raise ObservedIdentityNotFoundError(
                f"Observed user not found: {observed_user_id}",
                details={"observed_user_id": observed_user_id}
            )
        return observed

    async def touch(
        self,
        observed_user_id: str,
        seen_at: datetime,
        active_temporal_id: str,
        zone_id: Optional[str] = None,
    ) -> Optional[ObservedUser]:
        """Record a re-sighting of an unregistered identity.

        The UPDATE runs first and takes the row lock, deciding the denial
        streak from the status and expiry the row has at write time. The row
        is then read back under that lock, so a caller classifying the
        sighting from the returned row sees exactly the state the counters
        were written against. A concurrent block or sweep either lands
        before the UPDATE (and is honored) or waits for this transaction.

        Args:
            observed_user_id: Observed user identifier
            seen_at: Time of the sighting
            active_temporal_id: Catalog id of the only status that grants access
            zone_id: Zone requested on this sighting

        Returns:
            ObservedUser: Locked row after the update, or None if the identity
            is registered

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        may_enter = and_(
            ObservedUser.status_id == active_temporal_id,
            ObservedUser.expires_at > seen_at,
        )
        stmt = (
            update(ObservedUser)
            .where(
                ObservedUser.id == observed_user_id,
                ObservedUser.is_registered.is_(False),
            )
            .values(
                access_count=ObservedUser.access_count + 1,
                last_seen_at=seen_at,
                consecutive_denied_accesses=case(
                    (may_enter, 0),
                    else_=ObservedUser.consecutive_denied_accesses + 1,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            await self.get(observed_user_id)
            return None

        observed = await self._get_locked(observed_user_id)
        zones = list(observed.last_accessed_zones or [])
        if zone_id and zone_id not in zones:
            zones.append(zone_id)
            await self._session.execute(
                update(ObservedUser)
                .where(ObservedUser.id == observed_user_id)
                .values(last_accessed_zones=zones)
                .execution_options(synchronize_session=False)
            )
            observed = await self._get_locked(observed_user_id)
        return observed

    async def remove(self, observed_user_id: str) -> None:
        """Delete an observed identity that never became visible to matching."""
        await self._session.execute(
            delete(ObservedUser).where(ObservedUser.id == observed_user_id)
        )

    async def _get_locked(self, observed_user_id: str) -> ObservedUser:
        stmt = (
            select(ObservedUser)
            .where(ObservedUser.id == observed_user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def update_fields(self, observed_user_id: str, **values) -> ObservedUser:
        """Update columns of one observed identity.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        stmt = (
            update(ObservedUser)
            .where(ObservedUser.id == observed_user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ObservedIdentityNotFoundError(
                f"Observed user not found: {observed_user_id}",
                details={"observed_user_id": observed_user_id}
            )
        return await self.get(observed_user_id)

    async def expire_elapsed(
        self,
        active_temporal_id: str,
        expired_id: str,
        now: datetime,
    ) -> int:
        """Move every lapsed active temporal identity to expired.

        The status and expiry are re-checked by the UPDATE itself, so rows
        changed concurrently are never overwritten.

        Returns:
            int: Number of rows transitioned
        """
        stmt = (
            update(ObservedUser)
            .where(
                ObservedUser.status_id == active_temporal_id,
                ObservedUser.expires_at < now,
            )
            .values(status_id=expired_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def list_embeddings(self) -> List[Tuple[str, List[float]]]:
        """Get (id, embedding) pairs for every unregistered observed identity."""
        stmt = select(ObservedUser.id, ObservedUser.embedding).where(
            ObservedUser.is_registered.is_(False)
        )
        result = await self._session.execute(stmt)
        return [(observed_id, embedding) for observed_id, embedding in result.all()]

    async def nearest(
        self,
        query: List[float],
        distance_threshold: float,
        limit: int = 1,
    ) -> List[Tuple[str, float]]:
        """Closest unregistered observed identities within a cosine distance (PostgreSQL only)."""
        distance = cosine_distance_to(ObservedUser.embedding, query)
        stmt = (
            select(ObservedUser.id, distance.label("distance"))
            .where(
                ObservedUser.is_registered.is_(False),
                distance <= distance_threshold,
            )
            .order_by(distance)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [(observed_id, float(value)) for observed_id, value in result.all()]

    async def search(
        self,
        conditions: Sequence[ColumnElement[bool]],
        search_term: Optional[str],
        order_by: ColumnElement,
        offset: int,
        limit: int,
    ) -> Tuple[List[ObservedUser], int]:
        """Page through unregistered observed identities.

        Args:
            conditions: Extra filter conditions
            search_term: Case-insensitive text matched against id, status name and zone ids
            order_by: Ordering clause
            offset: Rows to skip
            limit: Maximum rows to return

        Returns:
            Tuple of the page rows and the total number of matching rows
        """
        where = [ObservedUser.is_registered.is_(False), *conditions]
        if search_term:
            pattern = f"%{search_term.lower()}%"
            where.append(
                or_(
                    func.lower(ObservedUser.id).like(pattern),
                    func.lower(StatusCatalogEntry.name).like(pattern),
                    func.lower(cast(ObservedUser.last_accessed_zones, String)).like(pattern),
                )
            )

        base = (
            select(ObservedUser)
            .join(StatusCatalogEntry, ObservedUser.status_id == StatusCatalogEntry.id)
            .where(and_(*where))
        )
        count_stmt = select(func.count()).select_from(base.subquery())
        total = (await self._session.execute(count_stmt)).scalar_one()

        page_stmt = (
            base.options(selectinload(ObservedUser.status))
            .order_by(order_by, ObservedUser.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(page_stmt)
        return list(result.scalars().all()), total

    async def aggregate(self, buckets: Dict[str, ColumnElement[bool]]) -> Dict[str, int]:
        """Count unregistered observed identities per named condition.

        Args:
            buckets: Mapping of bucket name to condition

        Returns:
            Dict with the total under "total" plus one count per bucket
        """
        columns = [func.count().label("total")]
        for name, condition in buckets.items():
            columns.append(func.coalesce(func.sum(case((condition, 1), else_=0)), 0).label(name))
        stmt = select(*columns).select_from(ObservedUser).where(
            ObservedUser.is_registered.is_(False)
        )
        row = (await self._session.execute(stmt)).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}


class AccessLogRepository:
    """Insert-only repository for access decision records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def add(self, **fields) -> AccessLog:
        """Append an access decision record."""
        entry = AccessLog(**fields)
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_for_observed(
        self,
        observed_user_id: str,
        offset: int = 0,
        limit: int = 50,
    ) -> List[AccessLog]:
        """Get the latest access records of an observed identity, newest first."""
        stmt = (
            select(AccessLog)
            .where(AccessLog.observed_user_id == observed_user_id)
            .order_by(AccessLog.created_at.desc(), AccessLog.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
