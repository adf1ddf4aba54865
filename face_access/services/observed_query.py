"""Dashboard listing of observed identities."""
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from face_access.core.config import settings
from face_access.core.logging import get_logger
from face_access.domain.entities.identity import CatalogItem, IdentityStatus
from face_access.domain.value_objects.observed import (
    AccessLogEntry,
    ObservedAggregates,
    ObservedFilter,
    ObservedSortField,
    ObservedUserQuery,
    ObservedUsersPage,
    ObservedUserSummary,
    SortDirection,
)
from face_access.infrastructure.database.models import ObservedUser, StatusCatalogEntry
from face_access.infrastructure.database.unit_of_work import UnitOfWorkFactory
from face_access.services.status_catalog import StatusCatalog

logger = get_logger(__name__)

SORT_COLUMNS = {
    ObservedSortField.FIRST_SEEN: ObservedUser.first_seen_at,
    ObservedSortField.LAST_SEEN: ObservedUser.last_seen_at,
    ObservedSortField.TEMP_ACCESSES: ObservedUser.access_count,
    ObservedSortField.STATUS: StatusCatalogEntry.name,
    ObservedSortField.EXPIRES_AT: ObservedUser.expires_at,
}


class ObservedUserQueryService:
    """Read-only listing of unregistered observed identities.

    Listing never sweeps: expiry is the lifecycle sweeper's job, so a lapsed
    identity keeps its `active_temporal` status here until the next pass.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        catalog: StatusCatalog,
        high_risk_threshold: Optional[int] = None,
    ) -> None:
        """Initialize the query service.

        Args:
            uow_factory: Opens read transactions
            catalog: Status name/id catalog
            high_risk_threshold: Consecutive denials that make an identity high risk
                (defaults to settings.HIGH_RISK_DENIAL_THRESHOLD)
        """
        self._uow_factory = uow_factory
        self._catalog = catalog
        self._high_risk_threshold = (
            high_risk_threshold if high_risk_threshold is not None
            else settings.HIGH_RISK_DENIAL_THRESHOLD
        )

    async def list_observed(self, query: ObservedUserQuery) -> ObservedUsersPage:
        """Get one page of observed identities plus pool-wide aggregates.

        Args:
            query: Search, paging, sorting and filter parameters

        Returns:
            ObservedUsersPage: Page rows, filtered total and unfiltered aggregates

        Raises:
            DatastoreUnavailableError: If the datastore fails
        """
        buckets = await self._filter_conditions()
        conditions = [buckets[query.filter_type]] if query.filter_type else []

        column = SORT_COLUMNS[query.sort_field]
        order_by = column.asc() if query.sort_direction == SortDirection.ASC else column.desc()

        async with self._uow_factory() as uow:
            rows, total = await uow.observed_users.search(
                conditions=conditions,
                search_term=query.search_term.strip() if query.search_term else None,
                order_by=order_by,
                offset=(query.page - 1) * query.page_size,
                limit=query.page_size,
            )
            counts = await uow.observed_users.aggregate(
                {bucket.value: condition for bucket, condition in buckets.items()}
            )
            zone_ids = sorted({zone_id for row in rows for zone_id in (row.last_accessed_zones or [])})
            zone_names = await uow.zones.get_names(zone_ids)

        users: List[ObservedUserSummary] = []
        for row in rows:
            users.append(ObservedUserSummary(
                id=row.id,
                first_seen_at=row.first_seen_at,
                last_seen_at=row.last_seen_at,
                access_count=row.access_count,
                status=CatalogItem(id=row.status_id, name=await self._catalog.name_for(row.status_id)),
                expires_at=row.expires_at,
                alert_triggered=row.alert_triggered,
                consecutive_denied_accesses=row.consecutive_denied_accesses,
                potential_match_user_id=row.potential_match_user_id,
                accessed_zones=[
                    CatalogItem(id=zone_id, name=zone_names.get(zone_id, zone_id))
                    for zone_id in (row.last_accessed_zones or [])
                ],
            ))

        aggregates = ObservedAggregates(
            absolute_total_count=counts["total"],
            pending_review_count=counts[ObservedFilter.PENDING_REVIEW.value],
            high_risk_count=counts[ObservedFilter.HIGH_RISK.value],
            active_temporal_count=counts[ObservedFilter.ACTIVE_TEMPORAL.value],
            expired_count=counts[ObservedFilter.EXPIRED.value],
        )
        logger.debug(
            "Listed observed users",
            page=query.page,
            page_size=query.page_size,
            filter_type=query.filter_type.value if query.filter_type else None,
            total_count=total
        )
        return ObservedUsersPage(
            users=users,
            total_count=total,
            page=query.page,
            page_size=query.page_size,
            aggregates=aggregates,
        )

    async def list_access_logs(
        self,
        observed_user_id: str,
        page: int = 1,
        page_size: int = 50,
    ) -> List[AccessLogEntry]:
        """Get the recorded access decisions of an observed identity, newest first.

        Raises:
            ObservedIdentityNotFoundError: If the id does not exist
        """
        async with self._uow_factory() as uow:
            await uow.observed_users.get(observed_user_id)
            rows = await uow.access_logs.list_for_observed(
                observed_user_id,
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        return [
            AccessLogEntry(
                id=row.id,
                created_at=row.created_at,
                camera_id=row.camera_id,
                requested_zone_id=row.requested_zone_id,
                result=row.result,
                user_type=row.user_type,
                match_status=row.match_status,
                decision=row.decision,
                reason=row.reason,
                confidence_score=row.confidence_score,
            )
            for row in rows
        ]

    async def _filter_conditions(self) -> Dict[ObservedFilter, ColumnElement[bool]]:
        in_review_id = await self._catalog.id_for(IdentityStatus.IN_REVIEW_ADMIN)
        active_temporal_id = await self._catalog.id_for(IdentityStatus.ACTIVE_TEMPORAL)
        expired_id = await self._catalog.id_for(IdentityStatus.EXPIRED)
        return {
            ObservedFilter.PENDING_REVIEW: or_(
                ObservedUser.status_id == in_review_id,
                ObservedUser.potential_match_user_id.is_not(None),
            ),
            ObservedFilter.HIGH_RISK: or_(
                ObservedUser.alert_triggered.is_(True),
                ObservedUser.consecutive_denied_accesses >= self._high_risk_threshold,
            ),
            ObservedFilter.ACTIVE_TEMPORAL: ObservedUser.status_id == active_temporal_id,
            ObservedFilter.EXPIRED: ObservedUser.status_id == expired_id,
        }
