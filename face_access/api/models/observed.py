"""API models for observed identity administration."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from face_access.domain.entities.identity import CatalogItem
from face_access.domain.value_objects.observed import (
    AccessLogEntry,
    ActionResult,
    ObservedAction,
    ObservedFilter,
    ObservedSortField,
    ObservedUserQuery,
    ObservedUsersPage,
    ObservedUserSummary,
    SortDirection,
)

MAX_PAGE_SIZE = 100


class ObservedUsersQueryRequest(BaseModel):
    """Request model for the /observed-users/query endpoint."""
    search_term: Optional[str] = Field(
        None,
        alias="searchTerm",
        description="Matches id, status name or accessed zone ids",
        max_length=100
    )
    page: int = Field(1, ge=1)
    page_size: int = Field(10, alias="pageSize", ge=1, le=MAX_PAGE_SIZE)
    sort_field: ObservedSortField = Field(ObservedSortField.FIRST_SEEN, alias="sortField")
    sort_direction: SortDirection = Field(SortDirection.DESC, alias="sortDirection")
    filter_type: Optional[ObservedFilter] = Field(None, alias="filterType")

    model_config = {"populate_by_name": True}

    def to_query(self) -> ObservedUserQuery:
        return ObservedUserQuery(
            search_term=self.search_term,
            page=self.page,
            page_size=self.page_size,
            sort_field=self.sort_field,
            sort_direction=self.sort_direction,
            filter_type=self.filter_type,
        )


class ObservedUserItem(BaseModel):
    """One row of the observed identity listing."""
    id: str
    first_seen: datetime = Field(..., alias="firstSeen")
    last_seen: datetime = Field(..., alias="lastSeen")
    temp_accesses: int = Field(..., alias="tempAccesses")
    accessed_zones: List[CatalogItem] = Field(default_factory=list, alias="accessedZones")
    status: CatalogItem
    expires_at: datetime = Field(..., alias="expiresAt")
    alert_triggered: bool = Field(..., alias="alertTriggered")
    consecutive_denied_accesses: int = Field(..., alias="consecutiveDeniedAccesses")
    potential_match_user_id: Optional[str] = Field(None, alias="potentialMatchUserId")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_summary(cls, summary: ObservedUserSummary) -> "ObservedUserItem":
        return cls(
            id=summary.id,
            first_seen=summary.first_seen_at,
            last_seen=summary.last_seen_at,
            temp_accesses=summary.access_count,
            accessed_zones=summary.accessed_zones,
            status=summary.status,
            expires_at=summary.expires_at,
            alert_triggered=summary.alert_triggered,
            consecutive_denied_accesses=summary.consecutive_denied_accesses,
            potential_match_user_id=summary.potential_match_user_id,
        )


class ObservedUsersQueryResponse(BaseModel):
    """Response model for the /observed-users/query endpoint.

    Aggregate counts cover the whole unregistered pool and ignore the filter;
    `totalCount` is the filtered count used for pagination.
    """
    users: List[ObservedUserItem]
    total_count: int = Field(..., alias="totalCount")
    page: int
    page_size: int = Field(..., alias="pageSize")
    absolute_total_count: int = Field(..., alias="absoluteTotalCount")
    pending_review_count: int = Field(..., alias="pendingReviewCount")
    high_risk_count: int = Field(..., alias="highRiskCount")
    active_temporal_count: int = Field(..., alias="activeTemporalCount")
    expired_count: int = Field(..., alias="expiredCount")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_page(cls, page: ObservedUsersPage) -> "ObservedUsersQueryResponse":
        aggregates = page.aggregates
        return cls(
            users=[ObservedUserItem.from_summary(summary) for summary in page.users],
            total_count=page.total_count,
            page=page.page,
            page_size=page.page_size,
            absolute_total_count=aggregates.absolute_total_count,
            pending_review_count=aggregates.pending_review_count,
            high_risk_count=aggregates.high_risk_count,
            active_temporal_count=aggregates.active_temporal_count,
            expired_count=aggregates.expired_count,
        )


class ObservedUserActionRequest(BaseModel):
    """Request model for the /observed-users/actions endpoint."""
    observed_user_id: str = Field(..., alias="observedUserId", min_length=1)
    action_type: ObservedAction = Field(..., alias="actionType")

    model_config = {"populate_by_name": True}


class ObservedUserActionResponse(BaseModel):
    """Response model for the /observed-users/actions endpoint."""
    message: str
    observed_user_id: str = Field(..., alias="observedUserId")
    status: str
    expires_at: datetime = Field(..., alias="expiresAt")
    is_registered: bool = Field(..., alias="isRegistered")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_result(cls, result: ActionResult) -> "ObservedUserActionResponse":
        return cls(
            message=result.message,
            observed_user_id=result.observed_user_id,
            status=result.status,
            expires_at=result.expires_at,
            is_registered=result.is_registered,
        )


class SweepResponse(BaseModel):
    """Response model for the /observed-users/sweep endpoint."""
    expired_count: int = Field(..., alias="expiredCount")

    model_config = {"populate_by_name": True}


class ObservedUserLogItem(BaseModel):
    """One access decision of an observed identity."""
    id: str
    timestamp: datetime
    camera_id: Optional[str] = Field(None, alias="cameraId")
    requested_zone_id: Optional[str] = Field(None, alias="requestedZoneId")
    result: bool
    match_status: str = Field(..., alias="matchStatus")
    decision: str
    reason: str
    confidence_score: Optional[float] = Field(None, alias="confidenceScore")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_entry(cls, entry: AccessLogEntry) -> "ObservedUserLogItem":
        return cls(
            id=entry.id,
            timestamp=entry.created_at,
            camera_id=entry.camera_id,
            requested_zone_id=entry.requested_zone_id,
            result=entry.result,
            match_status=entry.match_status,
            decision=entry.decision,
            reason=entry.reason,
            confidence_score=entry.confidence_score,
        )
