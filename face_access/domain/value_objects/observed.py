"""Observed identity administration and listing value objects."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from face_access.domain.entities.identity import CatalogItem


class ObservedAction(str, Enum):
    """Operator-issued transitions for an observed identity."""
    BLOCK = "block"
    EXTEND = "extend"
    REGISTER = "register"


class ActionResult(BaseModel):
    """Result of an administrative action."""
    observed_user_id: str
    action: ObservedAction
    message: str
    status: str = Field(..., description="Status name after the action")
    expires_at: datetime
    is_registered: bool


class ObservedFilter(str, Enum):
    PENDING_REVIEW = "pendingReview"
    HIGH_RISK = "highRisk"
    ACTIVE_TEMPORAL = "activeTemporal"
    EXPIRED = "expired"


class ObservedSortField(str, Enum):
    FIRST_SEEN = "firstSeen"
    LAST_SEEN = "lastSeen"
    TEMP_ACCESSES = "tempAccesses"
    STATUS = "status"
    EXPIRES_AT = "expiresAt"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ObservedUserQuery(BaseModel):
    """Listing parameters for the observed identity dashboard."""
    search_term: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100)
    sort_field: ObservedSortField = ObservedSortField.FIRST_SEEN
    sort_direction: SortDirection = SortDirection.DESC
    filter_type: Optional[ObservedFilter] = None


class ObservedUserSummary(BaseModel):
    """Projection of an observed identity for listings."""
    id: str
    first_seen_at: datetime
    last_seen_at: datetime
    access_count: int
    status: CatalogItem
    expires_at: datetime
    alert_triggered: bool
    consecutive_denied_accesses: int
    potential_match_user_id: Optional[str] = None
    accessed_zones: List[CatalogItem] = Field(default_factory=list)


class ObservedAggregates(BaseModel):
    """Counts over the whole unregistered observed pool, independent of any filter."""
    absolute_total_count: int = 0
    pending_review_count: int = 0
    high_risk_count: int = 0
    active_temporal_count: int = 0
    expired_count: int = 0


class ObservedUsersPage(BaseModel):
    """One page of observed identities plus pool-wide aggregates."""
    users: List[ObservedUserSummary]
    total_count: int = Field(..., description="Rows matching the search and filter")
    page: int
    page_size: int
    aggregates: ObservedAggregates


class AccessLogEntry(BaseModel):
    """One recorded access decision of an observed identity."""
    id: str
    created_at: datetime
    camera_id: Optional[str] = None
    requested_zone_id: Optional[str] = None
    result: bool
    user_type: str
    match_status: str
    decision: str
    reason: str
    confidence_score: Optional[float] = None
