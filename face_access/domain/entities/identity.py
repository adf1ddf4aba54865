"""Core identity domain entities."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IdentityStatus(str, Enum):
    """Status names stored in the status catalog."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    NEW_OBSERVED = "new_observed"
    ACTIVE_TEMPORAL = "active_temporal"
    EXPIRED = "expired"
    BLOCKED = "blocked"
    IN_REVIEW_ADMIN = "in_review_admin"


class CatalogItem(BaseModel):
    """Id/name pair from one of the catalogs (zones, roles, statuses)."""
    id: str = Field(..., description="Catalog identifier")
    name: str = Field(..., description="Human readable name")


class RegisteredProfile(BaseModel):
    """Read-only view of a registered identity."""
    id: str = Field(..., description="Registered user identifier")
    full_name: str = Field(..., description="Full name of the user")
    role: Optional[CatalogItem] = Field(None, description="Role of the user")
    status: Optional[CatalogItem] = Field(None, description="Status of the user")
    access_zones: List[CatalogItem] = Field(default_factory=list, description="Zones the user may enter")

    @property
    def status_name(self) -> Optional[str]:
        return self.status.name if self.status else None

    def may_enter(self, zone_id: Optional[str]) -> bool:
        """Whether the user is active and authorized for the zone."""
        if zone_id is None or self.status_name != IdentityStatus.ACTIVE.value:
            return False
        return any(zone.id == zone_id for zone in self.access_zones)


class ObservedUserRecord(BaseModel):
    """Snapshot of an observed identity row."""
    id: str
    first_seen_at: datetime
    last_seen_at: datetime
    access_count: int = Field(..., ge=0)
    status: str = Field(..., description="Status name from the catalog")
    expires_at: datetime
    alert_triggered: bool = False
    consecutive_denied_accesses: int = Field(0, ge=0)
    potential_match_user_id: Optional[str] = None
    last_accessed_zones: List[str] = Field(default_factory=list)
    is_registered: bool = False

    model_config = ConfigDict(frozen=True)

    def has_temporary_access(self, now: datetime) -> bool:
        """Active temporal status with an expiry still in the future."""
        return self.status == IdentityStatus.ACTIVE_TEMPORAL and self.expires_at > now
