"""SQLAlchemy models for the face access identity service."""
import uuid
from datetime import datetime
from typing import Any, List, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from face_access.core.config import settings
from face_access.core.utils.time import ensure_utc, utc_now

# pgvector on PostgreSQL so nearest-neighbor queries run in the database; JSON elsewhere
EmbeddingVector = JSON().with_variant(Vector(settings.EMBEDDING_DIMENSION), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Stores naive UTC and returns timezone-aware UTC datetimes on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        return ensure_utc(value)


def _hnsw_index(name: str) -> Index:
    """Approximate cosine index on the `embedding` column, created on PostgreSQL only."""
    return Index(
        name,
        "embedding",
        postgresql_using="hnsw",
        postgresql_ops={"embedding": "vector_cosine_ops"},
    ).ddl_if(dialect="postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


user_zone_access = Table(
    "user_zone_access",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("zone_id", String(36), ForeignKey("zones.id", ondelete="CASCADE"), primary_key=True),
)


class StatusCatalogEntry(Base):
    """Status catalog shared by registered and observed identities."""

    __tablename__ = "user_statuses_catalog"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)


class Role(Base):
    """Role catalog entry."""

    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class Zone(Base):
    """Access zone catalog entry."""

    __tablename__ = "zones"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class RegisteredUser(Base):
    """Administrator-enrolled identity. Read-only to this service."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("roles.id"), nullable=True)
    status_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("user_statuses_catalog.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    # Relationships
    role: Mapped[Optional[Role]] = relationship()
    status: Mapped[Optional[StatusCatalogEntry]] = relationship()
    zones: Mapped[List[Zone]] = relationship(secondary=user_zone_access)
    faces: Mapped[List["RegisteredFace"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan"
    )


class RegisteredFace(Base):
    """Face embedding of a registered identity."""

    __tablename__ = "faces"
    __table_args__ = (
        _hnsw_index("idx_faces_embedding_hnsw"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    embedding: Mapped[List[float]] = mapped_column(
        EmbeddingVector,
        nullable=False,
        comment="Face embedding vector"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    user: Mapped[RegisteredUser] = relationship(back_populates="faces")


class ObservedUser(Base):
    """Identity seen by the system but not enrolled."""

    __tablename__ = "observed_users"
    __table_args__ = (
        Index("idx_observed_users_status_expiry", "status_id", "expires_at"),
        Index("idx_observed_users_is_registered", "is_registered"),
        _hnsw_index("idx_observed_users_embedding_hnsw"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    embedding: Mapped[List[float]] = mapped_column(
        EmbeddingVector,
        nullable=False,
        comment="Face embedding captured on first sighting"
    )
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_statuses_catalog.id"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    alert_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consecutive_denied_accesses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    potential_match_user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="Registered user suspected to be the same person; not a foreign key"
    )
    last_accessed_zones: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    is_registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    status: Mapped[StatusCatalogEntry] = relationship()


class AccessLog(Base):
    """Immutable audit record of one resolution attempt."""

    __tablename__ = "logs"
    __table_args__ = (
        Index("idx_logs_created_at", "created_at"),
        Index("idx_logs_observed_user_id", "observed_user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    observed_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    camera_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    requested_zone_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    result: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    user_type: Mapped[str] = mapped_column(String(32), nullable=False)
    vector_attempted: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)
    match_status: Mapped[str] = mapped_column(String(64), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(String(1024), nullable=False)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
