"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserEntitlement(Base):
    """
    ORM model for user_entitlements table.

    One row per user. ``active_rewards`` maps reward type names to ISO-8601
    expiry timestamps. ``version`` is checked on update (optimistic locking).
    """

    __tablename__ = "user_entitlements"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    active_rewards: Mapped[dict[str, str]] = mapped_column(JSONB, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("version > 0", name="ck_user_entitlements_version_positive"),
        Index("idx_user_entitlements_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UserEntitlement(user_id={self.user_id}, version={self.version})>"


class RewardConfigDocument(Base):
    """
    ORM model for reward_configs table.

    ``rewards`` maps reward type names to ``{"enabled": bool, "duration_days": int}``.
    Maintained by operators; this service only reads it.
    """

    __tablename__ = "reward_configs"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    rewards: Mapped[dict[str, dict[str, object]]] = mapped_column(
        JSONB, nullable=False, default=dict
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<RewardConfigDocument(id={self.id})>"


class ProcessedRewardEvent(Base):
    """
    ORM model for processed_reward_events table.

    Idempotency ledger: a row means the event was granted. Rows past
    ``expires_at`` are treated as absent and purged periodically.
    """

    __tablename__ = "processed_reward_events"

    # SHA-256 hex of "<scope>:<event_id>"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scope: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_processed_reward_events_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ProcessedRewardEvent(id={self.id}, scope={self.scope})>"
