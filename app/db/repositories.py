"""
Repositories - Async SQLAlchemy persistence for entitlements and reward config.

NO DICTIONARIES - Rows are converted to immutable domain models at this boundary.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import RewardConfigDocument, UserEntitlement, utc_now
from app.exceptions import (
    ConcurrencyError,
    EntitlementsNotFoundError,
    RewardConfigNotFoundError,
)
from app.models.domain import RewardConfig, RewardDetails, RewardType, UserEntitlements

logger = get_logger(__name__)


class EntitlementsRepository(Protocol):
    """Storage for per-user reward entitlements."""

    async def read(self, user_id: str) -> UserEntitlements:
        """
        Load a user's entitlements.

        Raises:
            EntitlementsNotFoundError: If the user has never been granted a reward
        """
        ...

    async def create(self, item: UserEntitlements) -> UserEntitlements:
        """
        Insert a new entitlements record.

        Raises:
            ConcurrencyError: If another request created it first
        """
        ...

    async def update(self, user_id: str, item: UserEntitlements) -> UserEntitlements:
        """
        Replace an existing record, guarded by ``item.version``.

        Raises:
            ConcurrencyError: If the stored version no longer matches
        """
        ...


class RewardConfigSource(Protocol):
    """Read-only source of reward configuration."""

    async def read(self, config_id: str) -> RewardConfig:
        """
        Load the reward configuration document.

        Raises:
            RewardConfigNotFoundError: If no document has that id
        """
        ...


def serialize_rewards(active_rewards: dict[RewardType, datetime]) -> dict[str, str]:
    """Convert active rewards to the JSONB column format."""
    return {
        reward_type.value: expires_at.isoformat()
        for reward_type, expires_at in active_rewards.items()
    }


def deserialize_rewards(raw: dict[str, str]) -> dict[RewardType, datetime]:
    """Convert the JSONB column back to typed rewards, skipping unknown types."""
    rewards: dict[RewardType, datetime] = {}
    for name, expires_at in raw.items():
        reward_type = RewardType.from_name(name)
        if reward_type is None:
            logger.warning("unknown_reward_type_in_entitlements", reward_type=name)
            continue
        rewards[reward_type] = datetime.fromisoformat(expires_at)
    return rewards


def parse_reward_config(config_id: str, raw: dict[str, dict[str, object]]) -> RewardConfig:
    """Build a RewardConfig from its JSONB document, skipping malformed entries."""
    rewards: dict[RewardType, RewardDetails] = {}
    for name, entry in raw.items():
        reward_type = RewardType.from_name(name)
        if reward_type is None:
            logger.warning("unknown_reward_type_in_config", config_id=config_id, reward_type=name)
            continue
        if not isinstance(entry, dict):
            logger.warning(
                "invalid_reward_config_entry",
                config_id=config_id,
                reward_type=name,
                error=f"expected an object, got {type(entry).__name__}",
            )
            continue
        try:
            rewards[reward_type] = RewardDetails(
                enabled=bool(entry.get("enabled", False)),
                duration_days=int(entry.get("duration_days", 0)),  # type: ignore[call-overload]
            )
        except (TypeError, ValueError) as exc:
            logger.warning(
                "invalid_reward_config_entry",
                config_id=config_id,
                reward_type=name,
                error=str(exc),
            )
    return RewardConfig(config_id=config_id, rewards=rewards)


class SqlEntitlementsRepository:
    """Entitlements stored in the user_entitlements table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def read(self, user_id: str) -> UserEntitlements:
        stmt = select(UserEntitlement).where(UserEntitlement.user_id == user_id)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise EntitlementsNotFoundError(user_id)

        return UserEntitlements(
            user_id=row.user_id,
            active_rewards=deserialize_rewards(row.active_rewards),
            version=row.version,
        )

    async def create(self, item: UserEntitlements) -> UserEntitlements:
        row = UserEntitlement(
            user_id=item.user_id,
            active_rewards=serialize_rewards(dict(item.active_rewards)),
            version=1,
        )
        self.session.add(row)

        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning("entitlements_create_conflict", user_id=item.user_id, error=str(exc))
            raise ConcurrencyError(f"user_entitlements/{item.user_id}") from exc

        return UserEntitlements(
            user_id=item.user_id,
            active_rewards=item.active_rewards,
            version=1,
        )

    async def update(self, user_id: str, item: UserEntitlements) -> UserEntitlements:
        new_version = item.version + 1
        stmt = (
            update(UserEntitlement)
            .where(
                UserEntitlement.user_id == user_id,
                UserEntitlement.version == item.version,
            )
            .values(
                active_rewards=serialize_rewards(dict(item.active_rewards)),
                version=new_version,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.warning(
                "entitlements_version_conflict",
                user_id=user_id,
                expected_version=item.version,
            )
            raise ConcurrencyError(f"user_entitlements/{user_id}")

        return UserEntitlements(
            user_id=user_id,
            active_rewards=item.active_rewards,
            version=new_version,
        )


class SqlRewardConfigRepository:
    """Reward configuration stored in the reward_configs table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def read(self, config_id: str) -> RewardConfig:
        document = await self.session.get(RewardConfigDocument, config_id)
        if document is None:
            raise RewardConfigNotFoundError(config_id)
        return parse_reward_config(document.id, document.rewards)
