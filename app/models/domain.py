"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType


class RewardType(str, Enum):
    """Time-based rewards a user can earn by watching rewarded ads."""

    AD_FREE = "adFree"

    @classmethod
    def from_name(cls, name: str) -> "RewardType | None":
        """Match a provider-supplied reward name case-insensitively."""
        wanted = name.lower()
        for reward_type in cls:
            if reward_type.value.lower() == wanted:
                return reward_type
        return None


class AdPlatform(str, Enum):
    """Rewarded-ad networks that send server-side verification callbacks."""

    ADMOB = "admob"
    APPLOVIN = "applovin"
    IRONSOURCE = "ironsource"


@dataclass(frozen=True)
class VerifiedRewardPayload:
    """Normalized reward produced by a verifier after a callback is authenticated.

    This is the only object that crosses from verification into granting.
    """

    transaction_id: str  # AdMob transaction_id, AppLovin event_id, IronSource eventId
    user_id: str
    reward_type: RewardType

    def __post_init__(self) -> None:
        """Validate payload fields."""
        if not self.transaction_id:
            raise ValueError("transaction_id cannot be empty")
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


@dataclass(frozen=True)
class RewardDetails:
    """Server-side configuration for a single reward type."""

    enabled: bool
    duration_days: int

    def __post_init__(self) -> None:
        """Validate reward duration."""
        if self.duration_days <= 0:
            raise ValueError(f"duration_days must be positive: {self.duration_days}")


@dataclass(frozen=True)
class RewardConfig:
    """Read-only reward configuration - the sole source of grant durations."""

    config_id: str
    rewards: Mapping[RewardType, RewardDetails]

    def __post_init__(self) -> None:
        object.__setattr__(self, "rewards", MappingProxyType(dict(self.rewards)))

    def details_for(self, reward_type: RewardType) -> RewardDetails | None:
        """Get the configuration for a reward type, if any."""
        return self.rewards.get(reward_type)


@dataclass(frozen=True)
class UserEntitlements:
    """Immutable snapshot of the time-bounded rewards a user holds.

    A reward has lapsed once ``now`` passes its expiry; records are never deleted.
    ``version`` is bumped on every persisted update for optimistic concurrency.
    """

    user_id: str
    active_rewards: Mapping[RewardType, datetime] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        object.__setattr__(self, "active_rewards", MappingProxyType(dict(self.active_rewards)))

    @property
    def is_new(self) -> bool:
        """True if this snapshot has never been persisted."""
        return self.version == 0

    def expiry_for(self, reward_type: RewardType) -> datetime | None:
        """Get the current expiry for a reward type."""
        return self.active_rewards.get(reward_type)

    def with_expiry(self, reward_type: RewardType, expires_at: datetime) -> "UserEntitlements":
        """Return a copy with the expiry for ``reward_type`` replaced."""
        rewards = dict(self.active_rewards)
        rewards[reward_type] = expires_at
        return replace(self, active_rewards=rewards)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Write-once marker that an event has been processed."""

    id: str
    created_at: datetime
    expires_at: datetime
    scope: str | None = None


@dataclass(frozen=True)
class GrantOutcome:
    """Result of processing a reward callback."""

    platform: AdPlatform
    transaction_id: str
    user_id: str
    reward_type: RewardType
    already_processed: bool
    expires_at: datetime | None = None
