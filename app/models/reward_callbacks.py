"""
Reward callback models - Parsed SSV callbacks, one per ad network.

NO DICTIONARIES - All data uses strongly typed models.

Each callback is built from the raw request URI through ``from_uri``, which
rejects the first missing or empty required parameter with InvalidInputError.
"""

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlsplit

from app.exceptions import InvalidInputError


def query_params(uri: str) -> dict[str, str]:
    """Decode the query string of ``uri``; the first occurrence of a key wins."""
    params: dict[str, str] = {}
    for key, value in parse_qsl(urlsplit(uri).query, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def _require(params: dict[str, str], name: str, label: str | None = None) -> str:
    value = params.get(name)
    if not value:
        raise InvalidInputError(f"Missing {label or name}")
    return value


@dataclass(frozen=True)
class AdMobRewardCallback:
    """AdMob server-side verification callback.

    https://developers.google.com/admob/android/ssv
    """

    transaction_id: str
    user_id: str
    reward_item: str  # Sent by the client through custom_data
    reward_amount: int  # Parsed for logging only; durations come from RewardConfig
    signature: str
    key_id: str
    original_uri: str  # Needed verbatim to rebuild the signed content

    @classmethod
    def from_uri(cls, uri: str) -> "AdMobRewardCallback":
        """
        Parse an AdMob callback URI.

        Raises:
            InvalidInputError: If a required parameter is missing or empty
        """
        params = query_params(uri)

        transaction_id = _require(params, "transaction_id")
        user_id = _require(params, "user_id")
        reward_item = _require(params, "custom_data", "custom_data (reward item)")
        signature = _require(params, "signature")
        key_id = _require(params, "key_id")

        try:
            reward_amount = int(params.get("reward_amount", "1"))
        except ValueError:
            reward_amount = 1

        return cls(
            transaction_id=transaction_id,
            user_id=user_id,
            reward_item=reward_item,
            reward_amount=reward_amount,
            signature=signature,
            key_id=key_id,
            original_uri=uri,
        )


@dataclass(frozen=True)
class AppLovinRewardCallback:
    """AppLovin MAX server-to-server reward callback."""

    event_id: str
    user_id: str
    timestamp: str
    signature: str
    reward_item: str  # reward_type, falling back to custom_data

    @classmethod
    def from_uri(cls, uri: str) -> "AppLovinRewardCallback":
        """
        Parse an AppLovin callback URI.

        Raises:
            InvalidInputError: If a required parameter is missing or empty
        """
        params = query_params(uri)

        event_id = _require(params, "event_id")
        user_id = _require(params, "user_id")
        timestamp = _require(params, "ts")
        signature = _require(params, "signature")
        reward_item = params.get("reward_type") or params.get("custom_data")
        if not reward_item:
            raise InvalidInputError("Missing reward_type/custom_data")

        return cls(
            event_id=event_id,
            user_id=user_id,
            timestamp=timestamp,
            signature=signature,
            reward_item=reward_item,
        )


@dataclass(frozen=True)
class IronSourceRewardCallback:
    """IronSource server-side rewarded video callback.

    https://developers.is.com/ironsource-mobile/general/serverside-rewarded-video-callbacks/
    """

    app_user_id: str
    rewards: str  # "<amount> <rewardTypeName>", e.g. "10 adFree"
    event_id: str
    timestamp: str
    signature: str

    @classmethod
    def from_uri(cls, uri: str) -> "IronSourceRewardCallback":
        """
        Parse an IronSource callback URI.

        Raises:
            InvalidInputError: If a required parameter is missing or empty
        """
        params = query_params(uri)

        return cls(
            app_user_id=_require(params, "appUserId"),
            rewards=_require(params, "rewards"),
            event_id=_require(params, "eventId"),
            timestamp=_require(params, "timestamp"),
            signature=_require(params, "signature"),
        )

    def reward_parts(self) -> tuple[int, str]:
        """
        Split ``rewards`` into amount and reward type name.

        Raises:
            InvalidInputError: If the value is not "<amount> <name>"
        """
        parts = self.rewards.split(" ")
        if len(parts) != 2 or not parts[1]:
            raise InvalidInputError(f"Invalid rewards format: {self.rewards}")
        try:
            amount = int(parts[0])
        except ValueError as exc:
            raise InvalidInputError(f"Invalid rewards amount: {self.rewards}") from exc
        return amount, parts[1]
