"""
Reward Verifier Protocol - Provider-agnostic SSV interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

import hmac
from typing import Protocol

from app.exceptions import BadRequestError
from app.models.domain import RewardType, VerifiedRewardPayload


class RewardVerifier(Protocol):
    """
    Reward verifier protocol.

    Every rewarded-ad network (AdMob, AppLovin, IronSource) implements this
    interface so the rewards service stays provider-agnostic.
    """

    async def verify(self, uri: str) -> VerifiedRewardPayload:
        """
        Authenticate a callback and normalize it.

        Args:
            uri: Full callback URI exactly as received, including the raw query

        Returns:
            Verified, provider-independent reward payload

        Raises:
            InvalidInputError: Malformed callback or signature mismatch
            BadRequestError: Unrecognized reward type
            OperationFailedError: Verification infrastructure failed (key fetch)
            ServerError: Verifier is misconfigured (missing secret)
        """
        ...


def resolve_reward_type(name: str) -> RewardType:
    """
    Map a provider-supplied reward name to a RewardType, ignoring case.

    Raises:
        BadRequestError: If the name matches no reward type
    """
    reward_type = RewardType.from_name(name)
    if reward_type is None:
        raise BadRequestError(f"Unknown reward type: {name}")
    return reward_type


def hex_signature_matches(expected: str, provided: str) -> bool:
    """
    Compare a lowercase hex digest with a provider signature in constant time.

    Hex case is ignored. The provided value is compared as UTF-8 bytes, so
    non-ASCII input is a mismatch rather than an error.
    """
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8"))
