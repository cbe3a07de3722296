"""
AppLovin SSV Verifier.

Verifies AppLovin MAX server-to-server reward callbacks.

The signature is the hex MD5 of ``event_id + user_id + ts + signing key``.
That concatenation has to match the macro configured in the AppLovin dashboard.
"""

import hashlib

from structlog import get_logger

from app.exceptions import InvalidInputError, ServerError
from app.models.domain import VerifiedRewardPayload
from app.models.reward_callbacks import AppLovinRewardCallback
from app.services.reward_verifier import hex_signature_matches, resolve_reward_type

logger = get_logger(__name__)


def applovin_signature(event_id: str, user_id: str, timestamp: str, signing_key: str) -> str:
    """Compute the hex MD5 signature AppLovin sends with a callback."""
    content = f"{event_id}{user_id}{timestamp}{signing_key}"
    return hashlib.md5(content.encode("utf-8"), usedforsecurity=False).hexdigest()


class AppLovinSsvVerifier:
    """AppLovin MAX reward verifier."""

    def __init__(self, signing_key: str | None) -> None:
        """
        Initialize AppLovin verifier.

        Args:
            signing_key: S2S signing key from the AppLovin dashboard
        """
        self._signing_key = signing_key

    async def verify(self, uri: str) -> VerifiedRewardPayload:
        """
        Verify an AppLovin callback.

        Raises:
            ServerError: If no signing key is configured
            InvalidInputError: Missing fields or signature mismatch
            BadRequestError: Unknown reward item
        """
        if not self._signing_key:
            logger.error("applovin_signing_key_not_configured")
            raise ServerError("AppLovin verifier is not configured.")

        callback = AppLovinRewardCallback.from_uri(uri)

        expected = applovin_signature(
            callback.event_id,
            callback.user_id,
            callback.timestamp,
            self._signing_key,
        )
        if not hex_signature_matches(expected, callback.signature):
            logger.warning("applovin_signature_invalid", event_id=callback.event_id)
            raise InvalidInputError("Invalid signature.")

        reward_type = resolve_reward_type(callback.reward_item)

        logger.info("applovin_signature_verified", event_id=callback.event_id)
        return VerifiedRewardPayload(
            transaction_id=callback.event_id,
            user_id=callback.user_id,
            reward_type=reward_type,
        )
