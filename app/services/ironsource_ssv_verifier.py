"""
IronSource SSV Verifier.

Verifies IronSource server-side rewarded video callbacks.

https://developers.is.com/ironsource-mobile/general/serverside-rewarded-video-callbacks/

The signature is hex HMAC-SHA256 over ``timestamp + eventId + appUserId + rewards``
keyed with the private key from the IronSource dashboard.
"""

import hashlib
import hmac

from structlog import get_logger

from app.exceptions import InvalidInputError, ServerError
from app.models.domain import VerifiedRewardPayload
from app.models.reward_callbacks import IronSourceRewardCallback
from app.services.reward_verifier import hex_signature_matches, resolve_reward_type

logger = get_logger(__name__)


def ironsource_signature(
    timestamp: str,
    event_id: str,
    app_user_id: str,
    rewards: str,
    private_key: str,
) -> str:
    """Compute the hex HMAC-SHA256 signature IronSource sends with a callback."""
    content = f"{timestamp}{event_id}{app_user_id}{rewards}"
    return hmac.new(
        private_key.encode("utf-8"),
        content.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class IronSourceSsvVerifier:
    """IronSource reward verifier."""

    def __init__(self, private_key: str | None) -> None:
        """
        Initialize IronSource verifier.

        Args:
            private_key: SSV private key from the IronSource dashboard
        """
        self._private_key = private_key

    async def verify(self, uri: str) -> VerifiedRewardPayload:
        """
        Verify an IronSource callback.

        Raises:
            ServerError: If no private key is configured
            InvalidInputError: Missing fields, signature mismatch, or malformed rewards
            BadRequestError: Unknown reward type name
        """
        if not self._private_key:
            logger.error("ironsource_private_key_not_configured")
            raise ServerError("IronSource verifier is not configured.")

        callback = IronSourceRewardCallback.from_uri(uri)

        expected = ironsource_signature(
            callback.timestamp,
            callback.event_id,
            callback.app_user_id,
            callback.rewards,
            self._private_key,
        )
        if not hex_signature_matches(expected, callback.signature):
            logger.warning("ironsource_signature_invalid", event_id=callback.event_id)
            raise InvalidInputError("Invalid signature.")

        logger.info("ironsource_signature_verified", event_id=callback.event_id)

        _amount, reward_name = callback.reward_parts()

        return VerifiedRewardPayload(
            transaction_id=callback.event_id,
            user_id=callback.app_user_id,
            reward_type=resolve_reward_type(reward_name),
        )
