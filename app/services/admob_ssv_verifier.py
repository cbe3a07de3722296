"""
AdMob SSV Verifier.

Verifies server-side verification callbacks from Google AdMob.

https://developers.google.com/admob/android/ssv

AdMob signs the callback query string (minus ``signature`` and ``key_id``) with
ECDSA P-256 / SHA-256 and sends the DER-encoded signature as URL-safe base64.
"""

import base64
import binascii
from functools import lru_cache
from urllib.parse import urlsplit

from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from jwt.algorithms import ECAlgorithm
from jwt.exceptions import InvalidKeyError
from structlog import get_logger

from app.exceptions import InvalidInputError
from app.models.domain import VerifiedRewardPayload
from app.models.reward_callbacks import AdMobRewardCallback
from app.services.admob_keys import AdMobPublicKeyCache
from app.services.reward_verifier import resolve_reward_type

logger = get_logger(__name__)

# P-256 coordinates are 32 bytes; IEEE P1363 signatures are r || s
P256_COORDINATE_BYTES = 32

_ES256 = ECAlgorithm(ECAlgorithm.SHA256)

_EXCLUDED_PREFIXES = ("signature=", "key_id=")


def reconstruct_content(uri: str) -> str:
    """
    Rebuild the exact string AdMob signed.

    The raw query is split on ``&`` and every ``signature`` / ``key_id`` part is
    dropped. Order and percent-encoding are kept byte-for-byte; re-encoding
    or reordering would invalidate the signature.
    """
    query = urlsplit(uri).query
    if not query:
        return ""
    return "&".join(part for part in query.split("&") if not part.startswith(_EXCLUDED_PREFIXES))


def decode_web_safe_base64(value: str) -> bytes:
    """
    Decode URL-safe base64, restoring any stripped padding.

    Raises:
        InvalidInputError: If the value is not valid base64
    """
    normalized = value.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        return base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("Invalid signature encoding.") from exc


def der_to_p1363(der_signature: bytes) -> bytes:
    """
    Convert an ASN.1 DER ECDSA signature to the 64-byte IEEE P1363 form.

    r and s are right-aligned and zero-padded to 32 bytes each. A 33-byte DER
    integer only carries a leading sign byte, which is dropped.

    Raises:
        InvalidInputError: If the DER structure is malformed or r/s do not fit
    """
    try:
        r, s = decode_dss_signature(der_signature)
        return r.to_bytes(P256_COORDINATE_BYTES, "big") + s.to_bytes(P256_COORDINATE_BYTES, "big")
    except (ValueError, OverflowError) as exc:
        logger.warning("admob_der_signature_invalid", error=str(exc))
        raise InvalidInputError("Invalid DER signature format.") from exc


@lru_cache(maxsize=32)
def _load_public_key(public_key_pem: str) -> object:
    return _ES256.prepare_key(public_key_pem)


class AdMobSsvVerifier:
    """
    AdMob reward verifier.

    Fetches Google's verifier keys through the shared key cache and checks the
    ECDSA signature of each callback.
    """

    def __init__(self, key_cache: AdMobPublicKeyCache) -> None:
        """
        Initialize AdMob verifier.

        Args:
            key_cache: Cache of AdMob verifier public keys
        """
        self.key_cache = key_cache

    async def verify(self, uri: str) -> VerifiedRewardPayload:
        """
        Verify an AdMob SSV callback.

        Raises:
            InvalidInputError: Missing fields, unknown key_id, bad DER, or signature mismatch
            BadRequestError: Unknown reward item
            OperationFailedError: Verifier keys could not be fetched
        """
        callback = AdMobRewardCallback.from_uri(uri)

        content = reconstruct_content(callback.original_uri).encode("utf-8")
        der_signature = decode_web_safe_base64(callback.signature)

        public_key_pem = await self.key_cache.get_key(callback.key_id)
        if public_key_pem is None:
            logger.warning("admob_key_id_not_found", key_id=callback.key_id)
            raise InvalidInputError("Invalid key_id.")

        signature = der_to_p1363(der_signature)
        if not self._verify_signature(public_key_pem, content, signature):
            logger.warning(
                "admob_signature_invalid",
                transaction_id=callback.transaction_id,
                key_id=callback.key_id,
            )
            raise InvalidInputError("Invalid signature.")

        logger.info(
            "admob_signature_verified",
            transaction_id=callback.transaction_id,
            key_id=callback.key_id,
            reward_item=callback.reward_item,
            reward_amount=callback.reward_amount,
        )

        return VerifiedRewardPayload(
            transaction_id=callback.transaction_id,
            user_id=callback.user_id,
            reward_type=resolve_reward_type(callback.reward_item),
        )

    def _verify_signature(self, public_key_pem: str, message: bytes, signature: bytes) -> bool:
        """Verify an ES256 signature in P1363 form."""
        try:
            key = _load_public_key(public_key_pem)
        except (InvalidKeyError, ValueError, TypeError) as exc:
            logger.error("admob_public_key_invalid", error=str(exc))
            return False
        return bool(_ES256.verify(message, key, signature))
