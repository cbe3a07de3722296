"""
AdMob Public Key Cache.

Google publishes the ECDSA keys used to sign AdMob SSV callbacks at
https://www.gstatic.com/admob/reward/verifier-keys.json as
``{"keys": [{"keyId": 3335741209, "pem": "-----BEGIN PUBLIC KEY-----..."}]}``.

The cache holds one immutable snapshot (keys + expiry) that is replaced
wholesale on refresh, so readers never see a half-updated key set.
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

import httpx
from structlog import get_logger

from app.exceptions import OperationFailedError
from app.observability.metrics import metrics

logger = get_logger(__name__)

DEFAULT_KEYS_URL = "https://www.gstatic.com/admob/reward/verifier-keys.json"


@dataclass(frozen=True)
class PublicKeySnapshot:
    """Key set fetched at one point in time."""

    keys: Mapping[str, str]  # key_id -> PEM
    fetched_at: float  # monotonic seconds
    expires_at: float  # monotonic seconds

    def is_fresh(self, now: float) -> bool:
        """Check if the snapshot is still within its TTL."""
        return now < self.expires_at


class AdMobPublicKeyCache:
    """
    Time-bounded cache of AdMob verifier keys.

    Refresh happens inline on a miss. Concurrent misses share one fetch through
    an asyncio.Lock. An unknown key_id on a fresh snapshot forces one early
    refresh (at most every ``min_refresh_seconds``) so rotated keys are picked
    up without waiting for the TTL.
    """

    def __init__(
        self,
        keys_url: str = DEFAULT_KEYS_URL,
        ttl_seconds: float = 86400,
        timeout_seconds: float = 10.0,
        min_refresh_seconds: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the key cache.

        Args:
            keys_url: Key set endpoint
            ttl_seconds: How long a fetched key set is trusted
            timeout_seconds: Upper bound for a single key fetch
            min_refresh_seconds: Minimum age before an unknown key_id forces a refresh
            transport: Optional httpx transport (tests inject a MockTransport)
            clock: Monotonic clock
        """
        self.keys_url = keys_url
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.min_refresh_seconds = min_refresh_seconds
        self._transport = transport
        self._clock = clock
        self._snapshot: PublicKeySnapshot | None = None
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> PublicKeySnapshot | None:
        """Current snapshot, if any keys have been fetched."""
        return self._snapshot

    async def get_key(self, key_id: str) -> str | None:
        """
        Resolve the PEM public key for ``key_id``.

        Returns:
            PEM string, or None if the key set does not contain ``key_id``

        Raises:
            OperationFailedError: If the key set cannot be fetched
        """
        snapshot = self._snapshot
        if snapshot is None or not snapshot.is_fresh(self._clock()):
            snapshot = await self._refresh(stale=snapshot)

        pem = snapshot.keys.get(key_id)
        if pem is None and self._clock() - snapshot.fetched_at >= self.min_refresh_seconds:
            logger.info("admob_key_id_unknown_refreshing", key_id=key_id)
            try:
                snapshot = await self._refresh(stale=snapshot)
            except OperationFailedError:
                # The snapshot is still valid; the key_id is simply unknown
                logger.warning("admob_forced_refresh_failed", key_id=key_id)
                return None
            pem = snapshot.keys.get(key_id)

        return pem

    async def _refresh(self, stale: PublicKeySnapshot | None) -> PublicKeySnapshot:
        async with self._lock:
            current = self._snapshot
            # Another coroutine already replaced the snapshot we found stale
            if current is not None and current is not stale and current.is_fresh(self._clock()):
                return current

            keys = await self._fetch_keys()
            now = self._clock()
            snapshot = PublicKeySnapshot(
                keys=MappingProxyType(keys),
                fetched_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._snapshot = snapshot

            logger.info("admob_keys_refreshed", key_count=len(keys), key_ids=sorted(keys))
            return snapshot

    async def _fetch_keys(self) -> dict[str, str]:
        logger.info("fetching_admob_verifier_keys", url=self.keys_url)

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout_seconds,
            ) as client:
                response = await client.get(self.keys_url)
                response.raise_for_status()
                body = response.json()

            keys = {str(entry["keyId"]): str(entry["pem"]) for entry in body["keys"]}

        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            metrics.record_key_refresh(success=False)
            logger.error("admob_key_fetch_failed", url=self.keys_url, error=str(exc))
            raise OperationFailedError("Failed to fetch verification keys") from exc

        if not keys:
            metrics.record_key_refresh(success=False)
            logger.error("admob_key_set_empty", url=self.keys_url)
            raise OperationFailedError("Verification key set is empty")

        metrics.record_key_refresh(success=True)
        return keys
