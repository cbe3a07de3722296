"""
FastAPI Dependencies - Wiring for the reward webhooks.

NO DICTIONARIES - All dependencies return typed objects.

Process-wide singletons (the AdMob key cache and the verifier registry) are
built lazily from settings; per-request objects share the request's session.
"""

from datetime import timedelta

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import Settings, settings
from app.db.repositories import SqlEntitlementsRepository, SqlRewardConfigRepository
from app.db.session import get_db
from app.models.domain import AdPlatform
from app.services.admob_keys import AdMobPublicKeyCache
from app.services.admob_ssv_verifier import AdMobSsvVerifier
from app.services.applovin_ssv_verifier import AppLovinSsvVerifier
from app.services.idempotency import IdempotencyService
from app.services.ironsource_ssv_verifier import IronSourceSsvVerifier
from app.services.reward_verifier import RewardVerifier
from app.services.rewards import RewardsService

logger = get_logger(__name__)

_admob_key_cache: AdMobPublicKeyCache | None = None
_verifier_registry: dict[AdPlatform, RewardVerifier] | None = None


def build_admob_key_cache(config: Settings) -> AdMobPublicKeyCache:
    """Create the AdMob key cache from settings."""
    return AdMobPublicKeyCache(
        keys_url=config.ADMOB_KEYS_URL,
        ttl_seconds=config.ADMOB_KEY_CACHE_TTL_SECONDS,
        timeout_seconds=config.ADMOB_KEY_FETCH_TIMEOUT_SECONDS,
        min_refresh_seconds=config.ADMOB_KEY_MIN_REFRESH_SECONDS,
    )


def build_verifier_registry(
    config: Settings, key_cache: AdMobPublicKeyCache
) -> dict[AdPlatform, RewardVerifier]:
    """
    Build one verifier per enabled platform.

    Platforms missing from REWARD_PLATFORMS get no verifier, so their webhook
    answers with a ServerError. A platform without its secret is still
    registered and fails the same way at verification time.
    """
    registry: dict[AdPlatform, RewardVerifier] = {}
    for name in config.reward_platforms:
        platform = AdPlatform(name)
        if platform is AdPlatform.ADMOB:
            registry[platform] = AdMobSsvVerifier(key_cache)
        elif platform is AdPlatform.APPLOVIN:
            registry[platform] = AppLovinSsvVerifier(config.APPLOVIN_SIGNING_KEY or None)
        elif platform is AdPlatform.IRONSOURCE:
            registry[platform] = IronSourceSsvVerifier(config.IRONSOURCE_PRIVATE_KEY or None)

    logger.info("verifier_registry_built", platforms=[p.value for p in registry])
    return registry


def get_admob_key_cache() -> AdMobPublicKeyCache:
    """Get or create the process-wide AdMob key cache."""
    global _admob_key_cache
    if _admob_key_cache is None:
        _admob_key_cache = build_admob_key_cache(settings)
    return _admob_key_cache


def get_verifier_registry() -> dict[AdPlatform, RewardVerifier]:
    """Get or create the process-wide verifier registry."""
    global _verifier_registry
    if _verifier_registry is None:
        _verifier_registry = build_verifier_registry(settings, get_admob_key_cache())
    return _verifier_registry


async def get_rewards_service(
    db: AsyncSession = Depends(get_db),
    verifiers: dict[AdPlatform, RewardVerifier] = Depends(get_verifier_registry),
) -> RewardsService:
    """
    FastAPI dependency for the rewards service.

    Usage:
        @router.get("/v1/rewards/webhooks/admob")
        async def admob_webhook(service: RewardsService = Depends(get_rewards_service)):
            ...
    """
    return RewardsService(
        verifiers=verifiers,
        entitlements=SqlEntitlementsRepository(db),
        reward_configs=SqlRewardConfigRepository(db),
        idempotency=IdempotencyService(db, ttl=timedelta(days=settings.IDEMPOTENCY_TTL_DAYS)),
        session=db,
        config_id=settings.REWARD_CONFIG_ID,
    )
