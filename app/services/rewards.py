"""
Rewards Service - Verifies ad reward callbacks and grants time-based entitlements.

NO DICTIONARIES - All operations use strongly typed domain models.

Grant flow for one callback:
1. Verify the callback with the platform's verifier
2. Skip transactions already processed on that platform
3. Inside one database transaction: check the reward config, claim the event,
   extend the user's entitlement, commit

Provider reward amounts are ignored; RewardConfig is the only source of duration.
"""

import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import utc_now
from app.db.repositories import EntitlementsRepository, RewardConfigSource
from app.exceptions import (
    EntitlementsNotFoundError,
    ForbiddenError,
    OperationFailedError,
    RewardConfigNotFoundError,
    RewardError,
    ServerError,
)
from app.models.domain import (
    AdPlatform,
    GrantOutcome,
    RewardConfig,
    UserEntitlements,
    VerifiedRewardPayload,
)
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, trace_operation
from app.services.idempotency import IdempotencyService
from app.services.reward_verifier import RewardVerifier

logger = get_logger(__name__)


def compute_new_expiry(current: datetime | None, now: datetime, duration_days: int) -> datetime:
    """
    Extend an entitlement.

    An active reward is extended from its current expiry; a lapsed or missing
    one starts from ``now``. The result is never earlier than ``current``.
    """
    effective_start = current if current is not None and current > now else now
    return effective_start + timedelta(days=duration_days)


class RewardsService:
    """
    Orchestrates reward verification and entitlement grants.

    Usage:
        service = RewardsService(
            verifiers={AdPlatform.ADMOB: admob_verifier},
            entitlements=SqlEntitlementsRepository(session),
            reward_configs=SqlRewardConfigRepository(session),
            idempotency=IdempotencyService(session),
            session=session,
            config_id="default",
        )
        outcome = await service.process_callback(AdPlatform.ADMOB, str(request.url))
    """

    def __init__(
        self,
        verifiers: Mapping[AdPlatform, RewardVerifier],
        entitlements: EntitlementsRepository,
        reward_configs: RewardConfigSource,
        idempotency: IdempotencyService,
        session: AsyncSession,
        config_id: str = "default",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize rewards service with its collaborators."""
        self.verifiers = verifiers
        self.entitlements = entitlements
        self.reward_configs = reward_configs
        self.idempotency = idempotency
        self.session = session
        self.config_id = config_id
        self._clock = clock

    async def process_callback(self, platform: AdPlatform, uri: str) -> GrantOutcome:
        """
        Verify a callback and grant its reward.

        Args:
            platform: Ad network that sent the callback
            uri: Full callback URI exactly as received

        Returns:
            GrantOutcome; ``already_processed`` is True for replays

        Raises:
            ServerError: Platform has no configured verifier
            InvalidInputError, BadRequestError: Verification failed
            ForbiddenError: Reward type disabled or not configured
            OperationFailedError: Key fetch or config load failed
            ConcurrencyError: Entitlement was modified concurrently
        """
        started = time.perf_counter()

        with log_context(platform=platform.value), trace_operation(
            "reward_callback", platform=platform.value
        ) as span:
            try:
                outcome = await self._process(platform, uri)
            except RewardError as exc:
                metrics.record_reward_callback(
                    platform.value, type(exc).__name__, time.perf_counter() - started
                )
                raise

            add_span_attributes(
                span,
                transaction_id=outcome.transaction_id,
                user_id=outcome.user_id,
                reward_type=outcome.reward_type.value,
                already_processed=outcome.already_processed,
            )

        metrics.record_reward_callback(
            platform.value,
            "already_processed" if outcome.already_processed else "granted",
            time.perf_counter() - started,
        )
        return outcome

    async def grant_reward(
        self, payload: VerifiedRewardPayload, platform: AdPlatform
    ) -> GrantOutcome:
        """
        Grant or extend the reward in ``payload`` atomically.

        The idempotency claim and the entitlement write commit together; on any
        failure both are rolled back.
        """
        try:
            expires_at = await self._grant(payload, platform.value)
        except Exception:
            await self.session.rollback()
            raise

        if expires_at is None:
            await self.session.rollback()
            return self._outcome(platform, payload, already_processed=True)

        return self._outcome(platform, payload, already_processed=False, expires_at=expires_at)

    async def _process(self, platform: AdPlatform, uri: str) -> GrantOutcome:
        verifier = self.verifiers.get(platform)
        if verifier is None:
            logger.error("reward_platform_not_configured")
            raise ServerError(f"Reward platform {platform.value} is not configured.")

        logger.info("processing_reward_callback")
        payload = await verifier.verify(uri)

        if await self.idempotency.is_event_processed(payload.transaction_id, scope=platform.value):
            logger.info(
                "reward_transaction_already_processed", transaction_id=payload.transaction_id
            )
            return self._outcome(platform, payload, already_processed=True)

        return await self.grant_reward(payload, platform)

    async def _grant(self, payload: VerifiedRewardPayload, scope: str) -> datetime | None:
        """Run the grant inside the session transaction. Returns None if the claim was lost."""
        config = await self._load_config()
        details = config.details_for(payload.reward_type)
        if details is None or not details.enabled:
            logger.warning("reward_type_disabled", reward_type=payload.reward_type.value)
            raise ForbiddenError("Reward is currently disabled.")

        if not await self.idempotency.claim_event(payload.transaction_id, scope=scope):
            logger.info(
                "reward_transaction_claimed_concurrently",
                transaction_id=payload.transaction_id,
            )
            return None

        current = await self._load_entitlements(payload.user_id)
        new_expiry = compute_new_expiry(
            current.expiry_for(payload.reward_type),
            self._clock(),
            details.duration_days,
        )
        updated = current.with_expiry(payload.reward_type, new_expiry)

        if current.is_new:
            await self.entitlements.create(updated)
        else:
            await self.entitlements.update(payload.user_id, updated)

        await self.session.commit()

        metrics.record_reward_grant(payload.reward_type.value)
        logger.info(
            "reward_granted",
            transaction_id=payload.transaction_id,
            user_id=payload.user_id,
            reward_type=payload.reward_type.value,
            expires_at=new_expiry.isoformat(),
        )
        return new_expiry

    async def _load_config(self) -> RewardConfig:
        try:
            return await self.reward_configs.read(self.config_id)
        except RewardConfigNotFoundError as exc:
            logger.error("reward_config_missing", config_id=self.config_id)
            raise OperationFailedError("Reward configuration is unavailable.") from exc

    async def _load_entitlements(self, user_id: str) -> UserEntitlements:
        try:
            return await self.entitlements.read(user_id)
        except EntitlementsNotFoundError:
            return UserEntitlements(user_id=user_id)

    def _outcome(
        self,
        platform: AdPlatform,
        payload: VerifiedRewardPayload,
        already_processed: bool,
        expires_at: datetime | None = None,
    ) -> GrantOutcome:
        return GrantOutcome(
            platform=platform,
            transaction_id=payload.transaction_id,
            user_id=payload.user_id,
            reward_type=payload.reward_type,
            already_processed=already_processed,
            expires_at=expires_at,
        )
