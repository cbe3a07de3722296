"""
Idempotency Service - Durable at-most-once guard for reward events.

Event ids are hashed with SHA-256 (optionally namespaced by a scope such as the
ad platform) to get fixed-length primary keys from arbitrary provider ids.
Records expire after a TTL; expired rows count as absent and can be reclaimed.
"""

import hashlib
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import ProcessedRewardEvent, utc_now
from app.exceptions import IdempotencyConflictError
from app.models.domain import IdempotencyRecord

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(days=30)


class IdempotencyService:
    """
    Tracks processed reward events in the processed_reward_events table.

    Usage:
        service = IdempotencyService(session, ttl=timedelta(days=30))

        if await service.is_event_processed(transaction_id, scope="admob"):
            return  # replay

        # Inside the granting transaction - only one concurrent caller wins
        if not await service.claim_event(transaction_id, scope="admob"):
            return  # concurrent duplicate
    """

    def __init__(self, session: AsyncSession, ttl: timedelta = DEFAULT_TTL) -> None:
        """Initialize idempotency service with database session."""
        self.session = session
        self.ttl = ttl

    @staticmethod
    def record_id(event_id: str, scope: str | None = None) -> str:
        """Deterministic 64-char hex id for an event."""
        key = f"{scope}:{event_id}" if scope else event_id
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    async def is_event_processed(self, event_id: str, scope: str | None = None) -> bool:
        """Check whether an unexpired record exists for the event."""
        record_id = self.record_id(event_id, scope)
        stmt = select(ProcessedRewardEvent.id).where(
            ProcessedRewardEvent.id == record_id,
            ProcessedRewardEvent.expires_at > utc_now(),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def claim_event(self, event_id: str, scope: str | None = None) -> bool:
        """
        Atomically insert the record unless an unexpired one exists.

        Concurrent claims for the same id serialize on the primary key, so
        exactly one caller gets True. The claim becomes durable only when the
        surrounding transaction commits.
        """
        now = utc_now()
        record_id = self.record_id(event_id, scope)

        stmt = pg_insert(ProcessedRewardEvent).values(
            id=record_id,
            scope=scope,
            created_at=now,
            expires_at=now + self.ttl,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProcessedRewardEvent.id],
            set_={
                "scope": stmt.excluded.scope,
                "created_at": stmt.excluded.created_at,
                "expires_at": stmt.excluded.expires_at,
            },
            where=ProcessedRewardEvent.expires_at <= now,
        ).returning(ProcessedRewardEvent.id)

        result = await self.session.execute(stmt)
        claimed = result.scalar_one_or_none() is not None

        if not claimed:
            logger.info("reward_event_claim_lost", event_id=event_id, scope=scope)
        return claimed

    async def record_event(self, event_id: str, scope: str | None = None) -> IdempotencyRecord:
        """
        Record an event as processed.

        Raises:
            IdempotencyConflictError: If the event was already recorded
        """
        now = utc_now()
        record = IdempotencyRecord(
            id=self.record_id(event_id, scope),
            created_at=now,
            expires_at=now + self.ttl,
            scope=scope,
        )
        self.session.add(
            ProcessedRewardEvent(
                id=record.id,
                scope=record.scope,
                created_at=record.created_at,
                expires_at=record.expires_at,
            )
        )

        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning("reward_event_already_recorded", event_id=event_id, scope=scope)
            raise IdempotencyConflictError(record.id) from exc

        return record

    async def purge_expired(self) -> int:
        """Delete expired records. Returns the number of rows removed."""
        stmt = delete(ProcessedRewardEvent).where(ProcessedRewardEvent.expires_at <= utc_now())
        result = await self.session.execute(stmt)
        await self.session.commit()

        purged: int = result.rowcount  # type: ignore[attr-defined]
        logger.info("reward_events_purged", count=purged)
        return purged
