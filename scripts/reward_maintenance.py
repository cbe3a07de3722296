#!/usr/bin/env python3
"""
Ad Rewards maintenance tasks.

Usage:
    # Create the tables (fresh database)
    python3 scripts/reward_maintenance.py init-db

    # Enable adFree for 1 day per rewarded ad in the "default" config
    python3 scripts/reward_maintenance.py seed-config --reward adFree --duration-days 1

    # Delete expired idempotency records (for cron)
    python3 scripts/reward_maintenance.py purge-events
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.dialects.postgresql import insert as pg_insert
from structlog import get_logger

from app.config import settings
from app.db.models import Base, RewardConfigDocument, utc_now
from app.db.session import close_engines, get_engine, get_session
from app.models.domain import RewardType
from app.observability.logging import setup_logging
from app.services.idempotency import IdempotencyService

logger = get_logger(__name__)


async def init_db() -> None:
    """Create all tables that don't exist yet."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_created", tables=sorted(Base.metadata.tables))


async def seed_config(
    config_id: str, reward_type: RewardType, duration_days: int, enabled: bool
) -> None:
    """Insert or update one reward entry in a reward config document."""
    entry = {"enabled": enabled, "duration_days": duration_days}

    async with get_session() as session:
        document = await session.get(RewardConfigDocument, config_id)
        rewards = dict(document.rewards) if document is not None else {}
        rewards[reward_type.value] = entry

        stmt = pg_insert(RewardConfigDocument).values(
            id=config_id, rewards=rewards, updated_at=utc_now()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RewardConfigDocument.id],
            set_={"rewards": stmt.excluded.rewards, "updated_at": stmt.excluded.updated_at},
        )
        await session.execute(stmt)
        await session.commit()

    logger.info(
        "reward_config_seeded",
        config_id=config_id,
        reward_type=reward_type.value,
        duration_days=duration_days,
        enabled=enabled,
    )


async def purge_events() -> int:
    """Delete expired processed-event records."""
    async with get_session() as session:
        return await IdempotencyService(session).purge_expired()


async def run(args: argparse.Namespace) -> None:
    try:
        if args.command == "init-db":
            await init_db()
        elif args.command == "seed-config":
            reward_type = RewardType.from_name(args.reward)
            if reward_type is None:
                logger.error("unknown_reward_type", reward_type=args.reward)
                sys.exit(1)
            await seed_config(args.config_id, reward_type, args.duration_days, not args.disabled)
        elif args.command == "purge-events":
            await purge_events()
    finally:
        await close_engines()


def main() -> None:
    setup_logging(log_format="console")

    parser = argparse.ArgumentParser(
        description="Ad Rewards database maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    seed = subparsers.add_parser("seed-config", help="Configure a reward type")
    seed.add_argument("--config-id", default=settings.REWARD_CONFIG_ID)
    seed.add_argument("--reward", default="adFree", help="Reward type name")
    seed.add_argument("--duration-days", type=int, required=True)
    seed.add_argument("--disabled", action="store_true", help="Store the reward as disabled")

    subparsers.add_parser("purge-events", help="Delete expired idempotency records")

    args = parser.parse_args()

    if args.command == "seed-config" and args.duration_days <= 0:
        logger.error("invalid_duration_days", duration_days=args.duration_days)
        sys.exit(1)

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
