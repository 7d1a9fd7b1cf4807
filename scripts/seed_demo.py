"""Seed script: populates FlowWatch with a demonstration user.

Creates the ``demo-user`` notification user with a favorite ``demo-reach``,
default preferences and a kayaking threshold of 200..400 cfs, and primes the
return-period cache for the demo reach so the first run does not need the
upstream provider.

Usage:
    python -m scripts.seed_demo          # seed everything
    python -m scripts.seed_demo --reset  # wipe and reseed

Requires: running PostgreSQL and Redis (see DATABASE_URL / REDIS_URL).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import time

from sqlalchemy import delete, select

from src.core.config import get_settings
from src.core.database import create_engine
from src.core.models import (
    FavoriteReach,
    NotificationPreference,
    NotificationUser,
    UserThresholdRecord,
)
from src.core.redis import create_redis_client
from src.monitoring.cache import RedisReturnPeriodStore
from src.monitoring.types import FlowUnit, ReturnPeriodTable

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger(__name__)

DEMO_USER_ID = "demo-user"
DEMO_REACH_ID = "demo-reach"
DEMO_TOKEN = "demo-device-token"

# Demo reach thresholds in cfs.
DEMO_RETURN_PERIODS: dict[int, float] = {2: 150.0, 5: 250.0, 10: 350.0, 25: 500.0, 50: 650.0, 100: 800.0}


def demo_objects() -> list[object]:
    user = NotificationUser(id=DEMO_USER_ID, delivery_token=DEMO_TOKEN, notifications_enabled=True)
    return [
        user,
        FavoriteReach(
            user_id=DEMO_USER_ID,
            reach_id=DEMO_REACH_ID,
            reach_name="Demo River",
            activity_label="kayaking",
            notifications_enabled=True,
        ),
        NotificationPreference(
            user_id=DEMO_USER_ID,
            emergency_alerts_on=True,
            activity_alerts_on=True,
            information_alerts_on=False,
            quiet_hours_enabled=False,
            quiet_hours_start=time(22, 0),
            quiet_hours_end=time(7, 0),
        ),
        UserThresholdRecord(
            user_id=DEMO_USER_ID,
            reach_id=DEMO_REACH_ID,
            activity_label="kayaking",
            unit=FlowUnit.CFS,
            min_flow=200.0,
            max_flow=400.0,
            enabled=True,
        ),
    ]


async def main(reset: bool = False) -> None:
    settings = get_settings()
    engine, session_factory = create_engine(settings)

    async with session_factory() as session:
        if reset:
            # Favorites, preferences and thresholds cascade from the user row.
            await session.execute(delete(NotificationUser).where(NotificationUser.id == DEMO_USER_ID))
            await session.commit()
            logger.info("Removed existing demo user")

        existing = await session.execute(select(NotificationUser.id).where(NotificationUser.id == DEMO_USER_ID))
        if existing.first():
            logger.info("Demo user already exists. Use --reset to reseed.")
        else:
            objects = demo_objects()
            session.add_all(objects)
            await session.commit()
            logger.info("PostgreSQL seeded: %d objects", len(objects))

    await engine.dispose()

    redis_client = create_redis_client(settings)
    try:
        store = RedisReturnPeriodStore(redis_client, retention=settings.return_period_retention)
        await store.save(ReturnPeriodTable(DEMO_REACH_ID, FlowUnit.CFS, dict(DEMO_RETURN_PERIODS)))
        logger.info("Return periods cached for %s", DEMO_REACH_ID)
    finally:
        await redis_client.aclose()

    logger.info("Demo data seeding complete.")
    logger.info("  User:      %s (token %s)", DEMO_USER_ID, DEMO_TOKEN)
    logger.info("  Reach:     %s, kayaking band 200-400 cfs", DEMO_REACH_ID)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed FlowWatch demo data")
    parser.add_argument("--reset", action="store_true", help="Delete existing demo data before seeding")
    args = parser.parse_args()
    asyncio.run(main(reset=args.reset))
