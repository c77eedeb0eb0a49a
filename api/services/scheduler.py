"""
Daily maintenance: expire finished subscriptions and deactivate lapsed
promo codes.

Runs as an asyncio background task in the API process, once a day at
00:01 local time. A Redis lock keeps multiple API workers from running
the same day's jobs twice.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta

from db.database import SessionLocal
from services import timezone
from services.locks import LockUnavailable, hold_lock
from services.promo_codes import deactivate_expired_promo_codes
from services.subscriptions import expire_overdue_subscriptions

logger = logging.getLogger(__name__)

RUN_AT = time(0, 1)


def seconds_until_next_run(now: datetime) -> float:
    now = timezone.to_local(now)
    next_run = now.replace(hour=RUN_AT.hour, minute=RUN_AT.minute, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_daily_jobs(session_factory=SessionLocal) -> dict | None:
    """Returns the counts, or None if another worker holds the lock."""
    try:
        async with hold_lock("daily-jobs", ttl=600):
            async with session_factory() as db:
                now = timezone.now()
                expired = await expire_overdue_subscriptions(db, now)
                promos = await deactivate_expired_promo_codes(db, now)
    except LockUnavailable:
        logger.info("Daily jobs already running elsewhere, skipping")
        return None
    logger.info("Daily jobs done: %d subscriptions expired, %d promo codes deactivated", expired, promos)
    return {"expired_subscriptions": expired, "deactivated_promo_codes": promos}


async def daily_jobs_loop():
    logger.info("Daily job scheduler started (runs at %s)", RUN_AT.strftime("%H:%M"))
    while True:
        await asyncio.sleep(seconds_until_next_run(timezone.now()))
        try:
            await run_daily_jobs()
        except Exception as e:
            logger.error("Daily jobs failed: %s", e)
