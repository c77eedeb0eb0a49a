"""
Redis locks that keep two workers from resuming the same purchase at once.

Built on redis-py's Lock: non-blocking acquire, expiry after the TTL, and
release only by the holder.
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import LockError

from config import settings

logger = logging.getLogger(__name__)

_redis: aioredis.Redis | None = None


class LockUnavailable(Exception):
    pass


async def get_redis() -> aioredis.Redis:
    """Singleton Redis connection."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


@asynccontextmanager
async def hold_lock(name: str, ttl: int | None = None):
    r = await get_redis()
    lock = r.lock(f"lock:{name}", timeout=ttl or settings.workflow_lock_ttl_sec, blocking=False)
    if not await lock.acquire():
        raise LockUnavailable(f"{name} is being processed")
    try:
        yield lock
    finally:
        try:
            await lock.release()
        except LockError as e:
            # Expired mid-run; another worker may already own the key
            logger.warning("Lock %s lost before release: %s", name, e)
