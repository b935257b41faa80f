"""Redis connection — process-wide pool, opened in lifespan.

Learn: Redis is optional. Both apps try to connect at startup and carry
on without it; the only consumer is the rate limiter, which checks
get_redis() per request and lets traffic through when there is no pool.
"""

from typing import Optional

import redis.asyncio as aioredis

from taskhub.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Open the pool and verify it with a PING."""
    global _redis
    client = aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping() -> bool:
    """Health probe. False when the pool is missing or unreachable."""
    try:
        return bool(await get_redis().ping())
    except Exception:
        return False
