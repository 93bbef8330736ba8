"""
Shared redis connection.

Backs the token blacklist checked on every REST call and every bound
tracking socket. Callers go through ``get_redis()`` at call time so the
client can be swapped in tests.
"""

import logging

import redis.asyncio as redis
from busline.app.core.config import settings

logger = logging.getLogger("busline.redis")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis() -> redis.Redis:
    return redis_client


async def ping_redis() -> bool:
    """Reachability for ``/health``; never raises."""
    try:
        return bool(await redis_client.ping())
    except redis.RedisError as e:
        logger.warning("Redis ping failed: %s", e)
        return False
