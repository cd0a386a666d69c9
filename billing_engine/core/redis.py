"""Redis connection configuration."""

import redis.asyncio as redis

from billing_engine.core.config import settings

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    return redis_client
