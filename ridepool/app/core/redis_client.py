"""
Redis connection.

Backs the short-lived booking payment locks and the driver current-trip
cache. The cache falls back to database reads when Redis is down; the
payment lock does not, so QR scans fail until Redis is back.
"""

import redis.asyncio as redis
from ridepool.app.core.config import settings

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    try:
        return bool(await redis_client.ping())
    except redis.RedisError:
        return False


async def close_redis() -> None:
    await redis_client.aclose()
