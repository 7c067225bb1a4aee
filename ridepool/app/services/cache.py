"""
Caching Service.

Redis-backed read cache for the driver's current trip. Entries are
invalidated synchronously by every trip or booking mutation and are never
used for seat or balance decisions.
"""

import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

import ridepool.app.core.redis_client as redis_client_module
from ridepool.app.core.config import settings

logger = logging.getLogger("ridepool.cache")

CURRENT_TRIP_PREFIX = "driver:current_trip:"
CURRENT_TRIP_GENERATION_PREFIX = "driver:current_trip_gen:"


class CacheService:
    
    @staticmethod
    async def get(key: str) -> Optional[Any]:
        try:
            raw = await redis_client_module.redis_client.get(key)
        except RedisError as e:
            logger.warning("Cache read of %s failed: %s", key, e)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: int = 300):
        try:
            await redis_client_module.redis_client.set(key, json.dumps(data, default=str), ex=ttl_seconds)
        except RedisError as e:
            logger.warning("Cache write of %s failed: %s", key, e)
        
    @staticmethod
    async def delete(key: str):
        try:
            await redis_client_module.redis_client.delete(key)
        except RedisError as e:
            # Entry lives until its TTL runs out
            logger.error("Cache invalidation of %s failed: %s", key, e)

    @staticmethod
    async def incr(key: str) -> Optional[int]:
        try:
            return await redis_client_module.redis_client.incr(key)
        except RedisError as e:
            logger.error("Cache invalidation of %s failed: %s", key, e)
            return None


def current_trip_key(driver_id: int, generation: int) -> str:
    return f"{CURRENT_TRIP_PREFIX}{driver_id}:{generation}"


async def current_trip_generation(driver_id: int) -> Optional[int]:
    """
    Invalidation counter for the driver's current trip.

    Entries are keyed by generation, so a reader that raced an invalidation
    writes under a key nobody reads again. None when Redis cannot be read;
    callers then skip the cache.
    """
    key = f"{CURRENT_TRIP_GENERATION_PREFIX}{driver_id}"
    try:
        raw = await redis_client_module.redis_client.get(key)
    except RedisError as e:
        logger.warning("Cache read of %s failed: %s", key, e)
        return None
    return int(raw or 0)


async def get_cached_current_trip(driver_id: int, generation: int) -> Optional[dict]:
    return await CacheService.get(current_trip_key(driver_id, generation))


async def cache_current_trip(driver_id: int, generation: int, payload: dict):
    await CacheService.set(
        current_trip_key(driver_id, generation), payload, ttl_seconds=settings.current_trip_cache_ttl_seconds
    )


async def invalidate_current_trip(driver_id: int):
    """Drop the driver's cached current trip after a trip/booking mutation."""
    generation = await CacheService.incr(f"{CURRENT_TRIP_GENERATION_PREFIX}{driver_id}")
    if generation is None:
        return
    await CacheService.delete(current_trip_key(driver_id, generation - 1))
    logger.debug("Invalidated current-trip cache for driver %s", driver_id)
