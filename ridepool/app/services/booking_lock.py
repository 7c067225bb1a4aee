"""
Booking lock service.

Short-lived Redis lock keyed by booking id. Serializes the check-then-pay
section of QR redemption across API workers.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

import ridepool.app.core.redis_client as redis_client_module
from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import ConflictError

logger = logging.getLogger("ridepool.locks")

BOOKING_LOCK_PREFIX = "lock:booking:"
POLL_INTERVAL_SECONDS = 0.05

# Compare-and-delete in one step: only the holder's token may release the key
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@asynccontextmanager
async def booking_lock(booking_id: int):
    """
    Hold the lock for `booking_id` for the duration of the block.
    
    Waits up to settings.booking_lock_wait_seconds for a concurrent holder,
    then raises ConflictError. The lock expires on its own after
    settings.booking_lock_ttl_ms so a crashed worker cannot wedge a booking.
    """
    client = redis_client_module.redis_client
    key = f"{BOOKING_LOCK_PREFIX}{booking_id}"
    token = uuid.uuid4().hex
    
    attempts = max(1, int(settings.booking_lock_wait_seconds / POLL_INTERVAL_SECONDS))
    for attempt in range(attempts):
        if await client.set(key, token, nx=True, px=settings.booking_lock_ttl_ms):
            break
        await asyncio.sleep(POLL_INTERVAL_SECONDS)
    else:
        logger.warning("Gave up waiting for lock on booking %s", booking_id)
        raise ConflictError("Booking", booking_id, attempts)
    
    try:
        yield
    finally:
        # Our lock may have expired and been re-taken by another worker
        released = await client.eval(RELEASE_SCRIPT, 1, key, token)
        if not released:
            logger.warning("Lock on booking %s expired before release", booking_id)
