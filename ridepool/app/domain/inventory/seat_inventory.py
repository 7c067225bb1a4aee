"""
Seat inventory service.

Owns Trip.seats_available. Every change is a compare-and-swap against the
trip's version column: read, compute, write-if-unchanged, retry on conflict.
Nothing here commits; the caller's transaction is the unit of work.
"""

import logging
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import (
    ConflictError, ResourceNotFoundError, SeatsUnavailableError, ValidationFailedError
)
from ridepool.app.models.trip import Trip

logger = logging.getLogger("ridepool.inventory")


async def _compare_and_swap(
    db: AsyncSession,
    trip_id: int,
    compute: Callable[[int, int], int],
    max_retries: int
) -> int:
    """
    Apply compute(seats_available, seats_total) -> new seats_available with
    optimistic concurrency.
    
    Returns:
        The new seats_available value
    
    Raises:
        ResourceNotFoundError: If trip does not exist
        ConflictError: If every attempt lost a race to a concurrent writer
        Whatever compute raises (e.g. SeatsUnavailableError), without writing
    """
    for attempt in range(1, max_retries + 1):
        result = await db.execute(
            select(Trip.seats_available, Trip.seats_total, Trip.version).where(Trip.id == trip_id)
        )
        row = result.one_or_none()
        if row is None:
            raise ResourceNotFoundError("Trip", trip_id)
        
        new_available = compute(row.seats_available, row.seats_total)
        
        swapped = await db.execute(
            update(Trip)
            .where(Trip.id == trip_id, Trip.version == row.version)
            .values(seats_available=new_available, version=row.version + 1)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount == 1:
            return new_available
        
        logger.info(
            "Seat inventory CAS conflict on trip %s (attempt %s/%s)",
            trip_id, attempt, max_retries
        )
    
    raise ConflictError("Trip", trip_id, max_retries)


async def reserve_seats(
    db: AsyncSession,
    trip_id: int,
    seats: int,
    max_retries: int = None
) -> int:
    """
    Take seats out of a trip's inventory.
    
    Args:
        db: Database session
        trip_id: Trip to reserve on
        seats: Number of seats (>= 1)
        max_retries: CAS attempts before giving up (defaults to settings)
    
    Returns:
        Remaining seats_available
    
    Raises:
        SeatsUnavailableError: If fewer than `seats` seats are available
        ConflictError: If concurrent writers kept winning
    """
    if seats < 1:
        raise ValidationFailedError("Seat count must be at least 1", field="seats")
    
    def take(available: int, total: int) -> int:
        if available < seats:
            raise SeatsUnavailableError(trip_id, seats, available)
        return available - seats
    
    remaining = await _compare_and_swap(
        db, trip_id, take, max_retries or settings.inventory_max_retries
    )
    logger.info("Reserved %s seat(s) on trip %s, %s left", seats, trip_id, remaining)
    return remaining


async def release_seats(
    db: AsyncSession,
    trip_id: int,
    seats: int,
    max_retries: int = None
) -> int:
    """
    Return seats to a trip's inventory.
    
    The result is clamped to seats_total, so a duplicated release can never
    push the count above capacity.
    
    Returns:
        New seats_available
    """
    if seats < 1:
        raise ValidationFailedError("Seat count must be at least 1", field="seats")
    
    def give_back(available: int, total: int) -> int:
        restored = available + seats
        if restored > total:
            logger.warning(
                "Seat release on trip %s would exceed capacity (%s > %s), clamping",
                trip_id, restored, total
            )
            return total
        return restored
    
    available = await _compare_and_swap(
        db, trip_id, give_back, max_retries or settings.inventory_max_retries
    )
    logger.info("Released %s seat(s) on trip %s, %s available", seats, trip_id, available)
    return available
