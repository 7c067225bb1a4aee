"""
Trip Service (Domain Logic).

Driver-side trip lifecycle: PENDING -> ACTIVE -> IN_PROGRESS -> COMPLETED.
Cancellation cascades to bookings and lives in BookingService.cancel_trip.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.exceptions import (
    InsufficientPermissionsError, InvalidStateError, ValidationFailedError
)
from ridepool.app.domain.booking.booking_service import BookingService, load_trip
from ridepool.app.domain.pricing.fare_calculator import money, ZERO
from ridepool.app.models.booking import Booking
from ridepool.app.models.trip import Trip
from ridepool.app.models.trip_enums import BookingStatus, PaymentStatus, TripStatus, BOOKABLE_TRIP_STATUSES
from ridepool.app.services.cache import (
    cache_current_trip, current_trip_generation, get_cached_current_trip, invalidate_current_trip
)

logger = logging.getLogger("ridepool.trips")


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def count_driver_in_progress_trips(db: AsyncSession, driver_id: int) -> int:
    result = await db.execute(
        select(func.count(Trip.id)).where(
            Trip.driver_id == driver_id,
            Trip.status == TripStatus.IN_PROGRESS
        )
    )
    return result.scalar() or 0


def serialize_trip(trip: Trip) -> dict:
    return {
        "id": trip.id,
        "driver_id": trip.driver_id,
        "origin": trip.origin,
        "destination": trip.destination,
        "waypoints": trip.waypoints,
        "departure_time": trip.departure_time.isoformat() if trip.departure_time else None,
        "seats_total": trip.seats_total,
        "seats_available": trip.seats_available,
        "base_fare": str(trip.base_fare),
        "pickup_fee": str(trip.pickup_fee) if trip.pickup_fee is not None else None,
        "dropoff_fee": str(trip.dropoff_fee) if trip.dropoff_fee is not None else None,
        "status": trip.status.value,
    }


class TripService:

    @staticmethod
    async def _move(
        db: AsyncSession,
        trip: Trip,
        expected: Tuple[TripStatus, ...],
        target: TripStatus,
        **values
    ) -> Trip:
        """Conditionally move a trip between statuses and commit."""
        if trip.status not in expected:
            raise InvalidStateError(
                f"Trip {trip.id} cannot move to {target.value}",
                current=trip.status.value,
                expected=[s.value for s in expected]
            )

        result = await db.execute(
            update(Trip)
            .where(Trip.id == trip.id, Trip.status.in_(expected))
            .values(status=target, updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            trip_id = trip.id
            await db.rollback()
            raise InvalidStateError(f"Trip {trip_id} changed concurrently")
        await db.commit()
        await invalidate_current_trip(trip.driver_id)
        logger.info("Trip %s %s -> %s", trip.id, trip.status.value, target.value)
        return await load_trip(db, trip.id)

    @staticmethod
    async def _owned_trip(db: AsyncSession, trip_id: int, driver_id: int) -> Trip:
        trip = await load_trip(db, trip_id)
        if trip.driver_id != driver_id:
            raise InsufficientPermissionsError("This trip does not belong to you")
        return trip

    @staticmethod
    async def create_trip(
        db: AsyncSession,
        driver_id: int,
        origin: dict,
        destination: dict,
        seats_total: int,
        base_fare,
        waypoints: Optional[list] = None,
        departure_time: Optional[datetime] = None,
        pickup_fee=None,
        dropoff_fee=None,
        publish: bool = True
    ) -> Trip:
        """
        Offer a new trip.

        Published trips start ACTIVE and are immediately bookable; drafts
        start PENDING until published.
        """
        if seats_total < 1:
            raise ValidationFailedError("A trip needs at least one seat", field="seats_total")
        if money(base_fare) <= ZERO:
            raise ValidationFailedError("Base fare must be positive", field="base_fare")
        for name, fee in (("pickup_fee", pickup_fee), ("dropoff_fee", dropoff_fee)):
            if fee is not None and money(fee) < ZERO:
                raise ValidationFailedError("Stop fees cannot be negative", field=name)

        trip = Trip(
            driver_id=driver_id,
            origin=origin,
            destination=destination,
            waypoints=waypoints,
            departure_time=departure_time,
            seats_total=seats_total,
            seats_available=seats_total,
            version=0,
            base_fare=money(base_fare),
            pickup_fee=money(pickup_fee) if pickup_fee is not None else None,
            dropoff_fee=money(dropoff_fee) if dropoff_fee is not None else None,
            status=TripStatus.ACTIVE if publish else TripStatus.PENDING
        )
        db.add(trip)
        await db.commit()
        await db.refresh(trip)

        await invalidate_current_trip(driver_id)
        logger.info("Trip %s created by driver %s with %s seat(s)", trip.id, driver_id, seats_total)
        return trip

    @staticmethod
    async def publish_trip(db: AsyncSession, trip_id: int, driver_id: int) -> Trip:
        trip = await TripService._owned_trip(db, trip_id, driver_id)
        return await TripService._move(db, trip, (TripStatus.PENDING,), TripStatus.ACTIVE)

    @staticmethod
    async def start_trip(db: AsyncSession, trip_id: int, driver_id: int) -> Trip:
        """
        Depart on a trip.

        A driver can only have one IN_PROGRESS trip at a time.
        """
        trip = await TripService._owned_trip(db, trip_id, driver_id)

        if trip.status in BOOKABLE_TRIP_STATUSES and await count_driver_in_progress_trips(db, driver_id) > 0:
            raise InvalidStateError(
                "You already have an IN_PROGRESS trip. Complete it before starting another."
            )

        return await TripService._move(
            db, trip, BOOKABLE_TRIP_STATUSES, TripStatus.IN_PROGRESS, started_at=_now()
        )

    @staticmethod
    async def complete_trip(db: AsyncSession, trip_id: int, driver_id: int) -> Trip:
        """
        Finish a trip.

        Booking requests the driver never answered are cancelled. Confirmed
        bookings keep their seats and can still be paid by QR.
        """
        trip = await TripService._owned_trip(db, trip_id, driver_id)

        if trip.status == TripStatus.IN_PROGRESS:
            result = await db.execute(
                select(Booking).where(
                    Booking.trip_id == trip_id,
                    Booking.status == BookingStatus.PENDING
                )
            )
            for booking in result.scalars().all():
                await BookingService._cancel_in_transaction(
                    db, booking, driver_id, "Trip completed before confirmation"
                )

        return await TripService._move(
            db, trip, (TripStatus.IN_PROGRESS,), TripStatus.COMPLETED, completed_at=_now()
        )

    @staticmethod
    async def list_bookable_trips(db: AsyncSession, limit: int = 50, offset: int = 0) -> List[Trip]:
        """Trips riders can request seats on, soonest departure first."""
        result = await db.execute(
            select(Trip)
            .where(Trip.status.in_(BOOKABLE_TRIP_STATUSES), Trip.seats_available > 0)
            .order_by(Trip.departure_time.asc().nulls_last(), Trip.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_driver_trips(db: AsyncSession, driver_id: int) -> List[Trip]:
        result = await db.execute(
            select(Trip).where(Trip.driver_id == driver_id).order_by(Trip.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_current_trip(db: AsyncSession, driver_id: int) -> Optional[dict]:
        """
        The driver's in-progress trip, else their next open one, with its
        confirmed passengers.

        Served from the Redis cache when present; seat and payment decisions
        never read from here.
        """
        # Read before the DB so a concurrent invalidation retires our write
        generation = await current_trip_generation(driver_id)
        if generation is not None:
            cached = await get_cached_current_trip(driver_id, generation)
            if cached is not None:
                return cached

        result = await db.execute(
            select(Trip)
            .where(
                Trip.driver_id == driver_id,
                Trip.status.in_((TripStatus.IN_PROGRESS,) + BOOKABLE_TRIP_STATUSES)
            )
            .order_by(
                (Trip.status == TripStatus.IN_PROGRESS).desc(),
                Trip.departure_time.asc().nulls_last(),
                Trip.id
            )
            .limit(1)
        )
        trip = result.scalar_one_or_none()
        if trip is None:
            return None

        bookings = await db.execute(
            select(Booking)
            .where(
                Booking.trip_id == trip.id,
                Booking.status.in_((BookingStatus.CONFIRMED, BookingStatus.COMPLETED))
            )
            .order_by(Booking.id)
        )
        payload = serialize_trip(trip)
        payload["passengers"] = [
            {
                "booking_id": b.id,
                "rider_id": b.rider_id,
                "seats_booked": b.seats_booked,
                "total_amount": str(b.total_amount),
                "payment_status": b.payment_status.value,
            }
            for b in bookings.scalars().all()
        ]
        payload["unpaid_passengers"] = sum(
            1 for p in payload["passengers"] if p["payment_status"] == PaymentStatus.PENDING.value
        )

        if generation is not None:
            await cache_current_trip(driver_id, generation, payload)
        return payload
