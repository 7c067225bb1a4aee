"""
Booking Service (Domain Logic).

Booking state machine: PENDING -> CONFIRMED -> COMPLETED, with CANCELLED
reachable from PENDING or CONFIRMED. Coordinates the seat inventory and the
wallet ledger; each public operation is one database transaction.

Status changes are conditional updates on the prior status, so of two
racing transitions on the same booking only one can apply.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.exceptions import (
    AppException, InsufficientFundsError, InsufficientPermissionsError, InvalidStateError,
    ResourceNotFoundError, SeatsUnavailableError, ValidationFailedError
)
from ridepool.app.domain.inventory.seat_inventory import reserve_seats, release_seats
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.domain.pricing.fare_calculator import FareCalculator
from ridepool.app.models.booking import Booking
from ridepool.app.models.trip import Trip
from ridepool.app.models.trip_enums import (
    BookingStatus, PaymentStatus, TripStatus, BOOKABLE_TRIP_STATUSES, OPEN_BOOKING_STATUSES
)
from ridepool.app.services.cache import invalidate_current_trip

logger = logging.getLogger("ridepool.bookings")

# Drivers may still accept riders after departure
CONFIRMABLE_TRIP_STATUSES = BOOKABLE_TRIP_STATUSES + (TripStatus.IN_PROGRESS,)


async def load_trip(db: AsyncSession, trip_id: int) -> Trip:
    """Load a trip, refreshing any stale copy held by the session."""
    result = await db.execute(
        select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
    )
    trip = result.scalar_one_or_none()
    if not trip:
        raise ResourceNotFoundError("Trip", trip_id)
    return trip


async def load_booking(db: AsyncSession, booking_id: int) -> Booking:
    """Load a booking, refreshing any stale copy held by the session."""
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise ResourceNotFoundError("Booking", booking_id)
    return booking


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BookingService:

    @staticmethod
    async def _transition(
        db: AsyncSession,
        booking_id: int,
        expected: Tuple[BookingStatus, ...],
        **values
    ) -> bool:
        """Move an unpaid booking out of one of `expected`; False if it had already moved."""
        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status.in_(expected),
                Booking.payment_status == PaymentStatus.PENDING
            )
            .values(updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def create_booking(
        db: AsyncSession,
        rider_id: int,
        trip_id: int,
        seats: int,
        custom_pickup: bool = False,
        custom_dropoff: bool = False,
        pickup_location: Optional[dict] = None,
        dropoff_location: Optional[dict] = None
    ) -> Booking:
        """
        Request seats on a trip.

        Validates:
        - Trip is open for booking and not driven by the rider
        - seats <= trip.seats_available (no seats are held yet)
        - Rider balance covers total_amount plus the rider service fee

        The booking is inserted PENDING; inventory is only touched when the
        driver confirms.

        Raises:
            SeatsUnavailableError, InsufficientFundsError, InvalidStateError
        """
        if seats < 1:
            raise ValidationFailedError("Seat count must be at least 1", field="seats")

        trip = await load_trip(db, trip_id)

        if trip.status not in BOOKABLE_TRIP_STATUSES:
            raise InvalidStateError(
                f"Trip {trip_id} is not accepting bookings",
                current=trip.status.value,
                expected=[s.value for s in BOOKABLE_TRIP_STATUSES]
            )

        if trip.driver_id == rider_id:
            raise ValidationFailedError("Drivers cannot book seats on their own trip", field="trip_id")

        if seats > trip.seats_available:
            raise SeatsUnavailableError(trip_id, seats, trip.seats_available)

        open_result = await db.execute(
            select(Booking.id).where(
                Booking.trip_id == trip_id,
                Booking.rider_id == rider_id,
                Booking.status.in_(OPEN_BOOKING_STATUSES)
            )
        )
        if open_result.first():
            raise InvalidStateError(f"Rider already has an open booking on trip {trip_id}")

        quote = FareCalculator.quote(
            base_fare=trip.base_fare,
            seats=seats,
            trip_pickup_fee=trip.pickup_fee,
            trip_dropoff_fee=trip.dropoff_fee,
            custom_pickup=custom_pickup,
            custom_dropoff=custom_dropoff
        )

        # Reserve the rider fee in the balance check, charge nothing yet
        required = FareCalculator.required_rider_balance(quote.total_amount)
        balance = await WalletLedger.get_balance(db, rider_id)
        if balance < required:
            raise InsufficientFundsError(rider_id, balance, required)

        booking = Booking(
            trip_id=trip_id,
            rider_id=rider_id,
            seats_booked=seats,
            custom_pickup=custom_pickup,
            custom_dropoff=custom_dropoff,
            pickup_location=pickup_location,
            dropoff_location=dropoff_location,
            base_amount=quote.base_amount,
            pickup_fee=quote.pickup_fee,
            dropoff_fee=quote.dropoff_fee,
            total_amount=quote.total_amount,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING
        )
        db.add(booking)
        await db.commit()
        await db.refresh(booking)

        await invalidate_current_trip(trip.driver_id)
        logger.info(
            "Booking %s created: rider %s, trip %s, %s seat(s), total %s",
            booking.id, rider_id, trip_id, seats, booking.total_amount
        )
        return booking

    @staticmethod
    async def confirm_booking(db: AsyncSession, booking_id: int, driver_id: int) -> Booking:
        """
        Accept a PENDING booking (driver only).

        Seats are reserved and the booking becomes CONFIRMED in one
        transaction. If the trip no longer has enough seats the booking
        stays PENDING and SeatsUnavailableError is raised.
        """
        booking = await load_booking(db, booking_id)
        trip = await load_trip(db, booking.trip_id)

        if trip.driver_id != driver_id:
            raise InsufficientPermissionsError("Only the trip's driver can confirm bookings")

        if booking.status == BookingStatus.CONFIRMED:
            return booking

        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError(
                "Only PENDING bookings can be confirmed",
                current=booking.status.value,
                expected=BookingStatus.PENDING.value
            )

        if trip.status not in CONFIRMABLE_TRIP_STATUSES:
            raise InvalidStateError(
                f"Trip {trip.id} can no longer take passengers",
                current=trip.status.value
            )

        try:
            await reserve_seats(db, trip.id, booking.seats_booked)
            moved = await BookingService._transition(
                db, booking.id, (BookingStatus.PENDING,),
                status=BookingStatus.CONFIRMED,
                confirmed_at=_now()
            )
            if not moved:
                raise InvalidStateError(f"Booking {booking_id} changed while being confirmed")
            await db.commit()
        except AppException:
            await db.rollback()
            raise

        await invalidate_current_trip(driver_id)
        logger.info("Booking %s confirmed by driver %s", booking_id, driver_id)
        return await load_booking(db, booking_id)

    @staticmethod
    async def _cancel_in_transaction(
        db: AsyncSession,
        booking: Booking,
        actor_id: int,
        reason: Optional[str]
    ) -> bool:
        """
        Cancel an open booking, releasing its seats if it held any.

        Returns False if the booking was already cancelled. The status change
        is claimed first, so only the caller that wins it releases seats.
        """
        if booking.status == BookingStatus.CANCELLED:
            return False

        if booking.status not in OPEN_BOOKING_STATUSES or booking.payment_status == PaymentStatus.PAID:
            raise InvalidStateError(
                f"Booking {booking.id} can no longer be cancelled",
                current=booking.status.value,
                expected=[s.value for s in OPEN_BOOKING_STATUSES]
            )

        held_seats = booking.status == BookingStatus.CONFIRMED

        moved = await BookingService._transition(
            db, booking.id, (booking.status,),
            status=BookingStatus.CANCELLED,
            cancellation_reason=reason,
            cancelled_by=actor_id,
            cancelled_at=_now()
        )
        if not moved:
            current = await load_booking(db, booking.id)
            if current.status == BookingStatus.CANCELLED:
                return False
            raise InvalidStateError(
                f"Booking {booking.id} changed while being cancelled",
                current=current.status.value
            )

        if held_seats:
            await release_seats(db, booking.trip_id, booking.seats_booked)

        return True

    @staticmethod
    async def _cancel(
        db: AsyncSession,
        booking_id: int,
        actor_id: int,
        reason: Optional[str],
        driver_only: bool
    ) -> Booking:
        booking = await load_booking(db, booking_id)
        trip = await load_trip(db, booking.trip_id)

        is_driver = trip.driver_id == actor_id
        is_rider = booking.rider_id == actor_id
        if not is_driver and (driver_only or not is_rider):
            raise InsufficientPermissionsError("You cannot cancel this booking")

        try:
            changed = await BookingService._cancel_in_transaction(db, booking, actor_id, reason)
            await db.commit()
        except AppException:
            await db.rollback()
            raise

        if changed:
            await invalidate_current_trip(trip.driver_id)
            logger.info("Booking %s cancelled by user %s (%s)", booking_id, actor_id, reason)
        return await load_booking(db, booking_id)

    @staticmethod
    async def reject_booking(
        db: AsyncSession,
        booking_id: int,
        driver_id: int,
        reason: Optional[str] = None
    ) -> Booking:
        """Driver declines a booking; seats are released if it was CONFIRMED."""
        return await BookingService._cancel(
            db, booking_id, driver_id, reason or "Rejected by driver", driver_only=True
        )

    @staticmethod
    async def cancel_booking(
        db: AsyncSession,
        booking_id: int,
        actor_id: int,
        reason: Optional[str] = None
    ) -> Booking:
        """
        Rider or driver cancels a booking.

        Cancelling an already cancelled booking returns it unchanged and
        does not release seats a second time.
        """
        return await BookingService._cancel(
            db, booking_id, actor_id, reason, driver_only=False
        )

    @staticmethod
    async def cancel_trip(
        db: AsyncSession,
        trip_id: int,
        driver_id: int,
        reason: Optional[str] = None
    ) -> Tuple[Trip, int]:
        """
        Cancel a trip and cascade to its open bookings.

        Every PENDING/CONFIRMED booking is cancelled (confirmed ones release
        their seats) before the trip is marked CANCELLED, all in one
        transaction.

        Returns:
            (trip, number of bookings cancelled)
        """
        trip = await load_trip(db, trip_id)

        if trip.driver_id != driver_id:
            raise InsufficientPermissionsError("Only the trip's driver can cancel it")

        if trip.status == TripStatus.CANCELLED:
            return trip, 0

        if trip.status not in BOOKABLE_TRIP_STATUSES:
            raise InvalidStateError(
                f"Trip {trip_id} can no longer be cancelled",
                current=trip.status.value,
                expected=[s.value for s in BOOKABLE_TRIP_STATUSES]
            )

        reason = reason or "Trip cancelled by driver"
        cancelled = 0
        try:
            result = await db.execute(
                select(Booking).where(
                    Booking.trip_id == trip_id,
                    Booking.status.in_(OPEN_BOOKING_STATUSES)
                ).order_by(Booking.id)
            )
            for booking in result.scalars().all():
                if await BookingService._cancel_in_transaction(db, booking, driver_id, reason):
                    cancelled += 1

            moved = await db.execute(
                update(Trip)
                .where(Trip.id == trip_id, Trip.status == trip.status)
                .values(
                    status=TripStatus.CANCELLED,
                    cancellation_reason=reason,
                    cancelled_at=_now(),
                    updated_at=_now()
                )
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise InvalidStateError(f"Trip {trip_id} changed while being cancelled")
            await db.commit()
        except AppException:
            await db.rollback()
            raise

        await invalidate_current_trip(driver_id)
        logger.info("Trip %s cancelled by driver %s, %s booking(s) cancelled", trip_id, driver_id, cancelled)
        return await load_trip(db, trip_id), cancelled

    @staticmethod
    async def list_rider_bookings(db: AsyncSession, rider_id: int, limit: int = 50, offset: int = 0):
        result = await db.execute(
            select(Booking)
            .where(Booking.rider_id == rider_id)
            .order_by(Booking.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_trip_bookings(db: AsyncSession, trip_id: int, driver_id: int):
        trip = await load_trip(db, trip_id)
        if trip.driver_id != driver_id:
            raise InsufficientPermissionsError("Only the trip's driver can view its bookings")
        result = await db.execute(
            select(Booking).where(Booking.trip_id == trip_id).order_by(Booking.id)
        )
        return list(result.scalars().all())
