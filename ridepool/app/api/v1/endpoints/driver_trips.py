"""
Driver Trip API Endpoints.

Drivers offer trips, run them, and manage the bookings riders place on them.
"""

from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ridepool.app.db.session import get_db
from ridepool.app.models.enums import UserRole
from ridepool.app.schemas.trip import TripCreate, TripCancel, TripResponse, TripListResponse, TripCancelResponse
from ridepool.app.schemas.booking import BookingAction, BookingResponse, BookingListResponse
from ridepool.app.core.guards import require_role
from ridepool.app.domain.booking.booking_service import BookingService
from ridepool.app.domain.booking.trip_service import TripService
from ridepool.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/driver", tags=["Driver - Trips"])

require_driver = require_role([UserRole.DRIVER])


@router.post("/trips", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    trip_data: TripCreate,
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Offer a new trip (Driver only).

    The trip starts ACTIVE with seats_available = seats_total unless
    `publish` is false, in which case it stays PENDING.
    """
    trip = await TripService.create_trip(
        db,
        driver_id=current_user["user_id"],
        origin=trip_data.origin.model_dump(),
        destination=trip_data.destination.model_dump(),
        waypoints=[w.model_dump() for w in trip_data.waypoints],
        departure_time=trip_data.departure_time,
        seats_total=trip_data.seats_total,
        base_fare=trip_data.base_fare,
        pickup_fee=trip_data.pickup_fee,
        dropoff_fee=trip_data.dropoff_fee,
        publish=trip_data.publish
    )

    await log_event(
        db=db,
        action=AuditAction.TRIP_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="trip",
        entity_id=trip.id,
        metadata={"seats_total": trip.seats_total, "base_fare": str(trip.base_fare)}
    )
    return trip


@router.get("/trips", response_model=TripListResponse)
async def list_my_trips(
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    trips = await TripService.list_driver_trips(db, current_user["user_id"])
    return TripListResponse(
        trips=[TripResponse.model_validate(t) for t in trips],
        total=len(trips),
        page=1,
        page_size=len(trips)
    )


@router.get("/current-trip")
async def get_current_trip(
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
) -> Optional[dict]:
    """In-progress (else next open) trip with its passengers; null if none."""
    return await TripService.get_current_trip(db, current_user["user_id"])


@router.post("/trips/{trip_id}/publish", response_model=TripResponse)
async def publish_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    return await TripService.publish_trip(db, trip_id, current_user["user_id"])


@router.post("/trips/{trip_id}/start", response_model=TripResponse)
async def start_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Start a trip (Driver only).

    Validates:
    - Trip is PENDING or ACTIVE
    - Driver owns the trip
    - No other IN_PROGRESS trip for driver
    """
    trip = await TripService.start_trip(db, trip_id, current_user["user_id"])
    await log_event(
        db=db,
        action=AuditAction.TRIP_STARTED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="trip",
        entity_id=trip.id
    )
    return trip


@router.post("/trips/{trip_id}/complete", response_model=TripResponse)
async def complete_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    trip = await TripService.complete_trip(db, trip_id, current_user["user_id"])
    await log_event(
        db=db,
        action=AuditAction.TRIP_COMPLETED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="trip",
        entity_id=trip.id
    )
    return trip


@router.post("/trips/{trip_id}/cancel", response_model=TripCancelResponse)
async def cancel_trip(
    trip_id: int = Path(..., description="Trip ID"),
    body: TripCancel = Body(default=TripCancel()),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a trip; every open booking on it is cancelled and its seats released."""
    trip, cancelled = await BookingService.cancel_trip(db, trip_id, current_user["user_id"], body.reason)
    await log_event(
        db=db,
        action=AuditAction.TRIP_CANCELLED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="trip",
        entity_id=trip.id,
        metadata={"reason": trip.cancellation_reason, "bookings_cancelled": cancelled}
    )
    return TripCancelResponse(trip=TripResponse.model_validate(trip), bookings_cancelled=cancelled)


@router.get("/trips/{trip_id}/bookings", response_model=BookingListResponse)
async def list_trip_bookings(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    bookings = await BookingService.list_trip_bookings(db, trip_id, current_user["user_id"])
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=len(bookings)
    )


@router.post("/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a booking request (Driver only).

    Reserves the seats; 409 if the trip no longer has them.
    """
    booking = await BookingService.confirm_booking(db, booking_id, current_user["user_id"])
    await log_event(
        db=db,
        action=AuditAction.BOOKING_CONFIRMED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="booking",
        entity_id=booking.id,
        metadata={"trip_id": booking.trip_id, "seats": booking.seats_booked}
    )
    return booking


@router.post("/bookings/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: int = Path(..., description="Booking ID"),
    body: BookingAction = Body(default=BookingAction()),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    booking = await BookingService.reject_booking(db, booking_id, current_user["user_id"], body.reason)
    await log_event(
        db=db,
        action=AuditAction.BOOKING_REJECTED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="booking",
        entity_id=booking.id,
        metadata={"reason": booking.cancellation_reason}
    )
    return booking


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int = Path(..., description="Booking ID"),
    body: BookingAction = Body(default=BookingAction()),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    booking = await BookingService.cancel_booking(db, booking_id, current_user["user_id"], body.reason)
    await log_event(
        db=db,
        action=AuditAction.BOOKING_CANCELLED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="booking",
        entity_id=booking.id,
        metadata={"reason": booking.cancellation_reason}
    )
    return booking
