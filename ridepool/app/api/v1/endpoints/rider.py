"""
Rider API Endpoints.

Trip discovery and the rider's own bookings, including the QR code shown
to the driver at pickup.
"""

from fastapi import APIRouter, Depends, Path, Body, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.db.session import get_db
from ridepool.app.models.enums import UserRole
from ridepool.app.schemas.trip import TripResponse, TripListResponse
from ridepool.app.schemas.booking import BookingCreate, BookingAction, BookingResponse, BookingListResponse
from ridepool.app.schemas.payment import QRCodeResponse
from ridepool.app.core.dependencies import get_current_user
from ridepool.app.core.guards import require_role
from ridepool.app.domain.booking.booking_service import BookingService, load_booking, load_trip
from ridepool.app.domain.booking.trip_service import TripService
from ridepool.app.domain.payments.qr_protocol import issue_token
from ridepool.app.core.exceptions import InsufficientPermissionsError
from ridepool.app.services.audit import log_event, AuditAction

trips_router = APIRouter(prefix="/trips", tags=["Rider - Trip Discovery"])
router = APIRouter(prefix="/rider", tags=["Rider - Bookings"])

require_rider = require_role([UserRole.RIDER])


@trips_router.get("", response_model=TripListResponse)
async def list_bookable_trips(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Open trips with at least one free seat."""
    trips = await TripService.list_bookable_trips(db, limit=page_size, offset=(page - 1) * page_size)
    return TripListResponse(
        trips=[TripResponse.model_validate(t) for t in trips],
        total=len(trips),
        page=page,
        page_size=page_size
    )


@trips_router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await load_trip(db, trip_id)


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: dict = Depends(require_rider),
    db: AsyncSession = Depends(get_db)
):
    """
    Request seats on a trip (Rider only).

    Validates:
    - Trip is accepting bookings and has enough seats
    - Wallet balance covers total_amount plus the rider service fee

    No seats are held until the driver confirms.
    """
    booking = await BookingService.create_booking(
        db,
        rider_id=current_user["user_id"],
        trip_id=booking_data.trip_id,
        seats=booking_data.seats,
        custom_pickup=booking_data.custom_pickup,
        custom_dropoff=booking_data.custom_dropoff,
        pickup_location=booking_data.pickup_location.model_dump() if booking_data.pickup_location else None,
        dropoff_location=booking_data.dropoff_location.model_dump() if booking_data.dropoff_location else None
    )

    await log_event(
        db=db,
        action=AuditAction.BOOKING_CREATED,
        actor_id=current_user["user_id"],
        actor_username=current_user["sub"],
        entity_type="booking",
        entity_id=booking.id,
        metadata={
            "trip_id": booking.trip_id,
            "seats": booking.seats_booked,
            "total_amount": str(booking.total_amount)
        }
    )
    return booking


@router.get("/bookings", response_model=BookingListResponse)
async def list_my_bookings(
    current_user: dict = Depends(require_rider),
    db: AsyncSession = Depends(get_db)
):
    bookings = await BookingService.list_rider_bookings(db, current_user["user_id"])
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=len(bookings)
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_my_booking(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(require_rider),
    db: AsyncSession = Depends(get_db)
):
    booking = await load_booking(db, booking_id)
    if booking.rider_id != current_user["user_id"]:
        raise InsufficientPermissionsError("This booking does not belong to you")
    return booking


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_my_booking(
    booking_id: int = Path(..., description="Booking ID"),
    body: BookingAction = Body(default=BookingAction()),
    current_user: dict = Depends(require_rider),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a PENDING or CONFIRMED booking; confirmed seats go back to the trip."""
    booking = await BookingService.cancel_booking(
        db, booking_id, current_user["user_id"], body.reason or "Cancelled by rider"
    )
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


@router.get("/bookings/{booking_id}/qr", response_model=QRCodeResponse)
async def get_booking_qr(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(require_rider),
    db: AsyncSession = Depends(get_db)
):
    """Proof-of-booking payload for a CONFIRMED, unpaid booking."""
    return await issue_token(db, booking_id, current_user["user_id"])
