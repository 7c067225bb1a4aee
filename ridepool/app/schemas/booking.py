"""
Booking schemas.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from ridepool.app.models.trip_enums import BookingStatus, PaymentStatus
from ridepool.app.schemas.trip import GeoPoint


class BookingCreate(BaseModel):
    """Schema for POST /rider/bookings."""
    trip_id: int
    seats: int = Field(..., ge=1, description="Seats requested")
    custom_pickup: bool = False
    custom_dropoff: bool = False
    pickup_location: Optional[GeoPoint] = None
    dropoff_location: Optional[GeoPoint] = None


class BookingAction(BaseModel):
    """Optional reason for reject/cancel."""
    reason: Optional[str] = Field(default=None, max_length=255)


class BookingResponse(BaseModel):
    id: int
    trip_id: int
    rider_id: int
    seats_booked: int
    custom_pickup: bool
    custom_dropoff: bool
    pickup_location: Optional[Dict[str, Any]] = None
    dropoff_location: Optional[Dict[str, Any]] = None
    base_amount: Decimal
    pickup_fee: Decimal
    dropoff_fee: Decimal
    total_amount: Decimal
    rider_fee: Optional[Decimal] = None
    driver_fee: Optional[Decimal] = None
    driver_amount: Optional[Decimal] = None
    status: BookingStatus
    payment_status: PaymentStatus
    cancellation_reason: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    total: int
