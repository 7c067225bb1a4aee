"""
Trip schemas.

Schemas for trip creation, discovery and the driver's current trip.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from ridepool.app.models.trip_enums import TripStatus


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None


class TripCreate(BaseModel):
    """Schema for POST /driver/trips."""
    origin: GeoPoint
    destination: GeoPoint
    waypoints: List[GeoPoint] = []
    departure_time: Optional[datetime] = None
    seats_total: int = Field(..., ge=1, le=50)
    base_fare: Decimal = Field(..., gt=0, decimal_places=2, description="Per-seat fare")
    pickup_fee: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2, description="Charged for a custom pickup")
    dropoff_fee: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2, description="Charged for a custom dropoff")
    publish: bool = True


class TripCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    driver_id: int
    origin: Dict[str, Any]
    destination: Dict[str, Any]
    waypoints: Optional[List[Dict[str, Any]]] = None
    departure_time: Optional[datetime] = None
    seats_total: int
    seats_available: int
    base_fare: Decimal
    pickup_fee: Optional[Decimal] = None
    dropoff_fee: Optional[Decimal] = None
    status: TripStatus
    cancellation_reason: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TripListResponse(BaseModel):
    """Schema for paginated trip list."""
    trips: List[TripResponse]
    total: int
    page: int
    page_size: int


class TripCancelResponse(BaseModel):
    trip: TripResponse
    bookings_cancelled: int
