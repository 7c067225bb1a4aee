"""
QR payment schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal


class QRCodeResponse(BaseModel):
    """Payload the rider's app encodes into the QR code."""
    token: str
    booking_id: int
    amount: Decimal = Field(..., description="Amount that will be charged (display only)")
    seats: int


class QRScanRequest(BaseModel):
    """
    Scanned QR payload.

    Only the token is authoritative; amount and seats are advisory.
    """
    token: str = Field(..., min_length=1, max_length=100)
    booking_id: Optional[int] = None
    amount: Optional[Decimal] = None
    seats: Optional[int] = None


class QRScanResponse(BaseModel):
    success: bool = True
    already_paid: bool
    booking_id: int
    trip_id: int
    amount_charged: Decimal
    rider_fee: Decimal
    driver_fee: Decimal
    driver_receives: Decimal
    remaining_passengers: int
    reference: str
    message: str
