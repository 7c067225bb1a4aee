"""
Settlement schemas.

Schemas for settlement generation, listing and admin approval.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from ridepool.app.models.billing_enums import SettlementAction, SettlementStatus


class SettlementGenerateRequest(BaseModel):
    """Defaults to yesterday (UTC) when no date is given."""
    settlement_date: Optional[date] = None


class SettlementGenerateResponse(BaseModel):
    success: bool
    settlements_created: Optional[int] = None
    total_amount: Optional[Decimal] = None
    batch_id: Optional[int] = None
    already_generated: Optional[bool] = None
    error: Optional[str] = None


class SettlementProcessRequest(BaseModel):
    settlement_id: int
    admin_pin: str = Field(..., min_length=4, max_length=12)
    action: SettlementAction


class SettlementProcessResponse(BaseModel):
    success: bool
    status: SettlementStatus
    payment_reference: Optional[str] = None
    message: str


class SettlementResponse(BaseModel):
    id: int
    settlement_date: date
    batch_id: int
    driver_id: int
    driver_name: Optional[str] = None
    payout_number: Optional[str] = None
    gross_earnings: Decimal
    platform_fee: Decimal
    payout_amount: Decimal
    booking_ids: List[int]
    booking_count: int
    status: SettlementStatus
    approved_by_admin_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_error: Optional[str] = None
    payment_confirmed_at: Optional[datetime] = None
    attempt_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class SettlementListResponse(BaseModel):
    settlements: List[SettlementResponse]
    total: int


class AuditLogResponse(BaseModel):
    """Audit entry for a settlement."""
    id: int
    actor_id: Optional[int]
    actor_username: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
