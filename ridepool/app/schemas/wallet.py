"""
Wallet and ledger schemas.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from ridepool.app.models.billing_enums import TransactionStatus, TransactionType


class WalletResponse(BaseModel):
    user_id: int
    balance: Decimal


class TransactionResponse(BaseModel):
    id: int
    type: TransactionType
    status: TransactionStatus
    reference: str
    description: Optional[str] = None
    amount: Decimal
    balance_after: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]


class TopUpConfirm(BaseModel):
    """Callback body sent by the deposit gateway once a top-up settles."""
    user_id: int
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    gateway_reference: str = Field(..., min_length=1, max_length=80)
    status: str = Field(..., pattern="^(SUCCESS|FAILED)$")
    failure_reason: Optional[str] = Field(default=None, max_length=255)


class TopUpResponse(BaseModel):
    success: bool
    applied: bool
    reference: str
    balance: Decimal
