"""
Wallet API Endpoints.

Balance and transaction history for the current user, plus the callback the
deposit gateway uses to report settled top-ups.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.db.session import get_db
from ridepool.app.core.config import settings
from ridepool.app.core.dependencies import get_current_user
from ridepool.app.core.exceptions import ResourceNotFoundError
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.models.user import User
from ridepool.app.schemas.wallet import (
    WalletResponse, TransactionResponse, TransactionListResponse, TopUpConfirm, TopUpResponse
)
from ridepool.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    balance = await WalletLedger.get_balance(db, current_user["user_id"])
    return WalletResponse(user_id=current_user["user_id"], balance=balance)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger entries for the current user, newest first."""
    entries = await WalletLedger.list_transactions(db, current_user["user_id"], limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(e) for e in entries]
    )


def verify_gateway_token(x_gateway_token: Optional[str] = Header(default=None)):
    """Shared-secret check for gateway callbacks."""
    expected = settings.gateway_webhook_secret
    if not expected or not x_gateway_token or not hmac.compare_digest(x_gateway_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid gateway token"
        )


@router.post("/top-ups/confirm", response_model=TopUpResponse, dependencies=[Depends(verify_gateway_token)])
async def confirm_top_up(
    payload: TopUpConfirm,
    db: AsyncSession = Depends(get_db)
):
    """
    Record a top-up once the deposit gateway reports it.

    Idempotent on gateway_reference: a repeated callback returns
    applied=false and leaves the balance alone.
    """
    user = await db.get(User, payload.user_id)
    if not user:
        raise ResourceNotFoundError("User", payload.user_id)

    try:
        result = await WalletLedger.record_top_up(
            db,
            user_id=payload.user_id,
            amount=payload.amount,
            gateway_reference=payload.gateway_reference,
            succeeded=payload.status == "SUCCESS",
            failure_reason=payload.failure_reason
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    balance = await WalletLedger.get_balance(db, payload.user_id)

    if result.applied:
        await log_event(
            db=db,
            action=AuditAction.TOP_UP_RECORDED,
            actor_id=None,
            actor_username="gateway",
            entity_type="user",
            entity_id=payload.user_id,
            metadata={"reference": result.reference, "amount": str(payload.amount)}
        )

    return TopUpResponse(
        success=payload.status == "SUCCESS",
        applied=result.applied,
        reference=result.reference,
        balance=balance
    )
