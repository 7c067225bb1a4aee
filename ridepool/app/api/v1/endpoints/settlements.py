"""
Settlement API Endpoints.

Daily generation (cron trigger), admin approval/payout, and the driver's
own settlement history.
"""

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Body, Header, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.db.session import get_db
from ridepool.app.core.config import settings
from ridepool.app.core.guards import require_role
from ridepool.app.domain.billing.payout_gateway import PayoutGateway, get_payout_gateway
from ridepool.app.domain.billing.settlement_service import SettlementService
from ridepool.app.models.billing_enums import SettlementStatus
from ridepool.app.models.enums import UserRole
from ridepool.app.schemas.settlement import (
    SettlementGenerateRequest, SettlementGenerateResponse,
    SettlementProcessRequest, SettlementProcessResponse,
    SettlementResponse, SettlementListResponse, AuditLogResponse, AuditTrailResponse
)
from ridepool.app.services.audit import get_audit_trail

logger = logging.getLogger("ridepool.settlements")

router = APIRouter(prefix="/settlements", tags=["Settlements"])
admin_router = APIRouter(prefix="/admin/settlements", tags=["Admin - Settlements"])
driver_router = APIRouter(prefix="/driver/settlements", tags=["Driver - Settlements"])


@router.post("/generate", response_model=SettlementGenerateResponse)
async def generate_settlements(
    body: SettlementGenerateRequest = Body(default=SettlementGenerateRequest()),
    x_cron_token: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db)
):
    """
    Generate the settlement batch for a day (yesterday UTC by default).

    Called by the scheduler. When CRON_SECRET_TOKEN is configured the
    X-Cron-Token header must match it. Running twice for the same date
    returns the existing batch.
    """
    expected = settings.cron_secret_token
    if expected and not (x_cron_token and hmac.compare_digest(x_cron_token, expected)):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "error": "Unauthorized"}
        )

    settlement_date = body.settlement_date or (datetime.now(timezone.utc) - timedelta(days=1)).date()

    try:
        batch, created = await SettlementService.generate(db, settlement_date)
    except Exception as e:
        await db.rollback()
        logger.exception("Settlement generation for %s failed", settlement_date)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)}
        )

    return SettlementGenerateResponse(
        success=True,
        settlements_created=batch.total_settlements if created else 0,
        total_amount=batch.total_amount,
        batch_id=batch.id,
        already_generated=not created
    )


@admin_router.post("/process", response_model=SettlementProcessResponse)
async def process_settlement(
    request: SettlementProcessRequest,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    gateway: PayoutGateway = Depends(get_payout_gateway)
):
    """
    Approve-and-pay or cancel a settlement (Admin only, PIN required).

    A gateway failure is reported with success=false and status FAILED;
    the settlement can then be retried.
    """
    result = await SettlementService.process_settlement(
        db,
        settlement_id=request.settlement_id,
        admin_id=current_user["user_id"],
        admin_pin=request.admin_pin,
        action=request.action,
        gateway=gateway
    )
    return SettlementProcessResponse(
        success=result.success,
        status=result.status,
        payment_reference=result.payment_reference,
        message=result.message
    )


@admin_router.get("", response_model=SettlementListResponse)
async def list_settlements(
    status_filter: Optional[SettlementStatus] = Query(None, alias="status"),
    driver_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    settlements = await SettlementService.list_settlements(db, driver_id=driver_id, status=status_filter)
    return SettlementListResponse(
        settlements=[SettlementResponse.model_validate(s) for s in settlements],
        total=len(settlements)
    )


@driver_router.get("", response_model=SettlementListResponse)
async def list_my_settlements(
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    settlements = await SettlementService.list_settlements(db, driver_id=current_user["user_id"])
    return SettlementListResponse(
        settlements=[SettlementResponse.model_validate(s) for s in settlements],
        total=len(settlements)
    )


@admin_router.get("/{settlement_id}/audit-history", response_model=AuditTrailResponse)
async def get_settlement_audit_history(
    settlement_id: int,
    limit: int = Query(50, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Approvals, payout attempts and cancellations recorded for a settlement
    (admin-only), most recent first.
    """
    await SettlementService.get_settlement(db, settlement_id)
    logs = await get_audit_trail(db, entity_type="settlement", entity_id=settlement_id, limit=limit)
    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )
