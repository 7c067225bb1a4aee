"""
QR Payment API Endpoints.

The driver scans the rider's QR code to pay for the ride.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.db.session import get_db
from ridepool.app.models.enums import UserRole
from ridepool.app.schemas.payment import QRScanRequest, QRScanResponse
from ridepool.app.core.guards import require_role
from ridepool.app.domain.payments.qr_protocol import redeem_token
from ridepool.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/driver/payments", tags=["Driver - Payments"])


@router.post("/scan", response_model=QRScanResponse)
async def scan_qr(
    scan: QRScanRequest,
    current_user: dict = Depends(require_role([UserRole.DRIVER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Redeem a rider's QR code (Driver only).

    Charges the rider total + 2.5%, credits the driver total - 7.5% and
    the platform the difference. Scanning a paid booking again is a no-op
    reported as already_paid.
    """
    result = await redeem_token(db, scan.token, current_user["user_id"], booking_id_hint=scan.booking_id)

    if not result.already_paid:
        await log_event(
            db=db,
            action=AuditAction.QR_PAYMENT_REDEEMED,
            actor_id=current_user["user_id"],
            actor_username=current_user["sub"],
            entity_type="booking",
            entity_id=result.booking_id,
            metadata={
                "reference": result.reference,
                "amount_charged": str(result.amount_charged),
                "driver_receives": str(result.driver_receives)
            }
        )

    return QRScanResponse(
        success=True,
        already_paid=result.already_paid,
        booking_id=result.booking_id,
        trip_id=result.trip_id,
        amount_charged=result.amount_charged,
        rider_fee=result.rider_fee,
        driver_fee=result.driver_fee,
        driver_receives=result.driver_receives,
        remaining_passengers=result.remaining_passengers,
        reference=result.reference,
        message="Booking already paid" if result.already_paid else "Payment successful"
    )
