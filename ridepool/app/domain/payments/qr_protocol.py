"""
QR Proof-of-Booking Protocol (Domain Logic).

The rider's app renders a QR code for a CONFIRMED booking; the driver scans
it and the scan moves the money. The token is derived from the booking id
with a keyed HMAC and never stored, so it can be re-rendered at any time and
cannot be forged for another booking.

Token format: QR-<booking id>-<12 upper-case hex chars of HMAC-SHA256>
"""

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import (
    AppException, BookingNotPayableError, InsufficientPermissionsError, TokenInvalidError
)
from ridepool.app.domain.booking.booking_service import load_booking, load_trip
from ridepool.app.domain.ledger.wallet_ledger import LedgerLeg, WalletLedger
from ridepool.app.domain.pricing.fare_calculator import FareCalculator
from ridepool.app.models.billing_enums import TransactionType
from ridepool.app.models.booking import Booking
from ridepool.app.models.trip_enums import BookingStatus, PaymentStatus
from ridepool.app.services.booking_lock import booking_lock
from ridepool.app.services.cache import invalidate_current_trip

logger = logging.getLogger("ridepool.payments")

TOKEN_PREFIX = "QR"
SIGNATURE_LENGTH = 12
TOKEN_PATTERN = re.compile(r"^QR-(\d+)-([0-9A-F]{%d})$" % SIGNATURE_LENGTH)


@dataclass
class RedemptionResult:
    booking_id: int
    trip_id: int
    already_paid: bool
    amount_charged: Decimal
    rider_fee: Decimal
    driver_fee: Decimal
    driver_receives: Decimal
    remaining_passengers: int
    reference: str


def _signature(booking_id: int) -> str:
    digest = hmac.new(
        settings.qr_token_secret.encode(), str(booking_id).encode(), hashlib.sha256
    ).hexdigest()
    return digest[:SIGNATURE_LENGTH].upper()


def derive_token(booking_id: int) -> str:
    return f"{TOKEN_PREFIX}-{booking_id}-{_signature(booking_id)}"


def parse_token(token: str) -> int:
    """
    Verify a scanned token and return the booking id it is bound to.

    Raises:
        TokenInvalidError: Malformed token or signature mismatch
    """
    match = TOKEN_PATTERN.match((token or "").strip())
    if not match:
        raise TokenInvalidError()

    booking_id = int(match.group(1))
    if not hmac.compare_digest(match.group(2), _signature(booking_id)):
        raise TokenInvalidError()
    return booking_id


def payment_reference(booking_id: int) -> str:
    return f"booking:{booking_id}"


async def issue_token(db: AsyncSession, booking_id: int, rider_id: int) -> dict:
    """
    Render the proof-of-booking payload for the rider's QR code.

    `amount` and `seats` are for display only; redemption always charges
    from the booking row.
    """
    booking = await load_booking(db, booking_id)

    if booking.rider_id != rider_id:
        raise InsufficientPermissionsError("This booking does not belong to you")

    if booking.status != BookingStatus.CONFIRMED or booking.payment_status != PaymentStatus.PENDING:
        raise BookingNotPayableError(booking.id, booking.status.value, booking.payment_status.value)

    split = FareCalculator.split(booking.total_amount)
    return {
        "token": derive_token(booking.id),
        "booking_id": booking.id,
        "amount": split.rider_charge,
        "seats": booking.seats_booked,
    }


async def _remaining_passengers(db: AsyncSession, trip_id: int) -> int:
    result = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.trip_id == trip_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.payment_status == PaymentStatus.PENDING
        )
    )
    return result.scalar() or 0


def _paid_result(booking: Booking, remaining: int, already_paid: bool) -> RedemptionResult:
    return RedemptionResult(
        booking_id=booking.id,
        trip_id=booking.trip_id,
        already_paid=already_paid,
        amount_charged=booking.total_amount + booking.rider_fee,
        rider_fee=booking.rider_fee,
        driver_fee=booking.driver_fee,
        driver_receives=booking.driver_amount,
        remaining_passengers=remaining,
        reference=payment_reference(booking.id)
    )


async def redeem_token(
    db: AsyncSession,
    token: str,
    driver_id: int,
    booking_id_hint: Optional[int] = None
) -> RedemptionResult:
    """
    Pay for a booking by scanning its QR token.

    Flow:
    1. Verify the token signature and resolve the booking
    2. Under the booking lock, in one transaction:
       claim the booking (CONFIRMED/PENDING -> COMPLETED/PAID), then post
       rider -charge, driver +receives, platform +fees under `booking:<id>`
    3. Invalidate the driver's current-trip cache

    A second scan of a paid booking returns already_paid=True and moves no
    money.

    Raises:
        TokenInvalidError: Bad token, unknown booking, or booking id mismatch
        InsufficientPermissionsError: Scanner is not the trip's driver
        BookingNotPayableError: Booking is not CONFIRMED
        InsufficientFundsError: Rider cannot cover total plus rider fee
    """
    booking_id = parse_token(token)
    if booking_id_hint is not None and booking_id_hint != booking_id:
        raise TokenInvalidError("QR code does not match the selected booking")

    result = await db.execute(select(Booking.id).where(Booking.id == booking_id))
    if result.scalar_one_or_none() is None:
        raise TokenInvalidError()

    async with booking_lock(booking_id):
        booking = await load_booking(db, booking_id)
        trip = await load_trip(db, booking.trip_id)

        if trip.driver_id != driver_id:
            raise InsufficientPermissionsError("Only the trip's driver can scan this booking")

        if booking.payment_status == PaymentStatus.PAID:
            logger.info("Booking %s already paid, ignoring repeated scan", booking_id)
            remaining = await _remaining_passengers(db, trip.id)
            return _paid_result(booking, remaining, already_paid=True)

        if booking.status != BookingStatus.CONFIRMED:
            raise BookingNotPayableError(booking.id, booking.status.value, booking.payment_status.value)

        split = FareCalculator.split(booking.total_amount)
        now = datetime.now(timezone.utc)
        reference = payment_reference(booking.id)

        try:
            # Claim first: the conditional update makes a concurrent scan a no-op
            claimed = await db.execute(
                update(Booking)
                .where(
                    Booking.id == booking.id,
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.payment_status == PaymentStatus.PENDING
                )
                .values(
                    status=BookingStatus.COMPLETED,
                    payment_status=PaymentStatus.PAID,
                    rider_fee=split.rider_fee,
                    driver_fee=split.driver_fee,
                    driver_amount=split.driver_receives,
                    paid_at=now,
                    completed_at=now,
                    updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await db.rollback()
                booking = await load_booking(db, booking_id)
                if booking.payment_status == PaymentStatus.PAID:
                    remaining = await _remaining_passengers(db, booking.trip_id)
                    return _paid_result(booking, remaining, already_paid=True)
                raise BookingNotPayableError(booking.id, booking.status.value, booking.payment_status.value)

            platform_id = await WalletLedger.get_platform_user_id(db)
            await WalletLedger.post_entries(db, reference, [
                LedgerLeg(booking.rider_id, -split.rider_charge, TransactionType.RIDE_PAYMENT,
                          f"Ride payment for booking {booking.id}"),
                LedgerLeg(driver_id, split.driver_receives, TransactionType.RIDE_EARNINGS,
                          f"Earnings for booking {booking.id}"),
                LedgerLeg(platform_id, split.platform_fee, TransactionType.PLATFORM_FEE,
                          f"Service fees for booking {booking.id}"),
            ])
            await db.commit()
        except AppException:
            await db.rollback()
            raise

    await invalidate_current_trip(driver_id)

    booking = await load_booking(db, booking_id)
    remaining = await _remaining_passengers(db, booking.trip_id)
    logger.info(
        "Booking %s paid: rider %s charged %s, driver %s receives %s, %s passenger(s) left unpaid",
        booking.id, booking.rider_id, split.rider_charge, driver_id, split.driver_receives, remaining
    )
    return _paid_result(booking, remaining, already_paid=False)
