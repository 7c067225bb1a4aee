"""
Settlement Service (Domain Logic).

Daily settlement generation and admin-approved payouts.
Generation must be idempotent per date; payouts must never debit a driver
wallet without a matching successful gateway call.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.exceptions import (
    AppException, InsufficientPermissionsError, InvalidStateError, ResourceNotFoundError
)
from ridepool.app.core.security import verify_password
from ridepool.app.domain.billing.payout_gateway import PayoutGateway
from ridepool.app.domain.ledger.wallet_ledger import LedgerLeg, WalletLedger
from ridepool.app.domain.pricing.fare_calculator import FareCalculator, money, ZERO
from ridepool.app.models.billing_enums import (
    SettlementAction, SettlementBatchStatus, SettlementStatus, TransactionType
)
from ridepool.app.models.booking import Booking
from ridepool.app.models.enums import UserRole
from ridepool.app.models.notification import NotificationType
from ridepool.app.models.settlement import Settlement, SettlementBatch
from ridepool.app.models.trip import Trip
from ridepool.app.models.trip_enums import PaymentStatus
from ridepool.app.models.user import User
from ridepool.app.services.audit import log_event, AuditAction
from ridepool.app.services.notification_service import NotificationService

logger = logging.getLogger("ridepool.settlements")

RETRYABLE_STATUSES = (SettlementStatus.PENDING, SettlementStatus.FAILED)
FINAL_STATUSES = (SettlementStatus.COMPLETED, SettlementStatus.CANCELLED)


@dataclass
class ProcessResult:
    success: bool
    status: SettlementStatus
    payment_reference: Optional[str]
    message: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


def day_window(settlement_date: date) -> Tuple[datetime, datetime]:
    """[date 00:00, date+1 00:00) in UTC."""
    start = datetime.combine(settlement_date, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class SettlementService:

    @staticmethod
    async def get_batch(db: AsyncSession, settlement_date: date) -> Optional[SettlementBatch]:
        result = await db.execute(
            select(SettlementBatch)
            .where(SettlementBatch.batch_date == settlement_date)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def generate(db: AsyncSession, settlement_date: date) -> Tuple[SettlementBatch, bool]:
        """
        Roll up one day's paid bookings into per-driver settlements.

        Flow:
        1. Idempotency Check (existing batch for the date)
        2. Collect bookings paid within the UTC day
        3. Group by driver, gross = sum of driver_amount
        4. platform_fee = gross * settlement_fee_rate, payout = gross - fee
        5. Insert batch + settlements in one transaction
        6. Notify admins

        Returns:
            (batch, created) - created is False when the date was already settled
        """
        existing = await SettlementService.get_batch(db, settlement_date)
        if existing:
            logger.info("Settlement batch for %s already exists (id=%s)", settlement_date, existing.id)
            return existing, False

        start, end = day_window(settlement_date)
        result = await db.execute(
            select(Booking.id, Booking.driver_amount, Trip.driver_id)
            .join(Trip, Trip.id == Booking.trip_id)
            .where(
                Booking.payment_status == PaymentStatus.PAID,
                Booking.paid_at >= start,
                Booking.paid_at < end
            )
            .order_by(Booking.id)
        )

        per_driver = defaultdict(list)
        for row in result.all():
            per_driver[row.driver_id].append((row.id, money(row.driver_amount)))

        drivers = {}
        if per_driver:
            users = await db.execute(select(User).where(User.id.in_(list(per_driver))))
            drivers = {u.id: u for u in users.scalars().all()}

        batch = SettlementBatch(
            batch_date=settlement_date,
            status=SettlementBatchStatus.PENDING if per_driver else SettlementBatchStatus.COMPLETED,
            total_settlements=0,
            total_amount=ZERO,
            completed_at=None if per_driver else _now()
        )

        try:
            db.add(batch)
            await db.flush()

            total_amount = ZERO
            for driver_id in sorted(per_driver):
                rows = per_driver[driver_id]
                gross = sum((amount for _, amount in rows), ZERO)
                platform_fee = FareCalculator.settlement_fee(gross)
                payout = gross - platform_fee
                driver = drivers.get(driver_id)

                db.add(Settlement(
                    settlement_date=settlement_date,
                    batch_id=batch.id,
                    driver_id=driver_id,
                    driver_name=(driver.full_name or driver.username) if driver else None,
                    driver_phone=driver.phone_number if driver else None,
                    payout_number=driver.phone_number if driver else None,
                    gross_earnings=gross,
                    platform_fee=platform_fee,
                    payout_amount=payout,
                    booking_ids=[booking_id for booking_id, _ in rows],
                    booking_count=len(rows),
                    status=SettlementStatus.PENDING
                ))
                total_amount += payout

            batch.total_settlements = len(per_driver)
            batch.total_amount = total_amount
            await db.commit()
        except IntegrityError:
            # Lost the unique batch_date race to a concurrent run
            await db.rollback()
            winner = await SettlementService.get_batch(db, settlement_date)
            if winner is None:
                raise
            return winner, False

        await db.refresh(batch)
        logger.info(
            "Settlement batch %s for %s: %s settlement(s), total %s",
            batch.id, settlement_date, batch.total_settlements, batch.total_amount
        )

        if batch.total_settlements:
            await NotificationService.notify_admins(
                db,
                title="Settlements ready for approval",
                message=(
                    f"{batch.total_settlements} driver settlement(s) totalling "
                    f"{batch.total_amount} were generated for {settlement_date}."
                ),
                type=NotificationType.SETTLEMENT,
                metadata={"batch_id": batch.id, "batch_date": settlement_date.isoformat()}
            )
            await db.commit()

        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_BATCH_GENERATED,
            entity_type="settlement_batch",
            entity_id=batch.id,
            metadata={
                "batch_date": settlement_date.isoformat(),
                "total_settlements": batch.total_settlements,
                "total_amount": str(batch.total_amount)
            }
        )
        return batch, True

    @staticmethod
    async def get_settlement(db: AsyncSession, settlement_id: int) -> Settlement:
        result = await db.execute(
            select(Settlement)
            .where(Settlement.id == settlement_id)
            .execution_options(populate_existing=True)
        )
        settlement = result.scalar_one_or_none()
        if not settlement:
            raise ResourceNotFoundError("Settlement", settlement_id)
        return settlement

    @staticmethod
    async def _verify_admin_pin(db: AsyncSession, admin_id: int, admin_pin: str) -> User:
        admin = await db.get(User, admin_id)
        if not admin or admin.role != UserRole.ADMIN:
            raise InsufficientPermissionsError("Only administrators can process settlements")

        if not verify_password(admin_pin or "", admin.admin_pin_hash):
            await log_event(
                db=db,
                action=AuditAction.ADMIN_PIN_FAILED,
                actor_id=admin.id,
                actor_username=admin.username,
                entity_type="user",
                entity_id=admin.id
            )
            logger.warning("Admin %s supplied an invalid PIN", admin.username)
            raise InsufficientPermissionsError("Invalid admin PIN")
        return admin

    @staticmethod
    async def _set_status(
        db: AsyncSession,
        settlement_id: int,
        expected: Tuple[SettlementStatus, ...],
        **values
    ) -> bool:
        result = await db.execute(
            update(Settlement)
            .where(Settlement.id == settlement_id, Settlement.status.in_(expected))
            .values(updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def _close_batch_if_done(db: AsyncSession, batch_id: int):
        """Mark a batch COMPLETED once every settlement in it is paid or cancelled."""
        open_count = await db.execute(
            select(func.count(Settlement.id)).where(
                Settlement.batch_id == batch_id,
                Settlement.status.notin_(FINAL_STATUSES)
            )
        )
        if open_count.scalar():
            return
        await db.execute(
            update(SettlementBatch)
            .where(SettlementBatch.id == batch_id, SettlementBatch.status == SettlementBatchStatus.PENDING)
            .values(status=SettlementBatchStatus.COMPLETED, completed_at=_now())
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def _record_failure(
        db: AsyncSession,
        settlement_id: int,
        reference: str,
        error: str,
        admin_id: int,
        admin_username: str
    ):
        """Roll back the payout attempt and leave the settlement FAILED (retryable)."""
        await db.rollback()
        await SettlementService._set_status(
            db, settlement_id, (SettlementStatus.PROCESSING,),
            status=SettlementStatus.FAILED,
            payment_reference=reference,
            payment_error=error
        )
        await db.commit()
        logger.error("Settlement %s payout failed: %s", settlement_id, error)
        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_FAILED,
            actor_id=admin_id,
            actor_username=admin_username,
            entity_type="settlement",
            entity_id=settlement_id,
            metadata={"reference": reference, "error": error}
        )

    @staticmethod
    async def process_settlement(
        db: AsyncSession,
        settlement_id: int,
        admin_id: int,
        admin_pin: str,
        action: SettlementAction,
        gateway: PayoutGateway
    ) -> ProcessResult:
        """
        Approve-and-pay or cancel a settlement.

        approve_and_process:
        1. PENDING/FAILED -> APPROVED -> PROCESSING (committed)
        2. Debit the driver wallet (PAYOUT + SETTLEMENT_FEE legs) and call the
           gateway in one transaction; commit only if the gateway accepted
        3. Gateway failure: roll the debit back, record FAILED with the error.
           Any other error is recorded the same way and then re-raised

        cancel: PENDING/FAILED -> CANCELLED.

        Raises:
            InsufficientPermissionsError: Not an admin, or wrong PIN
            InvalidStateError: Settlement not in PENDING/FAILED
        """
        admin = await SettlementService._verify_admin_pin(db, admin_id, admin_pin)
        admin_username = admin.username
        settlement = await SettlementService.get_settlement(db, settlement_id)

        if settlement.status not in RETRYABLE_STATUSES:
            raise InvalidStateError(
                f"Settlement {settlement_id} cannot be processed",
                current=settlement.status.value,
                expected=[s.value for s in RETRYABLE_STATUSES]
            )

        if action == SettlementAction.CANCEL:
            return await SettlementService._cancel(db, settlement, admin)

        now = _now()
        attempt = settlement.attempt_count + 1
        moved = await SettlementService._set_status(
            db, settlement.id, RETRYABLE_STATUSES,
            status=SettlementStatus.APPROVED,
            approved_by_admin_id=admin.id,
            approved_at=now,
            attempt_count=attempt
        )
        if not moved:
            await db.rollback()
            raise InvalidStateError(f"Settlement {settlement_id} is already being processed")
        await SettlementService._set_status(
            db, settlement.id, (SettlementStatus.APPROVED,), status=SettlementStatus.PROCESSING
        )
        await db.commit()
        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_APPROVED,
            actor_id=admin_id,
            actor_username=admin_username,
            entity_type="settlement",
            entity_id=settlement_id,
            metadata={"attempt": attempt}
        )

        reference = f"settlement:{settlement.id}:attempt:{attempt}"
        try:
            await SettlementService._set_status(
                db, settlement.id, (SettlementStatus.PROCESSING,),
                payment_reference=reference,
                payment_error=None
            )

            legs = [
                LedgerLeg(settlement.driver_id, -money(settlement.payout_amount), TransactionType.PAYOUT,
                          f"Payout for settlement {settlement.id}")
            ]
            fee = money(settlement.platform_fee)
            if fee > ZERO:
                platform_id = await WalletLedger.get_platform_user_id(db)
                legs += [
                    LedgerLeg(settlement.driver_id, -fee, TransactionType.SETTLEMENT_FEE,
                              f"Settlement fee for settlement {settlement.id}"),
                    LedgerLeg(platform_id, fee, TransactionType.SETTLEMENT_FEE,
                              f"Settlement fee for settlement {settlement.id}"),
                ]
            await WalletLedger.post_entries(db, reference, legs)

            gateway_reference = await gateway.send_payout(
                reference=reference,
                amount=money(settlement.payout_amount),
                payout_number=settlement.payout_number,
                driver_id=settlement.driver_id
            )

            await SettlementService._set_status(
                db, settlement.id, (SettlementStatus.PROCESSING,),
                status=SettlementStatus.COMPLETED,
                payment_reference=gateway_reference,
                payment_confirmed_at=_now()
            )
            await db.commit()
        except AppException as e:
            await SettlementService._record_failure(
                db, settlement_id, reference, e.message, admin_id, admin_username
            )
            return ProcessResult(
                success=False,
                status=SettlementStatus.FAILED,
                payment_reference=reference,
                message=e.message
            )
        except Exception as e:
            # Unexpected errors still leave the settlement retryable
            await SettlementService._record_failure(
                db, settlement_id, reference, f"Unexpected payout error: {e}", admin_id, admin_username
            )
            raise

        await SettlementService._close_batch_if_done(db, settlement.batch_id)
        logger.info(
            "Settlement %s paid out %s to driver %s (%s)",
            settlement.id, settlement.payout_amount, settlement.driver_id, gateway_reference
        )
        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_COMPLETED,
            actor_id=admin.id,
            actor_username=admin.username,
            entity_type="settlement",
            entity_id=settlement.id,
            metadata={
                "reference": reference,
                "gateway_reference": gateway_reference,
                "payout_amount": str(settlement.payout_amount)
            }
        )
        return ProcessResult(
            success=True,
            status=SettlementStatus.COMPLETED,
            payment_reference=gateway_reference,
            message="Settlement paid out"
        )

    @staticmethod
    async def _cancel(db: AsyncSession, settlement: Settlement, admin: User) -> ProcessResult:
        moved = await SettlementService._set_status(
            db, settlement.id, RETRYABLE_STATUSES, status=SettlementStatus.CANCELLED
        )
        if not moved:
            settlement_id = settlement.id
            await db.rollback()
            raise InvalidStateError(f"Settlement {settlement_id} changed concurrently")
        await db.commit()
        await SettlementService._close_batch_if_done(db, settlement.batch_id)

        logger.info("Settlement %s cancelled by admin %s", settlement.id, admin.username)
        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_CANCELLED,
            actor_id=admin.id,
            actor_username=admin.username,
            entity_type="settlement",
            entity_id=settlement.id
        )
        return ProcessResult(
            success=True,
            status=SettlementStatus.CANCELLED,
            payment_reference=None,
            message="Settlement cancelled"
        )

    @staticmethod
    async def list_settlements(
        db: AsyncSession,
        driver_id: Optional[int] = None,
        status: Optional[SettlementStatus] = None,
        settlement_date: Optional[date] = None,
        limit: int = 100
    ) -> List[Settlement]:
        query = select(Settlement).order_by(Settlement.settlement_date.desc(), Settlement.id)
        if driver_id is not None:
            query = query.where(Settlement.driver_id == driver_id)
        if status is not None:
            query = query.where(Settlement.status == status)
        if settlement_date is not None:
            query = query.where(Settlement.settlement_date == settlement_date)
        result = await db.execute(query.limit(limit))
        return list(result.scalars().all())
