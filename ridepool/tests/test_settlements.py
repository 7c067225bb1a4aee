"""
Settlement Tests.

Daily roll-up of paid bookings into driver settlements and the admin
approval flow that pays them out through the gateway.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from ridepool.app.core.config import settings
from ridepool.app.core.exceptions import InsufficientPermissionsError, InvalidStateError
from ridepool.app.domain.billing.settlement_service import SettlementService
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.domain.payments.qr_protocol import derive_token, redeem_token
from ridepool.app.models.billing_enums import (
    SettlementAction, SettlementBatchStatus, SettlementStatus, TransactionType
)
from ridepool.app.models.notification import Notification
from ridepool.app.models.settlement import Settlement, SettlementBatch

ADMIN_PIN = "1234"
APPROVE = SettlementAction.APPROVE_AND_PROCESS


def today():
    return datetime.now(timezone.utc).date()


@pytest.fixture
def paid_booking(db_session, fund_wallet, confirmed_booking):
    """Fund the rider, book, confirm and pay by QR. Returns the paid booking id."""
    async def _paid(driver, rider, seats=1, base_fare="10.00"):
        total = Decimal(base_fare) * seats
        await fund_wallet(rider, total * Decimal("1.025"), reference=f"paid-{rider.id}-{driver.id}")
        _, booking = await confirmed_booking(driver, rider, seats=seats, base_fare=base_fare)
        await redeem_token(db_session, derive_token(booking.id), driver.id)
        return booking.id
    return _paid


async def settlement_for(db, driver_id):
    result = await db.execute(
        select(Settlement)
        .where(Settlement.driver_id == driver_id)
        .execution_options(populate_existing=True)
    )
    settlement = result.scalar_one()
    db.expunge(settlement)
    return settlement


@pytest.mark.asyncio
async def test_generate_rolls_up_paid_bookings_per_driver(
    db_session, admin, driver, other_driver, rider, other_rider, paid_booking
):
    first = await paid_booking(driver, rider, seats=2)
    second = await paid_booking(other_driver, other_rider, seats=1)

    batch, created = await SettlementService.generate(db_session, today())

    assert created
    assert batch.status == SettlementBatchStatus.PENDING
    assert batch.total_settlements == 2

    mine = await settlement_for(db_session, driver.id)
    # 18.50 earned, 7.5% settlement fee
    assert mine.gross_earnings == Decimal("18.50")
    assert mine.platform_fee == Decimal("1.39")
    assert mine.payout_amount == Decimal("17.11")
    assert mine.booking_ids == [first]
    assert mine.booking_count == 1
    assert mine.payout_number == driver.phone_number
    assert mine.status == SettlementStatus.PENDING

    theirs = await settlement_for(db_session, other_driver.id)
    assert theirs.gross_earnings == Decimal("9.25")
    assert theirs.platform_fee == Decimal("0.69")
    assert theirs.payout_amount == Decimal("8.56")
    assert theirs.booking_ids == [second]

    assert batch.total_amount == mine.payout_amount + theirs.payout_amount

    notifications = await db_session.execute(select(Notification).where(Notification.user_id == admin.id))
    assert len(notifications.scalars().all()) == 1


@pytest.mark.asyncio
async def test_generation_is_idempotent_per_date(db_session, driver, rider, paid_booking):
    await paid_booking(driver, rider)

    batch, created = await SettlementService.generate(db_session, today())
    again, created_again = await SettlementService.generate(db_session, today())

    assert created and not created_again
    assert again.id == batch.id
    count = await db_session.execute(select(func.count(Settlement.id)))
    assert count.scalar() == 1
    batches = await db_session.execute(select(func.count(SettlementBatch.id)))
    assert batches.scalar() == 1


@pytest.mark.asyncio
async def test_empty_day_gives_completed_batch(db_session, driver, rider, paid_booking):
    await paid_booking(driver, rider)

    batch, created = await SettlementService.generate(db_session, today() - timedelta(days=1))

    assert created
    assert batch.total_settlements == 0
    assert batch.total_amount == Decimal("0.00")
    assert batch.status == SettlementBatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_approve_pays_out_and_debits_driver(db_session, admin, driver, rider, paid_booking, payout_gateway):
    await paid_booking(driver, rider, seats=2)
    batch, _ = await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    result = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    assert result.success
    assert result.status == SettlementStatus.COMPLETED
    assert result.payment_reference == "GW-1"

    assert payout_gateway.calls == [{
        "reference": f"settlement:{settlement.id}:attempt:1",
        "amount": Decimal("17.11"),
        "payout_number": driver.phone_number,
        "driver_id": driver.id,
    }]

    settlement = await settlement_for(db_session, driver.id)
    assert settlement.status == SettlementStatus.COMPLETED
    assert settlement.approved_by_admin_id == admin.id
    assert settlement.payment_confirmed_at is not None
    assert settlement.attempt_count == 1

    platform_id = await WalletLedger.get_platform_user_id(db_session)
    entries = await WalletLedger.find_posting(db_session, f"settlement:{settlement.id}:attempt:1")
    assert sorted((e.user_id, e.type, e.amount) for e in entries) == sorted([
        (driver.id, TransactionType.PAYOUT, Decimal("-17.11")),
        (driver.id, TransactionType.SETTLEMENT_FEE, Decimal("-1.39")),
        (platform_id, TransactionType.SETTLEMENT_FEE, Decimal("1.39")),
    ])
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("0.00")
    # 2.00 from the ride plus 1.39 settlement fee
    assert await WalletLedger.get_balance(db_session, platform_id) == Decimal("3.39")

    batch = await SettlementService.get_batch(db_session, today())
    assert batch.status == SettlementBatchStatus.COMPLETED
    assert batch.completed_at is not None


@pytest.mark.asyncio
async def test_gateway_failure_rolls_back_and_can_be_retried(
    db_session, admin, driver, rider, paid_booking, payout_gateway
):
    await paid_booking(driver, rider, seats=2)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    payout_gateway.fail = True
    result = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    assert not result.success
    assert result.status == SettlementStatus.FAILED
    failed = await settlement_for(db_session, driver.id)
    assert failed.status == SettlementStatus.FAILED
    assert "503" in failed.payment_error
    assert failed.attempt_count == 1
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("18.50")
    assert await WalletLedger.find_posting(db_session, f"settlement:{settlement.id}:attempt:1") == []
    batch = await SettlementService.get_batch(db_session, today())
    assert batch.status == SettlementBatchStatus.PENDING

    payout_gateway.fail = False
    retry = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    assert retry.success
    assert [c["reference"] for c in payout_gateway.calls] == [
        f"settlement:{settlement.id}:attempt:1",
        f"settlement:{settlement.id}:attempt:2",
    ]
    paid = await settlement_for(db_session, driver.id)
    assert paid.status == SettlementStatus.COMPLETED
    assert paid.payment_error is None
    assert paid.attempt_count == 2
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("0.00")


@pytest.mark.asyncio
async def test_driver_without_funds_fails_without_calling_gateway(
    db_session, admin, driver, rider, other_rider, paid_booking, payout_gateway
):
    await paid_booking(driver, rider, seats=2)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    # Earnings already moved elsewhere
    await WalletLedger.transfer(
        db_session, driver.id, other_rider.id, Decimal("5.00"), TransactionType.RIDE_PAYMENT, "drained"
    )
    await db_session.commit()

    result = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    assert not result.success
    assert payout_gateway.calls == []
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("13.50")


@pytest.mark.asyncio
async def test_wrong_pin_is_refused(db_session, admin, driver, rider, paid_booking, payout_gateway):
    await paid_booking(driver, rider)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    with pytest.raises(InsufficientPermissionsError):
        await SettlementService.process_settlement(
            db_session, settlement.id, admin.id, "0000", APPROVE, payout_gateway
        )
    with pytest.raises(InsufficientPermissionsError):
        await SettlementService.process_settlement(
            db_session, settlement.id, driver.id, ADMIN_PIN, APPROVE, payout_gateway
        )

    assert (await settlement_for(db_session, driver.id)).status == SettlementStatus.PENDING
    assert payout_gateway.calls == []


@pytest.mark.asyncio
async def test_cancel_settlement_closes_batch(db_session, admin, driver, rider, paid_booking, payout_gateway):
    await paid_booking(driver, rider)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    result = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, SettlementAction.CANCEL, payout_gateway
    )

    assert result.success
    assert result.status == SettlementStatus.CANCELLED
    assert (await SettlementService.get_batch(db_session, today())).status == SettlementBatchStatus.COMPLETED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("9.25")

    with pytest.raises(InvalidStateError):
        await SettlementService.process_settlement(
            db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
        )


@pytest.mark.asyncio
async def test_payout_and_fee_may_use_the_whole_balance(db_session, admin, driver, rider, paid_booking, payout_gateway):
    await paid_booking(driver, rider)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)
    # 9.25 earned: 8.56 payout + 0.69 fee leaves exactly nothing
    assert settlement.payout_amount + settlement.platform_fee == Decimal("9.25")

    result = await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    assert result.success
    assert result.status == SettlementStatus.COMPLETED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("0.00")
    assert await WalletLedger.replay_balance(db_session, driver.id) == Decimal("0.00")


@pytest.mark.asyncio
async def test_completed_settlement_is_not_paid_twice(db_session, admin, driver, rider, paid_booking, payout_gateway):
    await paid_booking(driver, rider)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)
    await SettlementService.process_settlement(
        db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
    )

    with pytest.raises(InvalidStateError):
        await SettlementService.process_settlement(
            db_session, settlement.id, admin.id, ADMIN_PIN, APPROVE, payout_gateway
        )
    assert len(payout_gateway.calls) == 1


@pytest.mark.asyncio
async def test_cron_trigger_requires_token_when_configured(client, db_session, driver, rider, paid_booking, monkeypatch):
    await paid_booking(driver, rider)
    monkeypatch.setattr(settings, "cron_secret_token", "cron-secret")
    body = {"settlement_date": today().isoformat()}

    response = await client.post("/v1/settlements/generate", json=body)
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Unauthorized"}

    response = await client.post("/v1/settlements/generate", json=body, headers={"X-Cron-Token": "cron-secret"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["settlements_created"] == 1
    assert data["already_generated"] is False

    response = await client.post("/v1/settlements/generate", json=body, headers={"X-Cron-Token": "cron-secret"})
    data = response.json()
    assert data["already_generated"] is True
    assert data["settlements_created"] == 0


@pytest.mark.asyncio
async def test_cron_trigger_defaults_to_yesterday(client, db_session):
    response = await client.post("/v1/settlements/generate")

    assert response.status_code == 200
    assert response.json()["settlements_created"] == 0
    assert await SettlementService.get_batch(db_session, today() - timedelta(days=1)) is not None
    assert await SettlementService.get_batch(db_session, today()) is None


@pytest.mark.asyncio
async def test_admin_settlement_endpoints(
    client, db_session, admin, driver, rider, paid_booking, headers_for, payout_gateway
):
    await paid_booking(driver, rider, seats=2)
    await SettlementService.generate(db_session, today())
    settlement = await settlement_for(db_session, driver.id)

    response = await client.get("/v1/admin/settlements", params={"status": "PENDING"}, headers=headers_for(admin))
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["settlements"]] == [settlement.id]

    # Drivers cannot approve their own payouts
    response = await client.post(
        "/v1/admin/settlements/process",
        json={"settlement_id": settlement.id, "admin_pin": ADMIN_PIN, "action": "approve_and_process"},
        headers=headers_for(driver)
    )
    assert response.status_code == 403

    response = await client.post(
        "/v1/admin/settlements/process",
        json={"settlement_id": settlement.id, "admin_pin": "9999", "action": "approve_and_process"},
        headers=headers_for(admin)
    )
    assert response.status_code == 403

    response = await client.post(
        "/v1/admin/settlements/process",
        json={"settlement_id": settlement.id, "admin_pin": ADMIN_PIN, "action": "approve_and_process"},
        headers=headers_for(admin)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"

    response = await client.get("/v1/driver/settlements", headers=headers_for(driver))
    mine = response.json()["settlements"]
    assert len(mine) == 1
    assert mine[0]["status"] == "COMPLETED"
    assert Decimal(mine[0]["payout_amount"]) == Decimal("17.11")

    response = await client.get(
        f"/v1/admin/settlements/{settlement.id}/audit-history", headers=headers_for(admin)
    )
    assert response.status_code == 200
    actions = [log["action"] for log in response.json()["logs"]]
    assert actions == ["SETTLEMENT_COMPLETED", "SETTLEMENT_APPROVED"]

    response = await client.get("/v1/admin/settlements/9999/audit-history", headers=headers_for(admin))
    assert response.status_code == 404
