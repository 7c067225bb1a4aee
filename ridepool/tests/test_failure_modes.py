"""
Failure Injection Tests.

Validates resilience against payout gateway and Redis failures.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select
from redis.exceptions import ConnectionError as RedisConnectionError

from ridepool.app.core.exceptions import GatewayFailureError
from ridepool.app.core.reliability import CircuitBreaker, CircuitOpenError
from ridepool.app.domain.billing.payout_gateway import PayoutGateway
from ridepool.app.domain.billing.settlement_service import SettlementService
from ridepool.app.domain.booking.trip_service import TripService
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.domain.payments.qr_protocol import derive_token, redeem_token
from ridepool.app.models.billing_enums import SettlementAction, SettlementStatus
from ridepool.app.models.settlement import Settlement

GATEWAY_URL = "https://gateway.test/payouts"


def gateway_with(handler, breaker=None):
    return PayoutGateway(
        base_url=GATEWAY_URL,
        api_key="test-key",
        timeout=1,
        breaker=breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30),
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=30)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Pretend the reset timeout has passed
    cb.last_failure_time = time.monotonic() - 60
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_payout_sends_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers["Idempotency-Key"]
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"transaction_id": "TX-1"})

    gateway = gateway_with(handler)
    transaction_id = await gateway.send_payout("settlement:1:attempt:1", Decimal("17.11"), "+15550000001", 7)

    assert transaction_id == "TX-1"
    assert seen["key"] == "settlement:1:attempt:1"
    assert seen["auth"] == "Bearer test-key"
    assert b'"amount":"17.11"' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_gateway_error_status_is_wrapped():
    gateway = gateway_with(lambda request: httpx.Response(503, json={"error": "maintenance"}))

    with pytest.raises(GatewayFailureError) as exc:
        await gateway.send_payout("settlement:1:attempt:1", Decimal("5.00"), "+15550000001", 7)

    assert "HTTP 503" in exc.value.message
    assert exc.value.details["reference"] == "settlement:1:attempt:1"
    assert gateway.breaker.failures == 1


@pytest.mark.asyncio
async def test_unreachable_gateway_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayFailureError) as exc:
        await gateway_with(handler).send_payout("ref-1", Decimal("5.00"), "+15550000001", 7)

    assert "unreachable" in exc.value.message


@pytest.mark.asyncio
async def test_open_circuit_stops_calling_gateway():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    gateway = gateway_with(handler, breaker=CircuitBreaker(failure_threshold=2, reset_timeout=30))
    for attempt in range(2):
        with pytest.raises(GatewayFailureError):
            await gateway.send_payout(f"ref-{attempt}", Decimal("5.00"), "+15550000001", 7)

    with pytest.raises(GatewayFailureError) as exc:
        await gateway.send_payout("ref-3", Decimal("5.00"), "+15550000001", 7)

    assert "temporarily unavailable" in exc.value.message
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_missing_payout_number_fails_fast():
    calls = []
    gateway = gateway_with(lambda request: calls.append(request) or httpx.Response(200, json={}))

    with pytest.raises(GatewayFailureError):
        await gateway.send_payout("ref-1", Decimal("5.00"), None, 7)
    assert calls == []


@pytest.mark.asyncio
async def test_settlement_survives_real_gateway_outage(
    db_session, admin, driver, rider, fund_wallet, confirmed_booking
):
    await fund_wallet(rider, "20.00")
    _, booking = await confirmed_booking(driver, rider)
    await redeem_token(db_session, derive_token(booking.id), driver.id)
    await SettlementService.generate(db_session, datetime.now(timezone.utc).date())
    settlements = await SettlementService.list_settlements(db_session, driver_id=driver.id)
    settlement_id = settlements[0].id

    gateway = gateway_with(lambda request: httpx.Response(503))
    result = await SettlementService.process_settlement(
        db_session, settlement_id, admin.id, "1234", SettlementAction.APPROVE_AND_PROCESS, gateway
    )

    assert not result.success
    assert result.status == SettlementStatus.FAILED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("9.25")


@pytest.mark.asyncio
async def test_health_reports_redis_down(client, mock_redis):
    await mock_redis.aclose()

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "down"


@pytest.mark.asyncio
async def test_current_trip_works_without_cache(db_session, driver, make_trip, mock_redis):
    trip = await make_trip(driver)
    await mock_redis.aclose()

    current = await TripService.get_current_trip(db_session, driver.id)

    assert current["id"] == trip.id


@pytest.mark.asyncio
async def test_current_trip_falls_back_when_redis_errors(db_session, driver, make_trip, mock_redis, mocker):
    trip = await make_trip(driver)
    mocker.patch.object(mock_redis, "get", side_effect=RedisConnectionError("Connection refused"))
    mocker.patch.object(mock_redis, "set", side_effect=RedisConnectionError("Connection refused"))

    current = await TripService.get_current_trip(db_session, driver.id)

    assert current["id"] == trip.id


@pytest.mark.asyncio
async def test_accepted_payout_with_unreadable_body_uses_own_reference():
    gateway = gateway_with(lambda request: httpx.Response(200, text="OK"))

    transaction_id = await gateway.send_payout("settlement:1:attempt:1", Decimal("5.00"), "+15550000001", 7)

    assert transaction_id == "settlement:1:attempt:1"
    assert gateway.breaker.failures == 0


async def paid_settlement_id(db, driver, rider, fund_wallet, confirmed_booking):
    await fund_wallet(rider, "20.00")
    _, booking = await confirmed_booking(driver, rider)
    await redeem_token(db, derive_token(booking.id), driver.id)
    await SettlementService.generate(db, datetime.now(timezone.utc).date())
    settlements = await SettlementService.list_settlements(db, driver_id=driver.id)
    return settlements[0].id


async def settlement_status(db, settlement_id):
    result = await db.execute(select(Settlement.status).where(Settlement.id == settlement_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_settlement_completes_when_gateway_reply_is_not_json(
    db_session, admin, driver, rider, fund_wallet, confirmed_booking
):
    settlement_id = await paid_settlement_id(db_session, driver, rider, fund_wallet, confirmed_booking)

    gateway = gateway_with(lambda request: httpx.Response(200, text="OK"))
    result = await SettlementService.process_settlement(
        db_session, settlement_id, admin.id, "1234", SettlementAction.APPROVE_AND_PROCESS, gateway
    )

    assert result.success
    assert await settlement_status(db_session, settlement_id) == SettlementStatus.COMPLETED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("0.00")


class BrokenGateway:
    async def send_payout(self, reference, amount, payout_number, driver_id):
        raise RuntimeError("receipt parser crashed")


@pytest.mark.asyncio
async def test_unexpected_payout_error_leaves_settlement_retryable(
    db_session, admin, driver, rider, fund_wallet, confirmed_booking, payout_gateway
):
    settlement_id = await paid_settlement_id(db_session, driver, rider, fund_wallet, confirmed_booking)

    with pytest.raises(RuntimeError):
        await SettlementService.process_settlement(
            db_session, settlement_id, admin.id, "1234", SettlementAction.APPROVE_AND_PROCESS, BrokenGateway()
        )

    assert await settlement_status(db_session, settlement_id) == SettlementStatus.FAILED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("9.25")
    error = await db_session.execute(select(Settlement.payment_error).where(Settlement.id == settlement_id))
    assert "receipt parser crashed" in error.scalar_one()

    result = await SettlementService.process_settlement(
        db_session, settlement_id, admin.id, "1234", SettlementAction.APPROVE_AND_PROCESS, payout_gateway
    )

    assert result.success
    assert result.status == SettlementStatus.COMPLETED
    assert await WalletLedger.get_balance(db_session, driver.id) == Decimal("0.00")
