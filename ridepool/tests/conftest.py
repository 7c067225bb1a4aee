"""
Centralized Test Configuration.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from ridepool.app.main import app
from ridepool.app.db.session import get_db, Base
from ridepool.app.core.reliability import payout_circuit_breaker
from ridepool.app.core.security import get_password_hash
from ridepool.app.core.jwt import create_user_token
from ridepool.app.core.exceptions import GatewayFailureError
from ridepool.app.domain.billing.payout_gateway import get_payout_gateway
from ridepool.app.domain.booking.booking_service import BookingService
from ridepool.app.domain.booking.trip_service import TripService
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.models.user import User
from ridepool.app.models.enums import UserRole
import ridepool.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_PIN = "1234"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, px=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def incr(self, key):
        if self._closed:
            return 0
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def eval(self, script, numkeys, key, token):
        # Stands in for the lock release script: delete only if the token matches
        if self._closed or self.store.get(key) != token:
            return 0
        del self.store[key]
        return 1

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakePayoutGateway:
    """Records payout calls; set `fail` to make the next calls fail."""

    def __init__(self):
        self.calls = []
        self.fail = False

    async def send_payout(self, reference, amount, payout_number, driver_id):
        self.calls.append({
            "reference": reference,
            "amount": amount,
            "payout_number": payout_number,
            "driver_id": driver_id,
        })
        if self.fail:
            raise GatewayFailureError("Payout gateway returned HTTP 503", reference)
        return f"GW-{len(self.calls)}"


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def payout_gateway():
    return FakePayoutGateway()


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, mock_redis, payout_gateway, monkeypatch):
    """Point the app at the test database, MockRedis and the fake gateway."""
    monkeypatch.setattr(redis_client_module, "redis_client", mock_redis)
    payout_circuit_breaker.reset_state()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payout_gateway] = lambda: payout_gateway
    yield

    app.dependency_overrides = {}
    payout_circuit_breaker.reset_state()


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def create_user(db, username, role, **kwargs):
    user = User(
        email=f"{username}@example.com",
        username=username,
        full_name=kwargs.pop("full_name", username.title()),
        hashed_password=get_password_hash(kwargs.pop("password", "password123")),
        role=role,
        is_active=True,
        **kwargs
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    # Detached so later rollbacks in the shared session do not expire it
    db.expunge(user)
    return user


async def fund(db, user, amount, reference=None):
    """Top up a wallet through the ledger, as the deposit gateway would."""
    await WalletLedger.record_top_up(
        db, user.id, Decimal(str(amount)), reference or f"test-{user.id}-{amount}", succeeded=True
    )
    await db.commit()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
async def driver(db_session):
    return await create_user(db_session, "driver", UserRole.DRIVER, phone_number="+15550000001")


@pytest.fixture
async def other_driver(db_session):
    return await create_user(db_session, "driver2", UserRole.DRIVER, phone_number="+15550000003")


@pytest.fixture
async def rider(db_session):
    return await create_user(db_session, "rider", UserRole.RIDER)


@pytest.fixture
async def other_rider(db_session):
    return await create_user(db_session, "rider2", UserRole.RIDER)


@pytest.fixture
async def admin(db_session):
    return await create_user(
        db_session, "admin", UserRole.ADMIN, admin_pin_hash=get_password_hash(ADMIN_PIN)
    )


@pytest.fixture
def fund_wallet(db_session):
    async def _fund(user, amount, reference=None):
        await fund(db_session, user, amount, reference)
    return _fund


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def make_trip(db_session):
    """Create an ACTIVE trip for a driver through the trip service."""
    async def _make_trip(driver, seats=4, base_fare="10.00", pickup_fee=None, dropoff_fee=None, publish=True):
        trip = await TripService.create_trip(
            db_session,
            driver_id=driver.id,
            origin={"lat": 5.6037, "lng": -0.1870, "address": "Accra Central"},
            destination={"lat": 5.5560, "lng": -0.1969, "address": "Osu"},
            seats_total=seats,
            base_fare=Decimal(base_fare),
            pickup_fee=Decimal(pickup_fee) if pickup_fee is not None else None,
            dropoff_fee=Decimal(dropoff_fee) if dropoff_fee is not None else None,
            publish=publish
        )
        db_session.expunge(trip)
        return trip
    return _make_trip


@pytest.fixture
def confirmed_booking(db_session, make_trip):
    """Trip + rider booking confirmed by the driver."""
    async def _confirmed(driver, rider, seats=1, trip_seats=4, base_fare="10.00", trip=None):
        trip = trip or await make_trip(driver, seats=trip_seats, base_fare=base_fare)
        booking = await BookingService.create_booking(db_session, rider.id, trip.id, seats)
        booking = await BookingService.confirm_booking(db_session, booking.id, driver.id)
        db_session.expunge(booking)
        return trip, booking
    return _confirmed
