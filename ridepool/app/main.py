"""
FastAPI Application Entry Point.

Builds the Ridepool API: routers under /v1, error handlers, request tracing
and the /health probe.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from ridepool.app.core.config import settings
from ridepool.app.api.v1.router import router as api_v1_router
from ridepool.app.db.session import engine, Base, AsyncSessionLocal
from ridepool.app.core.observability import ObservabilityMiddleware, configure_logging
from ridepool.app.core.redis_client import ping_redis, close_redis
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger
from ridepool.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from ridepool.app.models.user import User
from ridepool.app.models.audit_log import AuditLog
from ridepool.app.models.trip import Trip
from ridepool.app.models.booking import Booking
from ridepool.app.models.wallet import Wallet
from ridepool.app.models.ledger_entry import LedgerEntry
from ridepool.app.models.settlement import Settlement, SettlementBatch
from ridepool.app.models.notification import Notification

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables and make sure the platform fee account exists.
    Shutdown: close the Redis pool.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        await WalletLedger.get_platform_user_id(db)
        await db.commit()
    yield
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Ride-pooling marketplace: seats, bookings, wallet payments and driver settlements",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Ridepool Backend API",
        "docs": "/docs",
        "health": "/health",
    }
