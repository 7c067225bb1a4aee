"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ridepool.app.api.v1.endpoints import (
    auth, driver_trips, rider, payments, wallet, settlements, notifications
)

router = APIRouter()

# Authentication
router.include_router(auth.router)

# Trips & bookings
router.include_router(rider.trips_router)
router.include_router(rider.router)
router.include_router(driver_trips.router)

# QR payments & wallet
router.include_router(payments.router)
router.include_router(wallet.router)

# Settlements
router.include_router(settlements.router)
router.include_router(settlements.admin_router)
router.include_router(settlements.driver_router)

# Notifications
router.include_router(notifications.router)
