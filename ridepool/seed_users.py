"""
Database seeding script for initial users.

Creates the ADMIN user (with a payout-approval PIN), a sample DRIVER and a
sample RIDER with a funded wallet, for development.
Run with `python -m ridepool.seed_users` after the database is set up.
"""

import asyncio

from sqlalchemy import select

from ridepool.app.db.session import AsyncSessionLocal, engine, Base
from ridepool.app.models.user import User
from ridepool.app.models.enums import UserRole
from ridepool.app.core.security import get_password_hash
from ridepool.app.domain.ledger.wallet_ledger import WalletLedger

# Register every table on Base.metadata
import ridepool.app.main  # noqa: F401


async def seed_users():
    """
    Seed initial users with different roles.

    Creates:
    - 1 ADMIN user (PIN 1234)
    - 1 DRIVER user
    - 1 RIDER user with a 100.00 wallet top-up
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        result = await db.execute(
            select(User).where(User.username == "admin")
        )
        if result.scalar_one_or_none():
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        admin_user = User(
            email="admin@ridepool.local",
            username="admin",
            full_name="Ridepool Admin",
            hashed_password=get_password_hash("admin123"),
            admin_pin_hash=get_password_hash("1234"),
            role=UserRole.ADMIN,
            is_active=True,
            is_superuser=True
        )
        driver = User(
            email="driver@ridepool.local",
            username="driver",
            full_name="Sample Driver",
            phone_number="+15550000001",
            hashed_password=get_password_hash("driver123"),
            role=UserRole.DRIVER,
            is_active=True
        )
        rider = User(
            email="rider@ridepool.local",
            username="rider",
            full_name="Sample Rider",
            phone_number="+15550000002",
            hashed_password=get_password_hash("rider123"),
            role=UserRole.RIDER,
            is_active=True
        )
        db.add_all([admin_user, driver, rider])
        await db.flush()

        await WalletLedger.record_top_up(db, rider.id, "100.00", "seed-rider", succeeded=True)
        await db.commit()

        print("\n🎉 User seeding completed successfully!")
        print("\nSeeded users:")
        print("  - ADMIN:  admin / admin123 (PIN 1234)")
        print("  - DRIVER: driver / driver123")
        print("  - RIDER:  rider / rider123 (wallet 100.00)")


if __name__ == "__main__":
    asyncio.run(seed_users())
