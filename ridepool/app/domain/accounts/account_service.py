"""
Account Service.

Rider and driver sign-up, credential checks, and the per-request lookup
that keeps blocked accounts out even while their tokens are still valid.
"""

import logging
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.exceptions import (
    AuthenticationFailedError, InsufficientPermissionsError, ValidationFailedError
)
from ridepool.app.core.security import get_password_hash, verify_password
from ridepool.app.models.enums import UserRole
from ridepool.app.models.user import User
from ridepool.app.schemas.auth import UserRegister
from ridepool.app.services.audit import log_auth_event, log_event, AuditAction

logger = logging.getLogger("ridepool.accounts")


class AccountService:

    @staticmethod
    async def register(db: AsyncSession, data: UserRegister) -> User:
        """
        Create a rider or driver account.

        Admins are provisioned by seed_users.py only. Drivers must give a
        phone number because settlements are paid out to it.

        Raises:
            InsufficientPermissionsError: ADMIN role requested
            ValidationFailedError: Username/email taken, driver without phone
        """
        if data.role == UserRole.ADMIN:
            raise InsufficientPermissionsError("Admin users cannot be registered via API")
        if data.role == UserRole.DRIVER and not data.phone_number:
            raise ValidationFailedError("Drivers need a phone number for payouts", field="phone_number")

        result = await db.execute(
            select(User.username).where(or_(User.username == data.username, User.email == data.email))
        )
        taken = result.scalars().first()
        if taken is not None:
            if taken == data.username:
                raise ValidationFailedError("Username already registered", field="username")
            raise ValidationFailedError("Email already registered", field="email")

        user = User(
            email=data.email,
            username=data.username,
            full_name=data.full_name,
            phone_number=data.phone_number,
            hashed_password=get_password_hash(data.password),
            role=data.role,
            is_active=True,
            is_superuser=False
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info("Registered %s %s (id=%s)", user.role.value, user.username, user.id)

        await log_event(
            db=db,
            action=AuditAction.USER_REGISTERED,
            actor_id=user.id,
            actor_username=user.username,
            entity_type="user",
            entity_id=user.id,
            metadata={"role": user.role.value}
        )
        return user

    @staticmethod
    async def authenticate(
        db: AsyncSession,
        login: str,
        password: str,
        ip_address: Optional[str] = None
    ) -> User:
        """
        Check a username-or-email and password. Every attempt is audited.

        Raises:
            AuthenticationFailedError: Unknown user or wrong password
            InsufficientPermissionsError: Account blocked
        """
        result = await db.execute(
            select(User).where(or_(User.username == login, User.email == login))
        )
        user = result.scalar_one_or_none()

        if user is None or not verify_password(password, user.hashed_password):
            await log_auth_event(
                db=db,
                action=AuditAction.LOGIN_FAILED,
                user_id=user.id if user else None,
                username=login,
                ip_address=ip_address,
                metadata={"reason": "Invalid password" if user else "User not found"}
            )
            raise AuthenticationFailedError("Invalid credentials")

        if not user.is_active:
            await log_auth_event(
                db=db,
                action=AuditAction.LOGIN_FAILED,
                user_id=user.id,
                username=user.username,
                ip_address=ip_address,
                metadata={"reason": "Account is inactive"}
            )
            raise InsufficientPermissionsError("Inactive user account")

        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_SUCCESS,
            user_id=user.id,
            username=user.username,
            ip_address=ip_address
        )
        return user

    @staticmethod
    async def get_active_user(db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise AuthenticationFailedError("User not found")
        if not user.is_active:
            raise InsufficientPermissionsError("User account is inactive")
        return user
