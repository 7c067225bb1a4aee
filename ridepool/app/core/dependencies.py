"""
Request authentication.

Every protected route resolves the bearer token to a claims dict
({"sub", "user_id", "role"}). The account is re-read on each request so a
blocked rider or driver loses access before their token expires.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.core.exceptions import AuthenticationFailedError
from ridepool.app.core.jwt import decode_access_token
from ridepool.app.db.session import get_db
from ridepool.app.domain.accounts.account_service import AccountService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Raises:
        AuthenticationFailedError: Missing, expired or forged token (401)
        InsufficientPermissionsError: Account blocked since the token was issued (403)
    """
    if credentials is None:
        raise AuthenticationFailedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationFailedError()
    if not payload.get("user_id"):
        raise AuthenticationFailedError("Invalid token payload")

    user = await AccountService.get_active_user(db, payload["user_id"])
    # The stored role wins over the one baked into an older token
    payload["role"] = user.role.value
    return payload
