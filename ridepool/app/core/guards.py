"""
Role guards for endpoints.

Riders book and pay, drivers run trips and scan QR codes, admins approve
settlements.
"""

from typing import List

from fastapi import Depends

from ridepool.app.core.dependencies import get_current_user
from ridepool.app.core.exceptions import InsufficientPermissionsError
from ridepool.app.models.enums import UserRole


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory, e.g. ``Depends(require_role([UserRole.DRIVER]))``.

    Raises InsufficientPermissionsError (403) for any other role.
    """
    allowed = {r.value for r in allowed_roles}

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join(sorted(allowed))}"
            )
        return current_user

    return role_checker
