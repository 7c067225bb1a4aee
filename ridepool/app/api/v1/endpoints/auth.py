"""
Authentication API endpoints.

Sign-up and login for the rider and driver apps. Both return a bearer token
so the app can go straight to booking or trip screens.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.app.db.session import get_db
from ridepool.app.core.dependencies import get_current_user
from ridepool.app.core.jwt import create_user_token
from ridepool.app.domain.accounts.account_service import AccountService
from ridepool.app.models.user import User
from ridepool.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_user_token(user),
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=user.role
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Register a rider (default) or a driver. ADMIN is refused with 403."""
    user = await AccountService.register(db, user_data)
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Login with username or email."""
    user = await AccountService.authenticate(
        db,
        login=credentials.username,
        password=credentials.password,
        ip_address=request.client.host if request.client else None
    )
    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await AccountService.get_active_user(db, current_user["user_id"])
    return UserResponse.model_validate(user)
