"""
Authentication schemas.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional
from ridepool.app.models.enums import UserRole

# E.164-style: optional +, 7 to 15 digits
PHONE_PATTERN = r"^\+?[0-9]{7,15}$"


class UserRegister(BaseModel):
    """
    POST /auth/register body. Role defaults to RIDER; a DRIVER's phone
    number is where settlement payouts are sent.
    """
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = Field(default=None, max_length=200)
    phone_number: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    role: UserRole = UserRole.RIDER


class UserLogin(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    username: str
    email: str
    role: UserRole


class UserResponse(BaseModel):
    """GET /auth/me."""
    id: int
    email: str
    username: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
