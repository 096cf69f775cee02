from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional

from app.models.user import UserRole, UserStatus


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Decoded JWT token data."""

    user_id: Optional[int] = None
    email: Optional[str] = None


class UserResponse(BaseModel):
    """Authenticated user as seen by the client."""

    id: int
    email: EmailStr
    name: str
    role: UserRole
    status: UserStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthMeResponse(BaseModel):
    """Response wrapper for /auth/me."""

    user: UserResponse
