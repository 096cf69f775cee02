from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional

from app.models.user import UserStatus


class TechnicianCreate(BaseModel):
    """Schema for creating a technician account."""
    name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=8)


class TechnicianStatusUpdate(BaseModel):
    """Activate or deactivate a technician."""
    status: UserStatus


class TechnicianResponse(BaseModel):
    """Schema for technician response."""
    id: int
    name: str
    email: EmailStr
    status: UserStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TechnicianListResponse(BaseModel):
    items: list[TechnicianResponse]
    total: int
