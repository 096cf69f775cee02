from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional


class CustomerCreate(BaseModel):
    """Schema for creating a customer."""
    name: str = Field(..., min_length=1, max_length=150)
    phone: str = Field(..., min_length=1, max_length=20)
    email: Optional[EmailStr] = None
    document_number: Optional[str] = Field(None, max_length=20)


class CustomerResponse(CustomerCreate):
    """Schema for customer response."""
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerListResponse(BaseModel):
    """Paginated customer list response."""
    items: list[CustomerResponse]
    total: int
    page: int
    page_size: int
