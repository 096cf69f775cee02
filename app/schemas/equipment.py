from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional

from app.models.equipment import EquipmentStatus, EquipmentType, HistoryAction
from app.schemas.payment import PaymentBalanceResponse, PaymentResponse


class EquipmentCreate(BaseModel):
    """Schema for equipment intake."""
    customer_id: int
    type: EquipmentType
    reported_flaw: str = Field(..., max_length=500)
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=50)
    serial_number: Optional[str] = Field(None, max_length=100)
    accessories: Optional[str] = Field(None, max_length=300)
    service_type: Optional[str] = Field(None, max_length=100)
    others: Optional[str] = None

    @field_validator("reported_flaw")
    @classmethod
    def strip_flaw(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("reported_flaw must be at least 5 characters")
        return v


class EquipmentResponse(BaseModel):
    """Schema for equipment response."""
    id: str
    code: str
    type: EquipmentType
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    reported_flaw: str
    accessories: Optional[str] = None
    service_type: Optional[str] = None
    others: Optional[str] = None
    status: EquipmentStatus
    entry_date: datetime
    delivery_date: Optional[datetime] = None
    customer_id: int
    customer_name: Optional[str] = None
    assigned_technician_id: Optional[int] = None
    assigned_technician_name: Optional[str] = None

    class Config:
        from_attributes = True


class EquipmentDetailResponse(EquipmentResponse):
    """Equipment with its active payment and balance view."""
    active_payment: Optional[PaymentResponse] = None
    balance: Optional[PaymentBalanceResponse] = None


class EquipmentListResponse(BaseModel):
    """Paginated equipment list response."""
    items: list[EquipmentResponse]
    total: int
    page: int
    page_size: int


class StatusChangeRequest(BaseModel):
    """Request a status transition."""
    status: EquipmentStatus
    observations: Optional[str] = Field(None, max_length=500)
    assigned_technician_id: Optional[int] = None


class ReactivateRequest(BaseModel):
    observations: Optional[str] = Field(None, max_length=500)


class StatusChangeResponse(BaseModel):
    """Updated equipment plus any policy warnings raised by the change."""
    equipment: EquipmentResponse
    warnings: list[str] = []


class StatusHistoryResponse(BaseModel):
    id: str
    equipment_id: str
    status: EquipmentStatus
    action: HistoryAction
    observations: Optional[str] = None
    changed_by: int
    changed_by_name: Optional[str] = None
    changed_at: datetime
