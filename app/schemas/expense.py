from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from decimal import Decimal

from app.models.expense import ExpenseType
from app.models.payment import PaymentMethod


class ExpenseCreate(BaseModel):
    """Schema for creating an expense."""
    type: ExpenseType
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: PaymentMethod
    beneficiary: Optional[str] = Field(None, max_length=150)
    expense_date: Optional[datetime] = None
    observations: Optional[str] = None


class ExpenseResponse(BaseModel):
    """Schema for expense response."""
    id: str
    type: ExpenseType
    description: str
    amount: Decimal
    beneficiary: str
    payment_method: PaymentMethod
    expense_date: datetime
    observations: Optional[str] = None
    equipment_id: Optional[str] = None
    status_history_id: Optional[str] = None
    created_by: int

    class Config:
        from_attributes = True


class ExpenseListResponse(BaseModel):
    items: list[ExpenseResponse]
    total: int
