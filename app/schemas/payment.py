from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional
from decimal import Decimal

from app.models.payment import PaymentMethod, PaymentStatus, VoucherType


class PaymentCreate(BaseModel):
    """Record money received for an equipment.

    ``advance_amount`` is the amount received now. On a top-up it defaults to
    the whole outstanding balance; ``total_amount`` is then ignored.
    """
    total_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    advance_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    payment_method: PaymentMethod
    voucher_type: VoucherType = VoucherType.RECEIPT
    observations: Optional[str] = Field(None, max_length=500)


class PaymentUpdate(BaseModel):
    """Schema for updating a payment. Amounts only change while PENDING."""
    total_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    advance_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    voucher_type: Optional[VoucherType] = None
    observations: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_amounts(self) -> "PaymentUpdate":
        if (
            self.total_amount is not None
            and self.advance_amount is not None
            and self.advance_amount > self.total_amount
        ):
            raise ValueError("advance_amount cannot exceed total_amount")
        return self


class PaymentResponse(BaseModel):
    """Schema for payment response."""
    id: str
    equipment_id: str
    total_amount: Decimal
    advance_amount: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    voucher_type: VoucherType
    beneficiary: str
    observations: Optional[str] = None
    payment_date: datetime
    created_by: int

    class Config:
        from_attributes = True


class PaymentBalanceResponse(BaseModel):
    """Computed balance view over all payment records of one equipment."""
    equipment_id: str
    contract_total: Decimal
    received: Decimal
    outstanding: Decimal
    status: Optional[PaymentStatus] = None
    records: list[PaymentResponse]
