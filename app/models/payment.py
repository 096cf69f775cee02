"""Payment ledger rows and the single derivation of payment status.

Every caller that needs a payment's status or balance goes through
``derive_payment_status`` / ``remaining_amount`` / ``recognized_income``.
Nothing about the status is stored.
"""
import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Enum
from sqlalchemy.orm import relationship
from app.database import Base

ZERO = Decimal("0")


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    YAPE = "YAPE"
    PLIN = "PLIN"
    TRANSFER = "TRANSFER"


class VoucherType(str, enum.Enum):
    RECEIPT = "RECEIPT"
    INVOICE = "INVOICE"
    DELIVERY_NOTE = "DELIVERY_NOTE"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


def _dec(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def derive_payment_status(total_amount, advance_amount) -> PaymentStatus:
    """PENDING if nothing received, COMPLETED once the total is covered, else PARTIAL."""
    total = _dec(total_amount)
    advance = _dec(advance_amount)
    if advance >= total:
        return PaymentStatus.COMPLETED
    if advance == ZERO:
        return PaymentStatus.PENDING
    return PaymentStatus.PARTIAL


def remaining_amount(total_amount, advance_amount) -> Decimal:
    return _dec(total_amount) - _dec(advance_amount)


def recognized_income(total_amount, advance_amount) -> Decimal:
    """Income counted by reports for one record: min(advance, total)."""
    return min(_dec(advance_amount), _dec(total_amount))


class Payment(Base):
    """One entry of an equipment's payment ledger.

    A top-up after a partial payment is a new row, so the ledger keeps the
    date each increment was received.
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    equipment_id = Column(String(36), ForeignKey("equipment.id"), nullable=False, index=True)

    total_amount = Column(Numeric(10, 2), nullable=False)
    advance_amount = Column(Numeric(10, 2), nullable=False, default=0)
    payment_method = Column(Enum(PaymentMethod, native_enum=False, length=20), nullable=False)
    voucher_type = Column(
        Enum(VoucherType, native_enum=False, length=20), nullable=False, default=VoucherType.RECEIPT
    )
    beneficiary = Column(String(150), nullable=False)
    observations = Column(String(500))

    payment_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    equipment = relationship("Equipment", lazy="raise")

    def __repr__(self):
        return f"<Payment {self.id} {self.advance_amount}/{self.total_amount}>"

    @property
    def remaining_amount(self) -> Decimal:
        return remaining_amount(self.total_amount, self.advance_amount)

    @property
    def payment_status(self) -> PaymentStatus:
        return derive_payment_status(self.total_amount, self.advance_amount)

    @property
    def recognized_income(self) -> Decimal:
        return recognized_income(self.total_amount, self.advance_amount)
