import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Numeric, Enum
from app.database import Base
from app.models.payment import PaymentMethod


class ExpenseType(str, enum.Enum):
    ADVANCE = "ADVANCE"
    SALARY = "SALARY"
    SUPPLIES = "SUPPLIES"
    RENT = "RENT"
    SERVICES = "SERVICES"
    MAINTENANCE = "MAINTENANCE"
    FOOD = "FOOD"
    FUEL = "FUEL"
    OTHER = "OTHER"


# Types paid to a worker rather than to the business
WORKER_EXPENSE_TYPES = (ExpenseType.ADVANCE, ExpenseType.SALARY)


class Expense(Base):
    """A business outflow: manual, a cancellation refund, or a technician payment."""

    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    type = Column(Enum(ExpenseType, native_enum=False, length=20), nullable=False, index=True)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    beneficiary = Column(String(150), nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod, native_enum=False, length=20), nullable=False)
    expense_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    observations = Column(Text)

    # Refunds point back at the equipment and the cancellation that produced them
    equipment_id = Column(String(36), ForeignKey("equipment.id", ondelete="SET NULL"), nullable=True)
    status_history_id = Column(
        String(36), ForeignKey("equipment_status_history.id"), nullable=True, unique=True
    )

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Expense {self.type} {self.amount} -> {self.beneficiary}>"
