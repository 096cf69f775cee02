from app.models.user import User, UserRole, UserStatus
from app.models.customer import Customer
from app.models.equipment import (
    Equipment,
    EquipmentStatus,
    EquipmentStatusHistory,
    EquipmentType,
    HistoryAction,
)
from app.models.payment import Payment, PaymentMethod, PaymentStatus, VoucherType
from app.models.expense import Expense, ExpenseType

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Customer",
    "Equipment",
    "EquipmentStatus",
    "EquipmentStatusHistory",
    "EquipmentType",
    "HistoryAction",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "VoucherType",
    "Expense",
    "ExpenseType",
]
