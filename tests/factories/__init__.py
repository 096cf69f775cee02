"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation. Every factory builds
a dict of model keyword arguments, e.g. ``Equipment(**EquipmentFactory(...))``.
"""

from .user import (
    TEST_PASSWORD,
    UserFactory,
    AdminUserFactory,
    TechnicianUserFactory,
    InactiveTechnicianFactory,
)
from .customer import CustomerFactory
from .equipment import EquipmentFactory, RepairEquipmentFactory, DeliveredEquipmentFactory
from .payment import PaymentFactory, PendingPaymentFactory, CompletedPaymentFactory
from .expense import ExpenseFactory, SalaryExpenseFactory, AdvanceExpenseFactory

__all__ = [
    "TEST_PASSWORD",
    "UserFactory",
    "AdminUserFactory",
    "TechnicianUserFactory",
    "InactiveTechnicianFactory",
    "CustomerFactory",
    "EquipmentFactory",
    "RepairEquipmentFactory",
    "DeliveredEquipmentFactory",
    "PaymentFactory",
    "PendingPaymentFactory",
    "CompletedPaymentFactory",
    "ExpenseFactory",
    "SalaryExpenseFactory",
    "AdvanceExpenseFactory",
]
