"""
Read-only sub-queries behind the financial and operational reports.

Each query runs in its own session so the report engines can issue them
concurrently. A failed query is logged and contributes no rows; the report
is still built from the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.equipment import Equipment, EquipmentStatus, EquipmentType
from app.models.expense import WORKER_EXPENSE_TYPES, Expense, ExpenseType
from app.models.payment import Payment
from app.models.user import User, UserRole, UserStatus
from app.services.report_utils import DateRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EquipmentRow:
    id: str
    code: str
    type: EquipmentType
    status: EquipmentStatus
    entry_date: datetime
    delivery_date: Optional[datetime]
    assigned_technician_id: Optional[int]
    assigned_technician_name: Optional[str]
    customer_name: Optional[str]

    @classmethod
    def from_model(cls, equipment: Equipment) -> "EquipmentRow":
        return cls(
            id=equipment.id,
            code=equipment.code,
            type=equipment.type,
            status=equipment.status,
            entry_date=equipment.entry_date,
            delivery_date=equipment.delivery_date,
            assigned_technician_id=equipment.assigned_technician_id,
            assigned_technician_name=equipment.assigned_technician_name,
            customer_name=equipment.customer_name,
        )


@dataclass(frozen=True)
class PaymentRow:
    equipment_id: str
    equipment_status: EquipmentStatus
    payment_date: datetime
    created_at: Optional[datetime]
    total_amount: Decimal
    advance_amount: Decimal


@dataclass(frozen=True)
class ExpenseRow:
    type: ExpenseType
    amount: Decimal
    beneficiary: str
    expense_date: datetime


@dataclass(frozen=True)
class TechnicianRow:
    id: int
    name: str
    status: UserStatus


QueryFn = Callable[..., Awaitable[list]]


async def _isolated(session_factory: async_sessionmaker, query: QueryFn, args: tuple) -> list:
    async with session_factory() as session:
        return await query(session, *args)


async def gather_queries(
    session_factory: async_sessionmaker,
    queries: dict[str, tuple[QueryFn, tuple]],
) -> dict[str, list]:
    """Run named queries concurrently, one session each."""
    names = list(queries)
    results = await asyncio.gather(
        *(_isolated(session_factory, query, args) for query, args in queries.values()),
        return_exceptions=True,
    )
    rows: dict[str, list] = {}
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            logger.warning(
                f"Report sub-query '{name}' failed, treating it as empty: {result!r}",
                exc_info=result,
            )
            rows[name] = []
        elif isinstance(result, BaseException):
            raise result
        else:
            rows[name] = result
    return rows


def _payment_rows(result) -> list[PaymentRow]:
    return [
        PaymentRow(
            equipment_id=row.equipment_id,
            equipment_status=row.status,
            payment_date=row.payment_date,
            created_at=row.created_at,
            total_amount=row.total_amount,
            advance_amount=row.advance_amount,
        )
        for row in result.all()
    ]


_PAYMENT_COLUMNS = (
    Payment.equipment_id,
    Equipment.status,
    Payment.payment_date,
    Payment.created_at,
    Payment.total_amount,
    Payment.advance_amount,
)


async def payments_dated_in(session: AsyncSession, window: DateRange) -> list[PaymentRow]:
    """Payments by payment date, with the status of their equipment."""
    result = await session.execute(
        select(*_PAYMENT_COLUMNS)
        .join(Equipment, Equipment.id == Payment.equipment_id)
        .where(Payment.payment_date >= window.start, Payment.payment_date <= window.end)
    )
    return _payment_rows(result)


async def payments_for_equipment_entered_in(
    session: AsyncSession, window: DateRange
) -> list[PaymentRow]:
    """Every payment (any date) on equipment whose entry date is in the window."""
    result = await session.execute(
        select(*_PAYMENT_COLUMNS)
        .join(Equipment, Equipment.id == Payment.equipment_id)
        .where(Equipment.entry_date >= window.start, Equipment.entry_date <= window.end)
    )
    return _payment_rows(result)


async def payments_on_delivered_equipment(session: AsyncSession) -> list[PaymentRow]:
    result = await session.execute(
        select(*_PAYMENT_COLUMNS)
        .join(Equipment, Equipment.id == Payment.equipment_id)
        .where(Equipment.status == EquipmentStatus.DELIVERED)
    )
    return _payment_rows(result)


async def expenses_dated_in(
    session: AsyncSession,
    window: DateRange,
    types: Optional[tuple[ExpenseType, ...]] = None,
) -> list[ExpenseRow]:
    query = select(Expense.type, Expense.amount, Expense.beneficiary, Expense.expense_date).where(
        Expense.expense_date >= window.start, Expense.expense_date <= window.end
    )
    if types:
        query = query.where(Expense.type.in_(types))
    result = await session.execute(query)
    return [
        ExpenseRow(
            type=row.type,
            amount=row.amount,
            beneficiary=row.beneficiary,
            expense_date=row.expense_date,
        )
        for row in result.all()
    ]


async def worker_expenses_dated_in(session: AsyncSession, window: DateRange) -> list[ExpenseRow]:
    return await expenses_dated_in(session, window, WORKER_EXPENSE_TYPES)


async def equipment_entered_in(
    session: AsyncSession,
    window: DateRange,
    technician_id: Optional[int] = None,
    type: Optional[EquipmentType] = None,
    status: Optional[EquipmentStatus] = None,
) -> list[EquipmentRow]:
    query = select(Equipment).where(
        Equipment.entry_date >= window.start, Equipment.entry_date <= window.end
    )
    if technician_id is not None:
        query = query.where(Equipment.assigned_technician_id == technician_id)
    if type is not None:
        query = query.where(Equipment.type == type)
    if status is not None:
        query = query.where(Equipment.status == status)
    result = await session.execute(query)
    return [EquipmentRow.from_model(e) for e in result.unique().scalars().all()]


async def equipment_in_repair(
    session: AsyncSession,
    technician_id: Optional[int] = None,
    type: Optional[EquipmentType] = None,
) -> list[EquipmentRow]:
    query = select(Equipment).where(Equipment.status == EquipmentStatus.REPAIR)
    if technician_id is not None:
        query = query.where(Equipment.assigned_technician_id == technician_id)
    if type is not None:
        query = query.where(Equipment.type == type)
    result = await session.execute(query)
    return [EquipmentRow.from_model(e) for e in result.unique().scalars().all()]


async def technicians(session: AsyncSession, active_only: bool = False) -> list[TechnicianRow]:
    query = select(User.id, User.name, User.status).where(User.role == UserRole.TECHNICIAN)
    if active_only:
        query = query.where(User.status == UserStatus.ACTIVE)
    result = await session.execute(query.order_by(User.name, User.id))
    return [TechnicianRow(id=row.id, name=row.name, status=row.status) for row in result.all()]


def query(fn: QueryFn, *args: Any) -> tuple[QueryFn, tuple]:
    """Pair a query function with its arguments for ``gather_queries``."""
    return fn, args
