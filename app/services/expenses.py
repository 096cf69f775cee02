"""Manual expenses and the technician payments (advances and salaries) report."""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import write_transaction
from app.exceptions import NotFoundError, ValidationError
from app.models.expense import WORKER_EXPENSE_TYPES, Expense, ExpenseType
from app.models.payment import ZERO, PaymentMethod
from app.models.user import User, UserRole
from app.schemas.expense import ExpenseResponse
from app.schemas.reports import TechnicianPaymentsReport
from app.security.rbac import Actor, Permission, ensure_permission
from app.services.report_utils import END_OF_DAY, money

logger = logging.getLogger(__name__)


def resolve_beneficiary(expense_type: ExpenseType, beneficiary: Optional[str]) -> str:
    """Workers are paid by name; every other outflow belongs to the business."""
    if expense_type in WORKER_EXPENSE_TYPES:
        name = (beneficiary or "").strip()
        if not name:
            raise ValidationError(
                f"beneficiary is required for {expense_type.value} expenses",
                errors=[{"field": "beneficiary", "message": "required"}],
            )
        return name
    return settings.BUSINESS_NAME


async def create_expense(
    db: AsyncSession,
    actor: Actor,
    type: ExpenseType,
    description: str,
    amount: Decimal,
    payment_method: PaymentMethod,
    beneficiary: Optional[str] = None,
    expense_date: Optional[datetime] = None,
    observations: Optional[str] = None,
) -> Expense:
    ensure_permission(actor, Permission.MANAGE_EXPENSES)
    if amount is None or amount <= ZERO:
        raise ValidationError(
            "amount must be greater than zero",
            errors=[{"field": "amount", "message": "must be > 0"}],
        )

    expense = Expense(
        type=type,
        description=description.strip(),
        amount=amount,
        beneficiary=resolve_beneficiary(type, beneficiary),
        payment_method=payment_method,
        expense_date=expense_date or datetime.utcnow(),
        observations=observations,
        created_by=actor.id,
    )
    async with write_transaction(db, f"recording {type.value} expense"):
        db.add(expense)

    logger.info(
        f"Expense {expense.type.value} of {expense.amount} recorded for {expense.beneficiary}",
        extra={"expense_id": expense.id, "user_id": actor.id},
    )
    return expense


def _date_filters(query, start_date: Optional[date], end_date: Optional[date]):
    if start_date:
        query = query.where(Expense.expense_date >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.where(Expense.expense_date <= datetime.combine(end_date, END_OF_DAY))
    return query


async def list_expenses(
    db: AsyncSession,
    type: Optional[ExpenseType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    beneficiary: Optional[str] = None,
) -> list[Expense]:
    """Expenses newest first."""
    query = _date_filters(select(Expense), start_date, end_date)
    if type:
        query = query.where(Expense.type == type)
    if beneficiary:
        query = query.where(Expense.beneficiary.ilike(f"%{beneficiary}%"))
    result = await db.execute(query.order_by(Expense.expense_date.desc()))
    return list(result.scalars().all())


async def technician_payments_report(
    db: AsyncSession,
    actor: Actor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
) -> TechnicianPaymentsReport:
    """All ADVANCE and SALARY expenses, optionally for one technician."""
    ensure_permission(actor, Permission.VIEW_FINANCIAL_REPORTS)

    query = _date_filters(
        select(Expense).where(Expense.type.in_(WORKER_EXPENSE_TYPES)), start_date, end_date
    )
    if technician_id is not None:
        technician = await db.get(User, technician_id)
        if technician is None or technician.role != UserRole.TECHNICIAN:
            raise NotFoundError("Technician", str(technician_id))
        query = query.where(Expense.beneficiary == technician.name)

    result = await db.execute(query.order_by(Expense.expense_date.desc()))
    expenses = list(result.scalars().all())

    advances = sum((e.amount for e in expenses if e.type == ExpenseType.ADVANCE), ZERO)
    salaries = sum((e.amount for e in expenses if e.type == ExpenseType.SALARY), ZERO)
    return TechnicianPaymentsReport(
        items=[ExpenseResponse.model_validate(e) for e in expenses],
        total_amount=money(advances + salaries),
        total_advances=money(advances),
        total_salaries=money(salaries),
        count=len(expenses),
    )
