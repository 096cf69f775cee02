"""
Technician payment distribution.

The net period surplus is split equally among active technicians, rounded
down to the rounding step and clamped to the per-technician cap. SALARY
expenses already posted to a technician in the period are subtracted, so
re-running the calculator mid-period does not pay twice.

``commit_distribution`` posts one SALARY expense per technician, each in its
own session; one failed posting never blocks the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.expense import Expense, ExpenseType
from app.models.payment import ZERO, PaymentMethod
from app.schemas.reports import PostingResult
from app.security.rbac import Actor, ensure_admin
from app.services import report_queries as q
from app.services.report_queries import TechnicianRow
from app.services.report_utils import DateRange, resolve_range

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_NO_TECHNICIANS = "no_technicians"
STATUS_NO_SURPLUS = "no_surplus"


@dataclass(frozen=True)
class TechnicianPayment:
    technician_id: int
    technician_name: str
    existing_payments: Decimal
    final_payment: Decimal


@dataclass(frozen=True)
class Distribution:
    difference: Decimal
    technician_count: int
    raw_per_technician: Decimal
    rounded_per_technician: Decimal
    capped_per_technician: Decimal
    cap_applied: bool
    cap: Decimal
    rounding_step: Decimal
    total_distributed: Decimal
    remainder: Decimal
    lost_to_rounding: Decimal
    lost_to_capping: Decimal
    payments: list[TechnicianPayment] = field(default_factory=list)
    status: str = STATUS_OK

    @property
    def payable(self) -> list[TechnicianPayment]:
        return [p for p in self.payments if p.final_payment > ZERO]


def round_down(value: Decimal, step: Decimal) -> Decimal:
    """Largest multiple of step not above value."""
    return (value / step).to_integral_value(rounding=ROUND_FLOOR) * step


def calculate_distribution(
    period_income: Decimal,
    period_expenses: Decimal,
    technicians: Sequence[TechnicianRow],
    existing_payments: Mapping[int, Decimal],
    cap: Optional[Decimal] = None,
    rounding_step: Optional[Decimal] = None,
) -> Distribution:
    """Split income - expenses equally among technicians.

    ``existing_payments`` maps technician id to SALARY already posted in the
    period. Negative surpluses distribute nothing.
    """
    cap = Decimal(str(cap if cap is not None else settings.TECHNICIAN_PAYMENT_CAP))
    step = Decimal(str(rounding_step if rounding_step is not None else settings.TECHNICIAN_PAYMENT_ROUNDING_STEP))
    difference = Decimal(str(period_income)) - Decimal(str(period_expenses))
    count = len(technicians)

    raw = difference / count if count else ZERO
    rounded = max(round_down(raw, step), ZERO) if count else ZERO
    capped = min(rounded, cap)
    cap_applied = rounded > cap

    payments = [
        TechnicianPayment(
            technician_id=t.id,
            technician_name=t.name,
            existing_payments=existing_payments.get(t.id, ZERO),
            final_payment=max(ZERO, capped - existing_payments.get(t.id, ZERO)),
        )
        for t in technicians
    ]

    if count == 0:
        status = STATUS_NO_TECHNICIANS
    elif capped <= ZERO:
        status = STATUS_NO_SURPLUS
    else:
        status = STATUS_OK

    lost_to_rounding = difference - rounded * count
    lost_to_capping = (rounded - capped) * count
    return Distribution(
        difference=difference,
        technician_count=count,
        raw_per_technician=raw,
        rounded_per_technician=rounded,
        capped_per_technician=capped,
        cap_applied=cap_applied,
        cap=cap,
        rounding_step=step,
        total_distributed=capped * count,
        remainder=difference - capped * count,
        lost_to_rounding=lost_to_rounding,
        lost_to_capping=lost_to_capping,
        payments=payments,
        status=status,
    )


async def existing_salary_payments(
    session_factory: async_sessionmaker,
    technicians: Sequence[TechnicianRow],
    period: DateRange,
) -> dict[int, Decimal]:
    """SALARY already posted to each technician (by name) within the period."""
    async with session_factory() as session:
        result = await session.execute(
            select(Expense.beneficiary, Expense.amount).where(
                Expense.type == ExpenseType.SALARY,
                Expense.expense_date >= period.start,
                Expense.expense_date <= period.end,
            )
        )
        by_name: dict[str, Decimal] = {}
        for beneficiary, amount in result.all():
            key = beneficiary.strip().lower()
            by_name[key] = by_name.get(key, ZERO) + amount
    return {t.id: by_name.get(t.name.strip().lower(), ZERO) for t in technicians}


async def prepare_distribution(
    session_factory: async_sessionmaker,
    actor: Actor,
    period_income: Decimal,
    period_expenses: Decimal,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    cap: Optional[Decimal] = None,
    rounding_step: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> tuple[Distribution, DateRange]:
    """Preview the distribution for the active technicians."""
    ensure_admin(actor)
    period = resolve_range(start_date, end_date, now or datetime.utcnow())
    async with session_factory() as session:
        active = await q.technicians(session, active_only=True)
    existing = await existing_salary_payments(session_factory, active, period)
    return (
        calculate_distribution(period_income, period_expenses, active, existing, cap, rounding_step),
        period,
    )


async def _post_salary(
    session_factory: async_sessionmaker,
    payment: TechnicianPayment,
    period: DateRange,
    actor: Actor,
    method: PaymentMethod,
    now: datetime,
) -> PostingResult:
    # Dated inside the period it pays for, so a later run over the same
    # period counts it as already paid.
    posted_on = max(period.start, min(now, period.end))
    try:
        async with session_factory() as session:
            expense = Expense(
                type=ExpenseType.SALARY,
                description=(
                    f"Technician payment {period.start:%Y-%m-%d} to {period.end:%Y-%m-%d}"
                ),
                amount=payment.final_payment,
                beneficiary=payment.technician_name,
                payment_method=method,
                expense_date=posted_on,
                created_by=actor.id,
                created_at=now,
            )
            session.add(expense)
            await session.commit()
    except Exception as e:
        logger.warning(
            f"Salary posting failed for technician {payment.technician_id}: {e}",
            extra={"technician_id": payment.technician_id},
            exc_info=True,
        )
        return PostingResult(
            technician_id=payment.technician_id,
            technician_name=payment.technician_name,
            amount=float(payment.final_payment),
            success=False,
            error=str(e),
        )
    return PostingResult(
        technician_id=payment.technician_id,
        technician_name=payment.technician_name,
        amount=float(payment.final_payment),
        success=True,
        expense_id=expense.id,
    )


async def commit_distribution(
    session_factory: async_sessionmaker,
    actor: Actor,
    distribution: Distribution,
    period: DateRange,
    method: PaymentMethod = PaymentMethod.CASH,
    now: Optional[datetime] = None,
) -> list[PostingResult]:
    """Post one SALARY expense per technician with a positive final payment."""
    ensure_admin(actor)
    now = now or datetime.utcnow()
    results = await asyncio.gather(
        *(
            _post_salary(session_factory, payment, period, actor, method, now)
            for payment in distribution.payable
        )
    )
    posted = sum(1 for r in results if r.success)
    logger.info(
        f"Technician distribution committed: {posted} posted, {len(results) - posted} failed",
        extra={"user_id": actor.id, "status": distribution.status},
    )
    return list(results)
