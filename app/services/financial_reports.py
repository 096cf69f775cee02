"""
Financial report engine.

``compute_financial_report`` fetches the rows it needs concurrently and hands
them to ``build_financial_report``, a pure function of those rows and
``now``. Income is always recognized income (``min(advance, total)``) and
payments on CANCELLED equipment never count as income.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.equipment import EquipmentStatus
from app.models.expense import ExpenseType
from app.models.payment import ZERO, PaymentStatus, derive_payment_status, recognized_income, remaining_amount
from app.schemas.reports import (
    DailyRevenue,
    FinancialKpis,
    FinancialReport,
    PeriodRevenue,
    TechnicianExpenseSummary,
    TechnicianPerformance,
)
from app.security.rbac import Actor, Permission, ensure_permission
from app.services import report_queries as q
from app.services.alerts import AlertContext, AlertThresholds, evaluate_alerts
from app.services.report_queries import EquipmentRow, ExpenseRow, PaymentRow, TechnicianRow
from app.services.report_utils import (
    DateRange,
    average_repair_days,
    day_range,
    find_overdue,
    group_by_technician,
    iter_months,
    last_day_of_month,
    money,
    percentage,
    resolve_range,
    trailing_days,
)

logger = logging.getLogger(__name__)

DAILY_REVENUE_DAYS = 30
SINGLE_BUCKET_MAX_DAYS = 31
TOTAL_BUCKET = "Total"


@dataclass
class FinancialData:
    """Rows fetched for one financial report."""

    dated_payments: list[PaymentRow] = field(default_factory=list)
    dated_expenses: list[ExpenseRow] = field(default_factory=list)
    entered_equipment: list[EquipmentRow] = field(default_factory=list)
    entered_payments: list[PaymentRow] = field(default_factory=list)
    delivered_payments: list[PaymentRow] = field(default_factory=list)
    repair_equipment: list[EquipmentRow] = field(default_factory=list)
    technicians: list[TechnicianRow] = field(default_factory=list)
    worker_expenses: list[ExpenseRow] = field(default_factory=list)


def sum_income(payments: Iterable[PaymentRow], window: Optional[DateRange] = None) -> Decimal:
    """Recognized income of payments dated in the window, ignoring CANCELLED equipment."""
    return sum(
        (
            recognized_income(p.total_amount, p.advance_amount)
            for p in payments
            if p.equipment_status != EquipmentStatus.CANCELLED
            and (window is None or window.contains(p.payment_date))
        ),
        ZERO,
    )


def sum_expenses(expenses: Iterable[ExpenseRow], window: DateRange) -> Decimal:
    return sum((e.amount for e in expenses if window.contains(e.expense_date)), ZERO)


def pending_payments(delivered_payments: Iterable[PaymentRow]) -> Decimal:
    """Outstanding balance of the active record of every delivered equipment."""
    latest: dict[str, PaymentRow] = {}
    for p in delivered_payments:
        current = latest.get(p.equipment_id)
        key = (p.payment_date, p.created_at or p.payment_date)
        if current is None or key >= (current.payment_date, current.created_at or current.payment_date):
            latest[p.equipment_id] = p
    total = ZERO
    for p in latest.values():
        status = derive_payment_status(p.total_amount, p.advance_amount)
        if status in (PaymentStatus.PENDING, PaymentStatus.PARTIAL):
            total += remaining_amount(p.total_amount, p.advance_amount)
    return total


def compute_kpis(
    today_income: Decimal,
    today_expenses: Decimal,
    month_income: Decimal,
    month_expenses: Decimal,
    pending: Decimal,
) -> FinancialKpis:
    """Derived KPIs. Margins against zero income are 0."""
    today_profit = today_income - today_expenses
    month_profit = month_income - month_expenses
    return FinancialKpis(
        today_income=money(today_income),
        today_expenses=money(today_expenses),
        today_profit=money(today_profit),
        today_profit_margin=percentage(today_profit, today_income),
        month_income=money(month_income),
        month_expenses=money(month_expenses),
        month_profit=money(month_profit),
        profit_margin=percentage(month_profit, month_income),
        pending_payments=money(pending),
        total_revenue=money(month_income),
    )


def daily_revenue(
    payments: Sequence[PaymentRow], expenses: Sequence[ExpenseRow], today: date
) -> list[DailyRevenue]:
    """One bucket per calendar day for the trailing window, zero days included."""
    income_by_day: dict[date, Decimal] = defaultdict(lambda: ZERO)
    expense_by_day: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for p in payments:
        if p.equipment_status != EquipmentStatus.CANCELLED:
            income_by_day[p.payment_date.date()] += recognized_income(p.total_amount, p.advance_amount)
    for e in expenses:
        expense_by_day[e.expense_date.date()] += e.amount

    buckets = []
    for day in trailing_days(today, DAILY_REVENUE_DAYS):
        income, spent = income_by_day[day], expense_by_day[day]
        buckets.append(
            DailyRevenue(
                date=day.isoformat(),
                income=money(income),
                expenses=money(spent),
                profit=money(income - spent),
            )
        )
    return buckets


def _period_bucket(
    label: str,
    window: DateRange,
    equipment: Sequence[EquipmentRow],
    income_by_equipment: dict[str, Decimal],
    expenses: Sequence[ExpenseRow],
) -> PeriodRevenue:
    entered = [e for e in equipment if window.contains(e.entry_date)]
    income = sum(
        (
            income_by_equipment.get(e.id, ZERO)
            for e in entered
            if e.status != EquipmentStatus.CANCELLED
        ),
        ZERO,
    )
    spent = sum_expenses(expenses, window)
    profit = income - spent
    return PeriodRevenue(
        period=label,
        income=money(income),
        expenses=money(spent),
        profit=money(profit),
        profit_margin=percentage(profit, income),
        equipment_count=len(entered),
    )


def period_revenue(
    date_range: DateRange,
    equipment: Sequence[EquipmentRow],
    equipment_payments: Sequence[PaymentRow],
    expenses: Sequence[ExpenseRow],
) -> list[PeriodRevenue]:
    """A single "Total" bucket for ranges up to 31 days, else one per month.

    Income is attributed to the bucket of the equipment's entry date.
    """
    income_by_equipment: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for p in equipment_payments:
        income_by_equipment[p.equipment_id] += recognized_income(p.total_amount, p.advance_amount)

    if date_range.span_days <= SINGLE_BUCKET_MAX_DAYS:
        return [_period_bucket(TOTAL_BUCKET, date_range, equipment, income_by_equipment, expenses)]

    buckets = []
    for year, month in iter_months(date_range):
        window = DateRange(
            max(date_range.start, datetime(year, month, 1)),
            min(date_range.end, datetime.combine(last_day_of_month(year, month), time.max)),
        )
        buckets.append(
            _period_bucket(f"{year:04d}-{month:02d}", window, equipment, income_by_equipment, expenses)
        )
    return buckets


def _technician_names(
    technicians: Sequence[TechnicianRow], equipment: Sequence[EquipmentRow]
) -> dict[int, str]:
    names = {t.id: t.name for t in technicians}
    for e in equipment:
        if e.assigned_technician_id is not None and e.assigned_technician_name:
            names.setdefault(e.assigned_technician_id, e.assigned_technician_name)
    return names


def technician_performance(
    date_range: DateRange,
    equipment: Sequence[EquipmentRow],
    equipment_payments: Sequence[PaymentRow],
    names: dict[int, str],
) -> list[TechnicianPerformance]:
    """Per-technician workload and revenue over equipment entered in the range."""
    income_by_equipment: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for p in equipment_payments:
        income_by_equipment[p.equipment_id] += recognized_income(p.total_amount, p.advance_amount)

    active = [e for e in equipment if e.status != EquipmentStatus.CANCELLED]
    rows = []
    for technician_id, assigned in group_by_technician(active).items():
        completed = [
            e for e in assigned if e.delivery_date is not None and e.delivery_date <= date_range.end
        ]
        revenue = sum((income_by_equipment.get(e.id, ZERO) for e in completed), ZERO)
        rows.append(
            TechnicianPerformance(
                technician_id=technician_id,
                technician_name=names.get(technician_id, f"Technician {technician_id}"),
                assigned_count=len(assigned),
                completed_count=len(completed),
                revenue=money(revenue),
                average_days=average_repair_days(completed),
            )
        )
    rows.sort(key=lambda r: (-r.revenue, r.technician_name, r.technician_id))
    return rows


def technician_expenses(
    technicians: Sequence[TechnicianRow],
    expenses: Sequence[ExpenseRow],
    technician_id: Optional[int] = None,
) -> list[TechnicianExpenseSummary]:
    """ADVANCE and SALARY totals per technician, matched by beneficiary name."""
    by_name: dict[str, list[ExpenseRow]] = defaultdict(list)
    for e in expenses:
        if e.type in (ExpenseType.ADVANCE, ExpenseType.SALARY):
            by_name[e.beneficiary.strip().lower()].append(e)

    rows = []
    for technician in technicians:
        if technician_id is not None and technician.id != technician_id:
            continue
        matched = by_name.get(technician.name.strip().lower(), [])
        if not matched:
            continue
        advances = [e.amount for e in matched if e.type == ExpenseType.ADVANCE]
        salaries = [e.amount for e in matched if e.type == ExpenseType.SALARY]
        total_advances, total_salaries = sum(advances, ZERO), sum(salaries, ZERO)
        rows.append(
            TechnicianExpenseSummary(
                technician_id=technician.id,
                technician_name=technician.name,
                total_advances=money(total_advances),
                total_salaries=money(total_salaries),
                total_expenses=money(total_advances + total_salaries),
                advances_count=len(advances),
                salaries_count=len(salaries),
            )
        )
    rows.sort(key=lambda r: (-r.total_expenses, r.technician_name, r.technician_id))
    return rows


def build_financial_report(
    data: FinancialData,
    date_range: DateRange,
    now: datetime,
    technician_id: Optional[int] = None,
    thresholds: Optional[AlertThresholds] = None,
) -> FinancialReport:
    """Assemble the report from fetched rows. Same rows and ``now``, same report."""
    thresholds = thresholds or AlertThresholds()
    today = day_range(now.date())

    month_income = sum_income(data.dated_payments, date_range)
    month_expenses = sum_expenses(data.dated_expenses, date_range)
    pending = pending_payments(data.delivered_payments)
    kpis = compute_kpis(
        sum_income(data.dated_payments, today),
        sum_expenses(data.dated_expenses, today),
        month_income,
        month_expenses,
        pending,
    )

    daily_window = DateRange(
        datetime.combine(now.date() - timedelta(days=DAILY_REVENUE_DAYS - 1), time.min), today.end
    )
    daily = daily_revenue(
        [p for p in data.dated_payments if daily_window.contains(p.payment_date)],
        [e for e in data.dated_expenses if daily_window.contains(e.expense_date)],
        now.date(),
    )

    equipment = data.entered_equipment
    repair = data.repair_equipment
    if technician_id is not None:
        equipment = [e for e in equipment if e.assigned_technician_id == technician_id]
        repair = [e for e in repair if e.assigned_technician_id == technician_id]

    names = _technician_names(data.technicians, data.entered_equipment)
    overdue = find_overdue(repair, now, thresholds.overdue_days)
    alerts = evaluate_alerts(
        AlertContext(
            overdue_equipment=overdue,
            pending_payments=float(pending),
            month_expenses=float(month_expenses),
            month_income=float(month_income),
            thresholds=thresholds,
        )
    )

    return FinancialReport(
        range_start=date_range.start,
        range_end=date_range.end,
        kpis=kpis,
        daily_revenue=daily,
        period_revenue=period_revenue(date_range, equipment, data.entered_payments, data.dated_expenses),
        technician_performance=technician_performance(
            date_range, equipment, data.entered_payments, names
        ),
        technician_expenses=technician_expenses(data.technicians, data.worker_expenses, technician_id),
        alerts=alerts,
    )


async def compute_financial_report(
    session_factory: async_sessionmaker,
    actor: Actor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
    now: Optional[datetime] = None,
    thresholds: Optional[AlertThresholds] = None,
) -> FinancialReport:
    """Fetch the report's rows concurrently and build the financial report."""
    ensure_permission(actor, Permission.VIEW_FINANCIAL_REPORTS)
    now = now or datetime.utcnow()
    thresholds = thresholds or AlertThresholds.from_settings()
    date_range = resolve_range(start_date, end_date, now)

    # Dated rows must cover the analysis range, today and the trailing 30 days
    daily_start = datetime.combine(now.date() - timedelta(days=DAILY_REVENUE_DAYS - 1), time.min)
    window = DateRange(
        min(date_range.start, daily_start),
        max(date_range.end, day_range(now.date()).end),
    )

    rows = await q.gather_queries(
        session_factory,
        {
            "dated_payments": q.query(q.payments_dated_in, window),
            "dated_expenses": q.query(q.expenses_dated_in, window),
            "entered_equipment": q.query(q.equipment_entered_in, date_range),
            "entered_payments": q.query(q.payments_for_equipment_entered_in, date_range),
            "delivered_payments": q.query(q.payments_on_delivered_equipment),
            "repair_equipment": q.query(q.equipment_in_repair),
            "technicians": q.query(q.technicians),
            "worker_expenses": q.query(q.worker_expenses_dated_in, date_range),
        },
    )
    report = build_financial_report(FinancialData(**rows), date_range, now, technician_id, thresholds)
    logger.debug(
        f"Financial report built for {date_range.start:%Y-%m-%d}..{date_range.end:%Y-%m-%d}",
        extra={"user_id": actor.id, "alerts": len(report.alerts)},
    )
    return report
