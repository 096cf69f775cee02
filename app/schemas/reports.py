"""Report and distribution response schemas.

Money is reported as floats rounded to two decimals.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional
from decimal import Decimal
from enum import Enum

from app.models.payment import PaymentMethod
from app.schemas.expense import ExpenseResponse


class AlertSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AlertType(str, Enum):
    OVERDUE = "OVERDUE"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    HIGH_EXPENSES = "HIGH_EXPENSES"
    LOW_REVENUE = "LOW_REVENUE"


class Alert(BaseModel):
    """A human-readable operational alert."""
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    equipment_id: Optional[str] = None
    value: Optional[float] = None


class OverdueEquipment(BaseModel):
    equipment_id: str
    code: str
    customer_name: Optional[str] = None
    technician_name: Optional[str] = None
    entry_date: datetime
    days_in_repair: int


# Financial report

class FinancialKpis(BaseModel):
    today_income: float
    today_expenses: float
    today_profit: float
    today_profit_margin: float
    month_income: float
    month_expenses: float
    month_profit: float
    profit_margin: float
    pending_payments: float
    total_revenue: float


class DailyRevenue(BaseModel):
    date: str  # YYYY-MM-DD
    income: float
    expenses: float
    profit: float


class PeriodRevenue(BaseModel):
    period: str  # "Total" or YYYY-MM
    income: float
    expenses: float
    profit: float
    profit_margin: float
    equipment_count: int


class TechnicianPerformance(BaseModel):
    technician_id: int
    technician_name: str
    assigned_count: int
    completed_count: int
    revenue: float
    average_days: float


class TechnicianExpenseSummary(BaseModel):
    technician_id: int
    technician_name: str
    total_advances: float
    total_salaries: float
    total_expenses: float
    advances_count: int
    salaries_count: int


class FinancialReport(BaseModel):
    range_start: datetime
    range_end: datetime
    kpis: FinancialKpis
    daily_revenue: list[DailyRevenue]
    period_revenue: list[PeriodRevenue]
    technician_performance: list[TechnicianPerformance]
    technician_expenses: list[TechnicianExpenseSummary]
    alerts: list[Alert]


# Operational report

class OperationalMetrics(BaseModel):
    total_equipments: int
    in_repair: int
    ready_for_delivery: int
    delivered: int
    cancelled: int


class CountShare(BaseModel):
    key: str
    count: int
    percentage: float


class RepairTimes(BaseModel):
    average_days: float
    median_days: float
    min_days: float
    max_days: float
    total: int


class HistogramBucket(BaseModel):
    range: str
    count: int


class OperationalTechnicianPerformance(BaseModel):
    technician_id: int
    technician_name: str
    assigned_count: int
    completed_count: int
    average_days: float


class OperationalReport(BaseModel):
    range_start: datetime
    range_end: datetime
    metrics: OperationalMetrics
    equipments_by_status: list[CountShare]
    equipments_by_type: list[CountShare]
    repair_times: RepairTimes
    repair_time_distribution: list[HistogramBucket]
    technician_performance: list[OperationalTechnicianPerformance]
    overdue_equipments: list[OverdueEquipment]
    alerts: list[Alert]


# Technician payments

class TechnicianPaymentsReport(BaseModel):
    items: list[ExpenseResponse]
    total_amount: float
    total_advances: float
    total_salaries: float
    count: int


class DistributionRequest(BaseModel):
    """Net period surplus to split among active technicians."""
    period_income: Decimal = Field(..., ge=0)
    period_expenses: Decimal = Field(..., ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.CASH


class TechnicianPaymentLine(BaseModel):
    technician_id: int
    technician_name: str
    existing_payments: float
    final_payment: float


class DistributionResponse(BaseModel):
    difference: float
    technician_count: int
    raw_per_technician: float
    rounded_per_technician: float
    capped_per_technician: float
    cap_applied: bool
    cap: float
    rounding_step: float
    total_distributed: float
    remainder: float
    lost_to_rounding: float
    lost_to_capping: float
    payments: list[TechnicianPaymentLine]
    status: str  # ok | no_technicians | no_surplus

    @classmethod
    def from_distribution(cls, dist) -> "DistributionResponse":
        """Build the response from a calculator Distribution."""
        return cls(
            difference=_money(dist.difference),
            technician_count=dist.technician_count,
            raw_per_technician=_money(dist.raw_per_technician),
            rounded_per_technician=_money(dist.rounded_per_technician),
            capped_per_technician=_money(dist.capped_per_technician),
            cap_applied=dist.cap_applied,
            cap=_money(dist.cap),
            rounding_step=_money(dist.rounding_step),
            total_distributed=_money(dist.total_distributed),
            remainder=_money(dist.remainder),
            lost_to_rounding=_money(dist.lost_to_rounding),
            lost_to_capping=_money(dist.lost_to_capping),
            payments=[
                TechnicianPaymentLine(
                    technician_id=p.technician_id,
                    technician_name=p.technician_name,
                    existing_payments=_money(p.existing_payments),
                    final_payment=_money(p.final_payment),
                )
                for p in dist.payments
            ],
            status=dist.status,
        )


class PostingResult(BaseModel):
    technician_id: int
    technician_name: str
    amount: float
    success: bool
    expense_id: Optional[str] = None
    error: Optional[str] = None


class DistributionCommitResponse(BaseModel):
    distribution: DistributionResponse
    posted: int
    failed: int
    results: list[PostingResult]


def _money(value) -> float:
    return round(float(value), 2)
