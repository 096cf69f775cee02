"""
Alert rule set.

A rule is any callable taking an ``AlertContext`` and returning a list of
``Alert``. ``evaluate_alerts`` runs the rules in order and sorts the result
by severity; alerts of equal severity keep rule order. Alert ids are derived
from what triggered them, so the same input always yields the same output.
"""

from dataclasses import dataclass, field
from typing import Callable, Sequence

from app.config import settings
from app.schemas.reports import Alert, AlertSeverity, AlertType, OverdueEquipment

SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}


@dataclass(frozen=True)
class AlertThresholds:
    overdue_days: int = 14
    pending_payments: float = 5000.0
    pending_payments_high: float = 10000.0
    high_expense_ratio: float = 0.7
    monthly_income_target: float = 5000.0

    @classmethod
    def from_settings(cls) -> "AlertThresholds":
        return cls(
            overdue_days=settings.OVERDUE_REPAIR_DAYS,
            pending_payments=settings.PENDING_PAYMENTS_ALERT_THRESHOLD,
            pending_payments_high=settings.PENDING_PAYMENTS_HIGH_THRESHOLD,
            high_expense_ratio=settings.HIGH_EXPENSE_RATIO,
            monthly_income_target=settings.MONTHLY_INCOME_TARGET,
        )


@dataclass(frozen=True)
class AlertContext:
    overdue_equipment: Sequence[OverdueEquipment]
    pending_payments: float
    month_expenses: float
    month_income: float
    thresholds: AlertThresholds = field(default_factory=AlertThresholds)


AlertRule = Callable[[AlertContext], list[Alert]]


def overdue_rule(ctx: AlertContext) -> list[Alert]:
    alerts = []
    for item in ctx.overdue_equipment:
        if item.days_in_repair > 30:
            severity = AlertSeverity.CRITICAL
        elif item.days_in_repair > 21:
            severity = AlertSeverity.HIGH
        else:
            severity = AlertSeverity.MEDIUM
        alerts.append(
            Alert(
                id=f"overdue-{item.equipment_id}",
                type=AlertType.OVERDUE,
                severity=severity,
                title=f"Equipment {item.code} overdue",
                message=(
                    f"{item.code} has been in repair for {item.days_in_repair} days"
                    + (f" ({item.technician_name})" if item.technician_name else "")
                ),
                equipment_id=item.equipment_id,
                value=float(item.days_in_repair),
            )
        )
    return alerts


def pending_payments_rule(ctx: AlertContext) -> list[Alert]:
    pending = ctx.pending_payments
    if pending <= ctx.thresholds.pending_payments:
        return []
    high = pending > ctx.thresholds.pending_payments_high
    return [
        Alert(
            id="pending-payments",
            type=AlertType.PENDING_PAYMENT,
            severity=AlertSeverity.HIGH if high else AlertSeverity.MEDIUM,
            title="High pending payments",
            message=f"{pending:.2f} is still owed on delivered equipment",
            value=round(pending, 2),
        )
    ]


def high_expenses_rule(ctx: AlertContext) -> list[Alert]:
    income, expenses = ctx.month_income, ctx.month_expenses
    if income <= 0 or expenses <= ctx.thresholds.high_expense_ratio * income:
        return []
    over_income = expenses > income
    return [
        Alert(
            id="high-expenses",
            type=AlertType.HIGH_EXPENSES,
            severity=AlertSeverity.CRITICAL if over_income else AlertSeverity.HIGH,
            title="Expenses exceed income" if over_income else "High expenses",
            message=f"Expenses of {expenses:.2f} against income of {income:.2f}",
            value=round(expenses / income * 100, 2),
        )
    ]


def low_revenue_rule(ctx: AlertContext) -> list[Alert]:
    target = ctx.thresholds.monthly_income_target
    income = ctx.month_income
    if income >= target:
        return []
    return [
        Alert(
            id="low-revenue",
            type=AlertType.LOW_REVENUE,
            severity=AlertSeverity.HIGH if income < target / 2 else AlertSeverity.MEDIUM,
            title="Revenue below target",
            message=f"Income of {income:.2f} is below the target of {target:.2f}",
            value=round(income, 2),
        )
    ]


DEFAULT_RULES: tuple[AlertRule, ...] = (
    overdue_rule,
    pending_payments_rule,
    high_expenses_rule,
    low_revenue_rule,
)

OPERATIONAL_RULES: tuple[AlertRule, ...] = (overdue_rule,)


def evaluate_alerts(ctx: AlertContext, rules: Sequence[AlertRule] = DEFAULT_RULES) -> list[Alert]:
    alerts = [alert for rule in rules for alert in rule(ctx)]
    return sorted(alerts, key=lambda alert: SEVERITY_ORDER[alert.severity])
