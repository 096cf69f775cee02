"""Operational report engine: equipment counts, repair times and overdue work.

No money is involved. Shares the day counting, technician grouping and
overdue detection with the financial engine through ``report_utils``.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from statistics import mean, median
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.equipment import EquipmentStatus, EquipmentType
from app.schemas.reports import (
    CountShare,
    HistogramBucket,
    OperationalMetrics,
    OperationalReport,
    OperationalTechnicianPerformance,
    RepairTimes,
)
from app.security.rbac import Actor, Permission, ensure_permission
from app.services import report_queries as q
from app.services.alerts import OPERATIONAL_RULES, AlertContext, AlertThresholds, evaluate_alerts
from app.services.report_queries import EquipmentRow, TechnicianRow
from app.services.report_utils import (
    DateRange,
    average_repair_days,
    days_between,
    find_overdue,
    group_by_technician,
    percentage,
    resolve_range,
    round_half_up,
)

logger = logging.getLogger(__name__)

# (label, lowest day, highest day); None means unbounded
REPAIR_TIME_BUCKETS = (
    ("0-3", 0, 3),
    ("4-7", 4, 7),
    ("8-14", 8, 14),
    ("15-30", 15, 30),
    ("31+", 31, None),
)


@dataclass
class OperationalData:
    equipment: list[EquipmentRow] = field(default_factory=list)
    repair_equipment: list[EquipmentRow] = field(default_factory=list)
    technicians: list[TechnicianRow] = field(default_factory=list)


def operational_metrics(equipment: Sequence[EquipmentRow]) -> OperationalMetrics:
    counts = Counter(e.status for e in equipment)
    return OperationalMetrics(
        total_equipments=len(equipment),
        in_repair=counts[EquipmentStatus.RECEIVED] + counts[EquipmentStatus.REPAIR],
        ready_for_delivery=counts[EquipmentStatus.REPAIRED],
        delivered=counts[EquipmentStatus.DELIVERED],
        cancelled=counts[EquipmentStatus.CANCELLED],
    )


def count_shares(values: Sequence, order: Sequence) -> list[CountShare]:
    """Count and percentage per value present, in enum order."""
    counts = Counter(values)
    total = len(values)
    return [
        CountShare(key=member.value, count=counts[member], percentage=percentage(counts[member], total))
        for member in order
        if counts[member]
    ]


def repair_days(equipment: Sequence[EquipmentRow]) -> list[int]:
    return [
        days_between(e.entry_date, e.delivery_date) for e in equipment if e.delivery_date is not None
    ]


def repair_times(days: Sequence[int]) -> RepairTimes:
    if not days:
        return RepairTimes(average_days=0.0, median_days=0.0, min_days=0.0, max_days=0.0, total=0)
    return RepairTimes(
        average_days=round_half_up(mean(days), 1),
        median_days=round_half_up(median(days), 1),
        min_days=float(min(days)),
        max_days=float(max(days)),
        total=len(days),
    )


def repair_time_distribution(days: Sequence[int]) -> list[HistogramBucket]:
    """Histogram of repair days; every bucket is always present."""
    buckets = []
    for label, low, high in REPAIR_TIME_BUCKETS:
        count = sum(1 for d in days if d >= low and (high is None or d <= high))
        buckets.append(HistogramBucket(range=label, count=count))
    return buckets


def technician_workload(
    date_range: DateRange,
    equipment: Sequence[EquipmentRow],
    technicians: Sequence[TechnicianRow],
) -> list[OperationalTechnicianPerformance]:
    names = {t.id: t.name for t in technicians}
    active = [e for e in equipment if e.status != EquipmentStatus.CANCELLED]
    rows = []
    for technician_id, assigned in group_by_technician(active).items():
        completed = [
            e for e in assigned if e.delivery_date is not None and e.delivery_date <= date_range.end
        ]
        name = names.get(technician_id) or assigned[0].assigned_technician_name
        rows.append(
            OperationalTechnicianPerformance(
                technician_id=technician_id,
                technician_name=name or f"Technician {technician_id}",
                assigned_count=len(assigned),
                completed_count=len(completed),
                average_days=average_repair_days(completed),
            )
        )
    rows.sort(key=lambda r: (-r.completed_count, r.technician_name, r.technician_id))
    return rows


def build_operational_report(
    data: OperationalData,
    date_range: DateRange,
    now: datetime,
    thresholds: Optional[AlertThresholds] = None,
) -> OperationalReport:
    thresholds = thresholds or AlertThresholds()
    equipment = data.equipment
    days = repair_days(equipment)
    overdue = find_overdue(data.repair_equipment, now, thresholds.overdue_days)
    alerts = evaluate_alerts(
        AlertContext(
            overdue_equipment=overdue,
            pending_payments=0.0,
            month_expenses=0.0,
            month_income=0.0,
            thresholds=thresholds,
        ),
        rules=OPERATIONAL_RULES,
    )
    return OperationalReport(
        range_start=date_range.start,
        range_end=date_range.end,
        metrics=operational_metrics(equipment),
        equipments_by_status=count_shares([e.status for e in equipment], list(EquipmentStatus)),
        equipments_by_type=count_shares([e.type for e in equipment], list(EquipmentType)),
        repair_times=repair_times(days),
        repair_time_distribution=repair_time_distribution(days),
        technician_performance=technician_workload(date_range, equipment, data.technicians),
        overdue_equipments=overdue,
        alerts=alerts,
    )


async def compute_operational_report(
    session_factory: async_sessionmaker,
    actor: Actor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    technician_id: Optional[int] = None,
    type: Optional[EquipmentType] = None,
    status: Optional[EquipmentStatus] = None,
    now: Optional[datetime] = None,
    thresholds: Optional[AlertThresholds] = None,
) -> OperationalReport:
    ensure_permission(actor, Permission.VIEW_OPERATIONAL_REPORTS)
    now = now or datetime.utcnow()
    thresholds = thresholds or AlertThresholds.from_settings()
    date_range = resolve_range(start_date, end_date, now)

    queries = {
        "equipment": q.query(q.equipment_entered_in, date_range, technician_id, type, status),
        "technicians": q.query(q.technicians),
    }
    # A status filter other than REPAIR leaves nothing to flag as overdue
    if status in (None, EquipmentStatus.REPAIR):
        queries["repair_equipment"] = q.query(q.equipment_in_repair, technician_id, type)

    rows = await q.gather_queries(session_factory, queries)
    return build_operational_report(OperationalData(**rows), date_range, now, thresholds)
