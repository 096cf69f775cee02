"""Date, grouping and rounding primitives shared by the report engines."""

import calendar
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from app.exceptions import ValidationError
from app.models.equipment import Equipment, EquipmentStatus
from app.schemas.reports import OverdueEquipment

SECONDS_PER_DAY = 86400
END_OF_DAY = time(23, 59, 59, 999999)


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def span_days(self) -> int:
        return days_between(self.start, self.end)

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start <= moment <= self.end


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, rounding any partial day up."""
    elapsed = (end - start).total_seconds()
    if elapsed <= 0:
        return 0
    return math.ceil(elapsed / SECONDS_PER_DAY)


def day_range(day: date) -> DateRange:
    return DateRange(datetime.combine(day, time.min), datetime.combine(day, END_OF_DAY))


def month_range(now: datetime) -> DateRange:
    """From the first instant of now's month up to now."""
    return DateRange(datetime(now.year, now.month, 1), now)


def resolve_range(
    start_date: Optional[date],
    end_date: Optional[date],
    now: datetime,
) -> DateRange:
    """Caller-supplied whole days when both ends are given, else month to date."""
    if start_date is None or end_date is None:
        return month_range(now)
    if start_date > end_date:
        raise ValidationError(
            "start_date must not be after end_date",
            errors=[{"field": "start_date", "message": "after end_date"}],
        )
    return DateRange(
        datetime.combine(start_date, time.min),
        datetime.combine(end_date, END_OF_DAY),
    )


def iter_months(date_range: DateRange) -> list[tuple[int, int]]:
    """Every (year, month) the range touches, ascending and without gaps."""
    months = []
    year, month = date_range.start.year, date_range.start.month
    while (year, month) <= (date_range.end.year, date_range.end.month):
        months.append((year, month))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def trailing_days(today: date, count: int) -> list[date]:
    """``count`` calendar days ending with today, oldest first."""
    return [today - timedelta(days=offset) for offset in range(count - 1, -1, -1)]


def round_half_up(value, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def money(value) -> float:
    return round_half_up(value, 2)


def percentage(part, whole) -> float:
    """part / whole * 100, or 0 when whole is zero."""
    if not whole:
        return 0.0
    return round_half_up(Decimal(str(part)) / Decimal(str(whole)) * 100, 2)


def group_by_technician(equipments: Iterable[Equipment]) -> dict[int, list[Equipment]]:
    """Assigned equipment keyed by technician id; unassigned rows are skipped."""
    grouped: dict[int, list[Equipment]] = defaultdict(list)
    for equipment in equipments:
        if equipment.assigned_technician_id is not None:
            grouped[equipment.assigned_technician_id].append(equipment)
    return dict(grouped)


def average_repair_days(equipments: Iterable[Equipment]) -> float:
    """Mean entry-to-delivery days, one decimal; 0 for no equipment."""
    days = [days_between(e.entry_date, e.delivery_date) for e in equipments]
    if not days:
        return 0.0
    return round_half_up(sum(days) / len(days), 1)


def find_overdue(
    equipments: Iterable[Equipment],
    now: datetime,
    threshold_days: int,
) -> list[OverdueEquipment]:
    """Equipment in REPAIR for more than threshold_days, longest first."""
    overdue = []
    for equipment in equipments:
        if equipment.status != EquipmentStatus.REPAIR:
            continue
        days = days_between(equipment.entry_date, now)
        if days > threshold_days:
            overdue.append(
                OverdueEquipment(
                    equipment_id=equipment.id,
                    code=equipment.code,
                    customer_name=equipment.customer_name,
                    technician_name=equipment.assigned_technician_name,
                    entry_date=equipment.entry_date,
                    days_in_repair=days,
                )
            )
    overdue.sort(key=lambda item: (-item.days_in_repair, item.code))
    return overdue
