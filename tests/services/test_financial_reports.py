"""
Tests for the financial report engine.

Most cases drive ``build_financial_report`` with hand-built rows; the
end-to-end cases run the lifecycle against a database and read the report
back through ``compute_financial_report``.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.exceptions import PermissionDeniedError
from app.models.equipment import EquipmentStatus, EquipmentType
from app.models.expense import ExpenseType
from app.models.payment import PaymentMethod
from app.models.user import UserStatus
from app.services import report_queries
from app.services.alerts import AlertThresholds
from app.services.equipment_lifecycle import create_equipment, transition
from app.services.expenses import create_expense
from app.services.financial_reports import (
    FinancialData,
    build_financial_report,
    compute_financial_report,
    pending_payments,
    period_revenue,
    sum_income,
    technician_expenses,
)
from app.services.payment_ledger import record_payment
from app.services.report_queries import EquipmentRow, ExpenseRow, PaymentRow, TechnicianRow
from app.services.report_utils import DateRange

S = EquipmentStatus
NOW = datetime(2026, 3, 20, 18, 0)
MARCH = DateRange(datetime(2026, 3, 1), NOW)


def _equipment(code, status=S.DELIVERED, technician_id=1, entry=None, delivery=None):
    return EquipmentRow(
        id=f"id-{code}",
        code=code,
        type=EquipmentType.LAPTOP,
        status=status,
        entry_date=entry or datetime(2026, 3, 2, 9, 0),
        delivery_date=delivery,
        assigned_technician_id=technician_id,
        assigned_technician_name="Ana Quispe" if technician_id == 1 else None,
        customer_name="Carla Rojas",
    )


def _payment(code, total, advance, paid=None, status=S.DELIVERED):
    paid = paid or datetime(2026, 3, 5, 10, 0)
    return PaymentRow(
        equipment_id=f"id-{code}",
        equipment_status=status,
        payment_date=paid,
        created_at=paid,
        total_amount=Decimal(total),
        advance_amount=Decimal(advance),
    )


def _expense(amount, day, type=ExpenseType.SUPPLIES, beneficiary="RJD"):
    return ExpenseRow(
        type=type,
        amount=Decimal(amount),
        beneficiary=beneficiary,
        expense_date=datetime(2026, 3, day, 12, 0),
    )


TECHNICIANS = [
    TechnicianRow(id=1, name="Ana Quispe", status=UserStatus.ACTIVE),
    TechnicianRow(id=2, name="Bruno Salas", status=UserStatus.ACTIVE),
]


class TestIncome:
    def test_cancelled_equipment_never_counts(self):
        payments = [
            _payment("A", "150.00", "150.00"),
            _payment("B", "100.00", "40.00", status=S.CANCELLED),
        ]
        assert sum_income(payments, MARCH) == Decimal("150.00")

    def test_recognized_income_is_capped_at_total(self):
        assert sum_income([_payment("A", "100.00", "130.00")], MARCH) == Decimal("100.00")

    def test_window_is_respected(self):
        payments = [_payment("A", "100.00", "100.00", paid=datetime(2026, 2, 27))]
        assert sum_income(payments, MARCH) == Decimal("0")


class TestPendingPayments:
    def test_only_active_record_counts(self):
        rows = [
            _payment("A", "150.00", "50.00", paid=datetime(2026, 3, 2)),
            _payment("A", "100.00", "100.00", paid=datetime(2026, 3, 6)),
            _payment("B", "200.00", "0.00", paid=datetime(2026, 3, 3)),
            _payment("C", "80.00", "30.00", paid=datetime(2026, 3, 4)),
        ]
        assert pending_payments(rows) == Decimal("250.00")


class TestPeriodRevenue:
    def test_short_range_is_one_total_bucket(self):
        buckets = period_revenue(
            MARCH,
            [_equipment("A"), _equipment("B", status=S.CANCELLED)],
            [_payment("A", "150.00", "150.00"), _payment("B", "90.00", "90.00", status=S.CANCELLED)],
            [_expense("40.00", 3)],
        )

        assert len(buckets) == 1
        bucket = buckets[0]
        assert bucket.period == "Total"
        assert bucket.income == 150.0
        assert bucket.expenses == 40.0
        assert bucket.profit == 110.0
        assert bucket.profit_margin == 73.33
        assert bucket.equipment_count == 2

    def test_long_range_is_monthly_without_gaps(self):
        window = DateRange(datetime(2026, 1, 10), datetime(2026, 3, 20, 23, 59))
        buckets = period_revenue(
            window,
            [_equipment("A", entry=datetime(2026, 1, 15)), _equipment("B", entry=datetime(2026, 3, 2))],
            [_payment("A", "100.00", "100.00"), _payment("B", "60.00", "60.00")],
            [],
        )

        assert [b.period for b in buckets] == ["2026-01", "2026-02", "2026-03"]
        assert [b.income for b in buckets] == [100.0, 0.0, 60.0]
        assert buckets[1].equipment_count == 0
        assert buckets[1].profit_margin == 0.0


class TestTechnicianExpenses:
    def test_matched_by_name_case_insensitive(self):
        expenses = [
            _expense("50.00", 4, ExpenseType.ADVANCE, "ana quispe"),
            _expense("200.00", 15, ExpenseType.SALARY, "Ana Quispe "),
            _expense("30.00", 6, ExpenseType.ADVANCE, "Someone Else"),
        ]
        rows = technician_expenses(TECHNICIANS, expenses)

        assert len(rows) == 1
        assert rows[0].technician_name == "Ana Quispe"
        assert rows[0].total_advances == 50.0
        assert rows[0].total_salaries == 200.0
        assert rows[0].total_expenses == 250.0
        assert (rows[0].advances_count, rows[0].salaries_count) == (1, 1)

    def test_technician_filter(self):
        expenses = [_expense("50.00", 4, ExpenseType.ADVANCE, "Ana Quispe")]
        assert technician_expenses(TECHNICIANS, expenses, technician_id=2) == []


class TestBuildFinancialReport:
    def _data(self):
        return FinancialData(
            dated_payments=[
                _payment("A", "150.00", "150.00", paid=datetime(2026, 3, 5, 10)),
                _payment("B", "200.00", "80.00", paid=datetime(2026, 3, 20, 9)),
            ],
            dated_expenses=[_expense("40.00", 5), _expense("10.00", 20)],
            entered_equipment=[
                _equipment("A", delivery=datetime(2026, 3, 5, 9)),
                _equipment("B", status=S.REPAIR, technician_id=2, entry=datetime(2026, 3, 3)),
            ],
            entered_payments=[
                _payment("A", "150.00", "150.00"),
                _payment("B", "200.00", "80.00", status=S.REPAIR),
            ],
            delivered_payments=[_payment("A", "150.00", "150.00")],
            repair_equipment=[
                _equipment("B", status=S.REPAIR, technician_id=2, entry=datetime(2026, 3, 3)),
            ],
            technicians=TECHNICIANS,
        )

    def test_kpis(self):
        report = build_financial_report(self._data(), MARCH, NOW)
        kpis = report.kpis

        assert kpis.month_income == 230.0
        assert kpis.month_expenses == 50.0
        assert kpis.month_profit == 180.0
        assert kpis.profit_margin == 78.26
        assert kpis.today_income == 80.0
        assert kpis.today_expenses == 10.0
        assert kpis.today_profit == 70.0
        assert kpis.today_profit_margin == 87.5
        assert kpis.pending_payments == 0.0
        assert kpis.total_revenue == kpis.month_income

    def test_daily_revenue_has_thirty_days(self):
        report = build_financial_report(self._data(), MARCH, NOW)
        daily = report.daily_revenue

        assert len(daily) == 30
        assert daily[-1].date == "2026-03-20"
        assert daily[0].date == "2026-02-19"
        assert daily[-1].income == 80.0
        assert daily[0].income == 0.0
        assert sum(d.income for d in daily) == 230.0

    def test_technician_performance(self):
        report = build_financial_report(self._data(), MARCH, NOW)
        performance = {p.technician_id: p for p in report.technician_performance}

        assert performance[1].technician_name == "Ana Quispe"
        assert performance[1].completed_count == 1
        assert performance[1].revenue == 150.0
        assert performance[1].average_days == 3.0
        assert performance[2].completed_count == 0
        assert performance[2].revenue == 0.0
        assert report.technician_performance[0].technician_id == 1

    def test_overdue_repair_raises_alert(self):
        report = build_financial_report(self._data(), MARCH, NOW)
        overdue = [a for a in report.alerts if a.id == "overdue-id-B"]
        assert len(overdue) == 1

    def test_no_income_zero_margins(self):
        data = FinancialData(dated_expenses=[_expense("40.00", 5)])
        report = build_financial_report(data, MARCH, NOW)

        assert report.kpis.profit_margin == 0.0
        assert report.kpis.month_profit == -40.0
        assert report.period_revenue[0].profit_margin == 0.0

    def test_empty_data_builds(self):
        report = build_financial_report(FinancialData(), MARCH, NOW, thresholds=AlertThresholds())

        assert report.kpis.month_income == 0.0
        assert report.technician_performance == []
        assert [a.id for a in report.alerts] == ["low-revenue"]

    def test_same_rows_same_report(self):
        first = build_financial_report(self._data(), MARCH, NOW)
        second = build_financial_report(self._data(), MARCH, NOW)
        assert first.model_dump_json() == second.model_dump_json()


DAY1 = datetime(2026, 5, 4, 9, 0)


def day(offset: int, hour: int = 9) -> datetime:
    return DAY1.replace(hour=hour) + timedelta(days=offset)


class TestComputeFinancialReport:
    @pytest.mark.asyncio
    async def test_lifecycle_scenario(
        self, db, session_factory, admin_actor, technician_user, customer
    ):
        equipment = await create_equipment(
            db, admin_actor, customer.id, EquipmentType.PC, "Overheats under load", now=day(0)
        )
        equipment_id = equipment.id
        await transition(
            db,
            equipment_id,
            S.REPAIR,
            admin_actor,
            assigned_technician_id=technician_user.id,
            now=day(0, 10),
        )
        await transition(db, equipment_id, S.REPAIRED, admin_actor, now=day(1))
        await record_payment(
            db,
            equipment_id,
            admin_actor,
            PaymentMethod.CASH,
            total_amount=Decimal("150.00"),
            advance_amount=Decimal("150.00"),
            now=day(1, 15),
        )
        await transition(db, equipment_id, S.DELIVERED, admin_actor, now=day(2))

        report = await compute_financial_report(
            session_factory,
            admin_actor,
            start_date=date(2026, 5, 4),
            end_date=date(2026, 5, 6),
            now=day(2, 18),
        )

        assert report.period_revenue[0].period == "Total"
        assert report.period_revenue[0].income >= 150.0
        performance = report.technician_performance[0]
        assert performance.technician_id == technician_user.id
        assert performance.completed_count == 1
        assert performance.revenue >= 150.0
        assert performance.average_days == 2.0
        assert report.kpis.month_income == 150.0
        assert report.kpis.pending_payments == 0.0

    @pytest.mark.asyncio
    async def test_cancelled_refund_is_expense_not_negative_income(
        self, db, session_factory, admin_actor, customer
    ):
        equipment = await create_equipment(
            db, admin_actor, customer.id, EquipmentType.PLOTTER, "Carriage stuck", now=day(0)
        )
        equipment_id = equipment.id
        await record_payment(
            db,
            equipment_id,
            admin_actor,
            PaymentMethod.YAPE,
            total_amount=Decimal("300.00"),
            advance_amount=Decimal("100.00"),
            now=day(0, 11),
        )
        await transition(db, equipment_id, S.CANCELLED, admin_actor, now=day(1))

        report = await compute_financial_report(
            session_factory,
            admin_actor,
            start_date=date(2026, 5, 1),
            end_date=date(2026, 5, 31),
            now=day(1, 18),
        )

        assert report.kpis.month_income == 0.0
        assert report.kpis.month_expenses == 100.0

    @pytest.mark.asyncio
    async def test_repeatable_output(self, db, session_factory, admin_actor, customer):
        await create_equipment(db, admin_actor, customer.id, EquipmentType.PC, "Dead keyboard", now=day(0))
        await create_expense(
            db, admin_actor, ExpenseType.RENT, "May rent", Decimal("500.00"), PaymentMethod.TRANSFER,
            expense_date=day(0, 12),
        )

        args = dict(start_date=date(2026, 5, 1), end_date=date(2026, 5, 31), now=day(3))
        first = await compute_financial_report(session_factory, admin_actor, **args)
        second = await compute_financial_report(session_factory, admin_actor, **args)

        assert first.model_dump_json() == second.model_dump_json()

    @pytest.mark.asyncio
    async def test_failed_sub_query_counts_as_empty(
        self, db, session_factory, admin_actor, monkeypatch, caplog
    ):
        await create_expense(
            db, admin_actor, ExpenseType.SUPPLIES, "Thermal paste", Decimal("25.00"), PaymentMethod.CASH,
            expense_date=day(0, 12),
        )

        async def broken(session, window):
            raise RuntimeError("statement timeout")

        monkeypatch.setattr(report_queries, "payments_dated_in", broken)

        report = await compute_financial_report(
            session_factory,
            admin_actor,
            start_date=date(2026, 5, 1),
            end_date=date(2026, 5, 31),
            now=day(1),
        )

        assert report.kpis.month_income == 0.0
        assert report.kpis.month_expenses == 25.0
        assert "dated_payments" in caplog.text

    @pytest.mark.asyncio
    async def test_technicians_cannot_read(self, session_factory, technician_actor):
        with pytest.raises(PermissionDeniedError):
            await compute_financial_report(session_factory, technician_actor, now=NOW)
