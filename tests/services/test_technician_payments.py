"""
Tests for the technician payment distribution.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.exceptions import PermissionDeniedError
from app.models.expense import Expense, ExpenseType
from app.models.user import User, UserStatus
from app.services.report_queries import TechnicianRow
from app.services.report_utils import DateRange
from app.services.technician_payments import (
    STATUS_NO_SURPLUS,
    STATUS_NO_TECHNICIANS,
    STATUS_OK,
    Distribution,
    TechnicianPayment,
    calculate_distribution,
    commit_distribution,
    prepare_distribution,
    round_down,
)

from tests.factories import InactiveTechnicianFactory, SalaryExpenseFactory, TechnicianUserFactory

TECHS = [
    TechnicianRow(id=1, name="A", status=UserStatus.ACTIVE),
    TechnicianRow(id=2, name="B", status=UserStatus.ACTIVE),
    TechnicianRow(id=3, name="C", status=UserStatus.ACTIVE),
]


class TestRoundDown:
    @pytest.mark.parametrize(
        "value,expected",
        [("266.67", "260"), ("260", "260"), ("9.99", "0"), ("-5", "-10")],
    )
    def test_step_of_ten(self, value, expected):
        assert round_down(Decimal(value), Decimal("10")) == Decimal(expected)


class TestCalculateDistribution:
    def test_existing_payments_subtracted(self):
        result = calculate_distribution(
            Decimal("1000"),
            Decimal("200"),
            TECHS,
            {1: Decimal("100")},
            cap=Decimal("300"),
            rounding_step=Decimal("10"),
        )

        assert result.status == STATUS_OK
        assert result.difference == Decimal("800")
        assert result.rounded_per_technician == Decimal("260")
        assert result.capped_per_technician == Decimal("260")
        assert result.cap_applied is False
        assert [p.final_payment for p in result.payments] == [
            Decimal("160"),
            Decimal("260"),
            Decimal("260"),
        ]
        assert result.total_distributed == Decimal("780")
        assert result.remainder == Decimal("20")

    def test_cap_applied(self):
        result = calculate_distribution(
            Decimal("1000"), Decimal("200"), TECHS, {}, cap=Decimal("250"), rounding_step=Decimal("10")
        )

        assert result.cap_applied is True
        assert result.capped_per_technician == Decimal("250")
        assert result.lost_to_rounding == Decimal("20")
        assert result.lost_to_capping == Decimal("30")
        assert result.remainder == result.lost_to_rounding + result.lost_to_capping

    def test_no_technicians(self):
        result = calculate_distribution(Decimal("1000"), Decimal("0"), [], {})
        assert result.status == STATUS_NO_TECHNICIANS
        assert result.payments == []
        assert result.total_distributed == Decimal("0")

    def test_negative_surplus_distributes_nothing(self):
        result = calculate_distribution(
            Decimal("100"), Decimal("500"), TECHS, {}, cap=Decimal("250"), rounding_step=Decimal("10")
        )
        assert result.status == STATUS_NO_SURPLUS
        assert all(p.final_payment == Decimal("0") for p in result.payments)
        assert result.payable == []

    def test_already_paid_technician_gets_nothing(self):
        result = calculate_distribution(
            Decimal("1000"),
            Decimal("200"),
            TECHS,
            {2: Decimal("400")},
            cap=Decimal("300"),
            rounding_step=Decimal("10"),
        )
        assert result.payments[1].final_payment == Decimal("0")
        assert [p.technician_id for p in result.payable] == [1, 3]

    def test_defaults_come_from_settings(self):
        result = calculate_distribution(Decimal("10000"), Decimal("0"), TECHS, {})
        assert result.cap == Decimal("250")
        assert result.rounding_step == Decimal("10")


PERIOD_START = date(2026, 3, 1)
PERIOD_END = date(2026, 3, 31)
NOW = datetime(2026, 3, 31, 18, 0)


@pytest_asyncio.fixture
async def technicians(test_db):
    rows = [
        User(**TechnicianUserFactory(name="Ana Quispe")),
        User(**TechnicianUserFactory(name="Bruno Salas")),
        User(**TechnicianUserFactory(name="Ciro Vega")),
        User(**InactiveTechnicianFactory(name="Dina Paz")),
    ]
    test_db.add_all(rows)
    await test_db.commit()
    return rows


async def _salaries(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Expense).where(Expense.type == ExpenseType.SALARY))
        return list(result.scalars().all())


class TestDistributionWorkflow:
    @pytest.mark.asyncio
    async def test_prepare_uses_active_technicians_and_prior_salaries(
        self, session_factory, test_db, admin_user, admin_actor, technicians
    ):
        test_db.add(
            Expense(
                **SalaryExpenseFactory(
                    beneficiary="ana quispe ",
                    amount=Decimal("100.00"),
                    expense_date=datetime(2026, 3, 10),
                    created_by=admin_user.id,
                )
            )
        )
        await test_db.commit()

        result, period = await prepare_distribution(
            session_factory,
            admin_actor,
            Decimal("1000"),
            Decimal("200"),
            start_date=PERIOD_START,
            end_date=PERIOD_END,
            cap=Decimal("300"),
            rounding_step=Decimal("10"),
            now=NOW,
        )

        assert period.start == datetime(2026, 3, 1)
        assert result.technician_count == 3
        by_name = {p.technician_name: p for p in result.payments}
        assert "Dina Paz" not in by_name
        assert by_name["Ana Quispe"].existing_payments == Decimal("100.00")
        assert by_name["Ana Quispe"].final_payment == Decimal("160")
        assert by_name["Bruno Salas"].final_payment == Decimal("260")

    @pytest.mark.asyncio
    async def test_commit_posts_one_salary_each_and_is_idempotent(
        self, session_factory, admin_actor, technicians
    ):
        args = dict(
            start_date=PERIOD_START,
            end_date=PERIOD_END,
            cap=Decimal("250"),
            rounding_step=Decimal("10"),
            now=NOW,
        )
        result, period = await prepare_distribution(
            session_factory, admin_actor, Decimal("1000"), Decimal("200"), **args
        )
        postings = await commit_distribution(session_factory, admin_actor, result, period, now=NOW)

        assert len(postings) == 3
        assert all(p.success for p in postings)
        salaries = await _salaries(session_factory)
        assert sorted(float(s.amount) for s in salaries) == [250.0, 250.0, 250.0]
        assert all(s.created_by == admin_actor.id for s in salaries)

        again, period = await prepare_distribution(
            session_factory, admin_actor, Decimal("1000"), Decimal("200"), **args
        )
        assert again.payable == []
        assert await commit_distribution(session_factory, admin_actor, again, period, now=NOW) == []

    @pytest.mark.asyncio
    async def test_past_period_registered_twice_pays_once(
        self, session_factory, admin_actor, technicians
    ):
        april = datetime(2026, 4, 5, 9, 0)
        for _ in range(2):
            result, period = await prepare_distribution(
                session_factory,
                admin_actor,
                Decimal("1000"),
                Decimal("200"),
                start_date=PERIOD_START,
                end_date=PERIOD_END,
                now=april,
            )
            await commit_distribution(session_factory, admin_actor, result, period, now=april)

        salaries = await _salaries(session_factory)
        assert len(salaries) == 3
        assert all(s.expense_date <= period.end for s in salaries)
        assert all(s.created_at == april for s in salaries)

    @pytest.mark.asyncio
    async def test_one_failed_posting_does_not_block_others(
        self, session_factory, admin_actor, technicians
    ):
        def flaky_factory():
            session = session_factory()
            commit = session.commit

            async def failing_commit():
                if any(getattr(obj, "beneficiary", None) == "Bruno Salas" for obj in session.new):
                    raise RuntimeError("connection lost")
                await commit()

            session.commit = failing_commit
            return session

        period = DateRange(datetime(2026, 3, 1), NOW)
        distribution = Distribution(
            difference=Decimal("500"),
            technician_count=2,
            raw_per_technician=Decimal("250"),
            rounded_per_technician=Decimal("250"),
            capped_per_technician=Decimal("250"),
            cap_applied=False,
            cap=Decimal("250"),
            rounding_step=Decimal("10"),
            total_distributed=Decimal("500"),
            remainder=Decimal("0"),
            lost_to_rounding=Decimal("0"),
            lost_to_capping=Decimal("0"),
            payments=[
                TechnicianPayment(technicians[0].id, "Ana Quispe", Decimal("0"), Decimal("250")),
                TechnicianPayment(technicians[1].id, "Bruno Salas", Decimal("0"), Decimal("250")),
            ],
        )

        postings = await commit_distribution(flaky_factory, admin_actor, distribution, period, now=NOW)

        assert [p.success for p in postings] == [True, False]
        assert postings[1].error == "connection lost"
        assert len(await _salaries(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_technicians_cannot_distribute(self, session_factory, technician_actor):
        with pytest.raises(PermissionDeniedError):
            await prepare_distribution(
                session_factory, technician_actor, Decimal("1000"), Decimal("0"), now=NOW
            )
