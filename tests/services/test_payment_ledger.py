"""
Tests for recording and editing payments on the equipment ledger.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.exceptions import NotFoundError, PermissionDeniedError, StateConflictError, ValidationError
from app.models.equipment import Equipment, EquipmentStatus, EquipmentType
from app.models.expense import Expense
from app.models.payment import PaymentMethod, PaymentStatus
from app.services import payment_ledger
from app.services.equipment_lifecycle import create_equipment, transition
from app.services.payment_ledger import (
    get_active_payment,
    get_payment_balance,
    load_payments,
    record_payment,
    update_payment,
)

T0 = datetime(2026, 4, 6, 10, 0)


def at(hours: int) -> datetime:
    return T0 + timedelta(hours=hours)


@pytest_asyncio.fixture
async def equipment_id(db, admin_actor, customer):
    equipment = await create_equipment(
        db, admin_actor, customer.id, EquipmentType.PRINTER, "Prints blank pages", now=T0
    )
    return equipment.id


async def _pay(db, equipment_id, actor, total=None, advance=None, method=PaymentMethod.CASH, hours=1):
    return await record_payment(
        db,
        equipment_id,
        actor,
        method,
        total_amount=Decimal(total) if total is not None else None,
        advance_amount=Decimal(advance) if advance is not None else None,
        now=at(hours),
    )


class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_first_payment_needs_total(self, db, admin_actor, equipment_id):
        with pytest.raises(ValidationError):
            await _pay(db, equipment_id, admin_actor, advance="20.00")

    @pytest.mark.asyncio
    async def test_first_payment(self, db, admin_actor, equipment_id):
        payment = await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00")

        assert payment.payment_status == PaymentStatus.PARTIAL
        assert payment.remaining_amount == Decimal("100.00")
        assert payment.beneficiary == "RJD"
        assert payment.created_by == admin_actor.id

    @pytest.mark.asyncio
    async def test_advance_above_total_rejected(self, db, admin_actor, equipment_id):
        with pytest.raises(ValidationError):
            await _pay(db, equipment_id, admin_actor, total="100.00", advance="120.00")
        assert await load_payments(db, equipment_id) == []

    @pytest.mark.asyncio
    async def test_pending_record_updated_in_place(self, db, admin_actor, equipment_id):
        await _pay(db, equipment_id, admin_actor, total="150.00", hours=1)
        await _pay(db, equipment_id, admin_actor, total="180.00", advance="60.00", hours=2)

        payments = await load_payments(db, equipment_id)
        assert len(payments) == 1
        assert payments[0].total_amount == Decimal("180.00")
        assert payments[0].advance_amount == Decimal("60.00")
        assert payments[0].payment_date == at(2)

    @pytest.mark.asyncio
    async def test_partial_record_gets_top_up(self, db, admin_actor, equipment_id):
        await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00", hours=1)
        top_up = await _pay(
            db, equipment_id, admin_actor, advance="30.00", method=PaymentMethod.PLIN, hours=2
        )

        assert top_up.total_amount == Decimal("100.00")
        assert top_up.advance_amount == Decimal("30.00")
        assert top_up.payment_status == PaymentStatus.PARTIAL

        balance = await get_payment_balance(db, equipment_id)
        assert balance.contract_total == Decimal("150.00")
        assert balance.received == Decimal("80.00")
        assert balance.outstanding == Decimal("70.00")
        assert len(balance.records) == 2

    @pytest.mark.asyncio
    async def test_top_up_defaults_to_whole_balance(self, db, admin_actor, equipment_id):
        await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00", hours=1)
        await _pay(db, equipment_id, admin_actor, hours=2)

        active = await get_active_payment(db, equipment_id)
        assert active.payment_status == PaymentStatus.COMPLETED
        assert active.advance_amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_top_up_above_balance_rejected(self, db, admin_actor, equipment_id):
        await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00", hours=1)
        with pytest.raises(ValidationError):
            await _pay(db, equipment_id, admin_actor, advance="120.00", hours=2)
        assert len(await load_payments(db, equipment_id)) == 1

    @pytest.mark.asyncio
    async def test_completed_ledger_rejects_more_money(self, db, admin_actor, equipment_id):
        await _pay(db, equipment_id, admin_actor, total="150.00", advance="150.00", hours=1)
        with pytest.raises(StateConflictError):
            await _pay(db, equipment_id, admin_actor, advance="10.00", hours=2)

    @pytest.mark.asyncio
    async def test_cancelled_equipment_rejects_payments(self, db, admin_actor, equipment_id):
        await transition(db, equipment_id, EquipmentStatus.CANCELLED, admin_actor, now=at(1))
        with pytest.raises(StateConflictError):
            await _pay(db, equipment_id, admin_actor, total="150.00", hours=2)

    @pytest.mark.asyncio
    async def test_unknown_equipment(self, db, admin_actor):
        with pytest.raises(NotFoundError):
            await _pay(db, "missing", admin_actor, total="10.00")

    @pytest.mark.asyncio
    async def test_technicians_cannot_take_payments(self, db, technician_actor, equipment_id):
        with pytest.raises(PermissionDeniedError):
            await _pay(db, equipment_id, technician_actor, total="10.00")


class TestUpdatePayment:
    @pytest.mark.asyncio
    async def test_pending_amounts_editable(self, db, admin_actor, equipment_id):
        payment = await _pay(db, equipment_id, admin_actor, total="150.00")
        updated = await update_payment(
            db, payment.id, admin_actor, total_amount=Decimal("120.00"), advance_amount=Decimal("20.00")
        )

        assert updated.total_amount == Decimal("120.00")
        assert updated.payment_status == PaymentStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_partial_amounts_frozen(self, db, admin_actor, equipment_id):
        payment = await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00")
        with pytest.raises(StateConflictError):
            await update_payment(db, payment.id, admin_actor, advance_amount=Decimal("150.00"))

    @pytest.mark.asyncio
    async def test_non_amount_fields_always_editable(self, db, admin_actor, equipment_id):
        payment = await _pay(db, equipment_id, admin_actor, total="150.00", advance="150.00")
        updated = await update_payment(
            db, payment.id, admin_actor, payment_method=PaymentMethod.TRANSFER, observations="bank ref 123"
        )

        assert updated.payment_method == PaymentMethod.TRANSFER
        assert updated.observations == "bank ref 123"

    @pytest.mark.asyncio
    async def test_advance_above_total_rejected(self, db, admin_actor, equipment_id):
        payment = await _pay(db, equipment_id, admin_actor, total="150.00")
        with pytest.raises(ValidationError):
            await update_payment(db, payment.id, admin_actor, advance_amount=Decimal("200.00"))

    @pytest.mark.asyncio
    async def test_unknown_payment(self, db, admin_actor):
        with pytest.raises(NotFoundError):
            await update_payment(db, "missing", admin_actor, observations="x")


class TestLedgerSerialisation:
    @pytest.mark.asyncio
    async def test_payment_bumps_equipment_version(self, db, session_factory, admin_actor, equipment_id):
        async with session_factory() as session:
            before = await session.scalar(
                select(Equipment.version).where(Equipment.id == equipment_id)
            )

        await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00")

        async with session_factory() as session:
            after = await session.scalar(
                select(Equipment.version).where(Equipment.id == equipment_id)
            )
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_cancellation_committed_mid_payment_wins(
        self, db, session_factory, admin_actor, equipment_id, monkeypatch
    ):
        await _pay(db, equipment_id, admin_actor, total="150.00", advance="50.00", hours=1)
        real_load_payments = payment_ledger.load_payments

        async def load_after_concurrent_cancel(session, target_id):
            async with session_factory() as other:
                await transition(other, target_id, EquipmentStatus.CANCELLED, admin_actor, now=at(2))
            return await real_load_payments(session, target_id)

        monkeypatch.setattr(payment_ledger, "load_payments", load_after_concurrent_cancel)

        with pytest.raises(StateConflictError):
            await _pay(db, equipment_id, admin_actor, advance="100.00", hours=3)

        async with session_factory() as session:
            payments = await real_load_payments(session, equipment_id)
            refunds = (
                await session.scalars(select(Expense.amount).where(Expense.equipment_id == equipment_id))
            ).all()
        assert len(payments) == 1
        assert refunds == [Decimal("50.00")]
