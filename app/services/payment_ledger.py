"""Payment ledger for equipment.

Each equipment owns an ordered list of payment records. The most recent one
(by payment date, then creation order) is the *active* record and carries the
current status and outstanding balance. Settling part of a PARTIAL balance
appends a new record for the balance rather than editing history.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from app.config import settings
from app.database import write_transaction
from app.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models.equipment import Equipment, EquipmentStatus
from app.models.payment import (
    ZERO,
    Payment,
    PaymentMethod,
    PaymentStatus,
    VoucherType,
    derive_payment_status,
)
from app.schemas.payment import PaymentBalanceResponse, PaymentResponse
from app.security.rbac import Actor, Permission, ensure_permission

logger = logging.getLogger(__name__)


def _ledger_order(payment: Payment):
    return (payment.payment_date, payment.created_at or payment.payment_date)


def active_payment(payments: Sequence[Payment]) -> Optional[Payment]:
    """The most recent record, or None for an equipment with no payments."""
    if not payments:
        return None
    return max(payments, key=_ledger_order)


def compute_balance(equipment_id: str, payments: Sequence[Payment]) -> PaymentBalanceResponse:
    """Computed balance view over every record of one equipment."""
    ordered = sorted(payments, key=_ledger_order)
    active = active_payment(ordered)
    return PaymentBalanceResponse(
        equipment_id=equipment_id,
        contract_total=ordered[0].total_amount if ordered else ZERO,
        received=sum((p.recognized_income for p in ordered), ZERO),
        outstanding=max(active.remaining_amount, ZERO) if active else ZERO,
        status=active.payment_status if active else None,
        records=[PaymentResponse.model_validate(p) for p in ordered],
    )


def _check_amounts(total: Decimal, advance: Decimal) -> None:
    if total < ZERO or advance < ZERO:
        raise ValidationError(
            "Payment amounts cannot be negative",
            errors=[{"field": "total_amount", "message": "must be >= 0"}],
        )
    if advance > total:
        raise ValidationError(
            "advance_amount cannot exceed total_amount",
            errors=[{"field": "advance_amount", "message": "greater than total_amount"}],
        )


async def load_payments(db: AsyncSession, equipment_id: str) -> list[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.equipment_id == equipment_id)
        .order_by(Payment.payment_date, Payment.created_at)
    )
    return list(result.scalars().all())


async def get_active_payment(db: AsyncSession, equipment_id: str) -> Optional[Payment]:
    return active_payment(await load_payments(db, equipment_id))


async def get_payment_balance(db: AsyncSession, equipment_id: str) -> PaymentBalanceResponse:
    equipment = await db.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFoundError("Equipment", equipment_id)
    return compute_balance(equipment_id, await load_payments(db, equipment_id))


async def record_payment(
    db: AsyncSession,
    equipment_id: str,
    actor: Actor,
    payment_method: PaymentMethod,
    total_amount: Optional[Decimal] = None,
    advance_amount: Optional[Decimal] = None,
    voucher_type: VoucherType = VoucherType.RECEIPT,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Record money received for an equipment.

    - No record yet: create one for total_amount with advance_amount received.
    - Active record PENDING: nothing was received under it, so it is updated
      in place.
    - Active record PARTIAL: append a top-up record whose total is the
      outstanding balance and whose advance is the amount received now
      (defaults to the whole balance).
    - Active record COMPLETED: StateConflictError.
    """
    ensure_permission(actor, Permission.MANAGE_PAYMENTS)
    now = now or datetime.utcnow()

    # Locked and versioned like a transition, so a payment cannot interleave
    # with another payment or with the refund computed on cancellation.
    result = await db.execute(
        select(Equipment)
        .where(Equipment.id == equipment_id)
        .with_for_update(of=Equipment)
        .execution_options(populate_existing=True)
    )
    equipment = result.unique().scalar_one_or_none()
    if equipment is None:
        raise NotFoundError("Equipment", equipment_id)
    if equipment.status == EquipmentStatus.CANCELLED:
        message = f"Equipment {equipment.code} is cancelled; payments cannot be recorded"
        await db.rollback()
        raise StateConflictError(message)

    payments = await load_payments(db, equipment_id)
    active = active_payment(payments)

    async with write_transaction(db, f"recording payment for {equipment.code}"):
        flag_modified(equipment, "status")
        if active is None:
            if total_amount is None:
                raise ValidationError(
                    "total_amount is required for the first payment",
                    errors=[{"field": "total_amount", "message": "required"}],
                )
            advance = advance_amount if advance_amount is not None else ZERO
            _check_amounts(total_amount, advance)
            payment = Payment(
                equipment_id=equipment_id,
                total_amount=total_amount,
                advance_amount=advance,
                payment_method=payment_method,
                voucher_type=voucher_type,
                beneficiary=settings.BUSINESS_NAME,
                observations=observations,
                payment_date=now,
                created_at=now,
                created_by=actor.id,
            )
            db.add(payment)
            kind = "initial"
        elif active.payment_status == PaymentStatus.PENDING:
            total = total_amount if total_amount is not None else active.total_amount
            advance = advance_amount if advance_amount is not None else ZERO
            _check_amounts(total, advance)
            payment = active
            payment.total_amount = total
            payment.advance_amount = advance
            payment.payment_method = payment_method
            payment.voucher_type = voucher_type
            payment.observations = observations
            payment.payment_date = now
            kind = "pending-update"
        elif active.payment_status == PaymentStatus.PARTIAL:
            balance = active.remaining_amount
            delta = advance_amount if advance_amount is not None else balance
            if delta <= ZERO:
                raise ValidationError(
                    "A top-up must receive a positive amount",
                    errors=[{"field": "advance_amount", "message": "must be > 0"}],
                )
            if delta > balance:
                raise ValidationError(
                    f"Top-up of {delta} exceeds the outstanding balance of {balance}",
                    errors=[{"field": "advance_amount", "message": "greater than outstanding balance"}],
                )
            payment = Payment(
                equipment_id=equipment_id,
                total_amount=balance,
                advance_amount=delta,
                payment_method=payment_method,
                voucher_type=voucher_type,
                beneficiary=settings.BUSINESS_NAME,
                observations=observations,
                payment_date=now,
                created_at=now,
                created_by=actor.id,
            )
            db.add(payment)
            kind = "top-up"
        else:
            raise StateConflictError(
                f"Payment for equipment {equipment.code} is already COMPLETED"
            )

    logger.info(
        f"Payment recorded ({kind}) for {equipment.code}: "
        f"{payment.advance_amount}/{payment.total_amount} -> {payment.payment_status.value}",
        extra={"equipment_id": equipment_id, "payment_id": payment.id, "user_id": actor.id},
    )
    return payment


async def update_payment(
    db: AsyncSession,
    payment_id: str,
    actor: Actor,
    total_amount: Optional[Decimal] = None,
    advance_amount: Optional[Decimal] = None,
    payment_method: Optional[PaymentMethod] = None,
    voucher_type: Optional[VoucherType] = None,
    observations: Optional[str] = None,
) -> Payment:
    """Edit a payment record. Amounts may only change while it is PENDING."""
    ensure_permission(actor, Permission.MANAGE_PAYMENTS)

    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)

    if total_amount is not None or advance_amount is not None:
        if payment.payment_status != PaymentStatus.PENDING:
            raise StateConflictError(
                f"Payment {payment_id} is {payment.payment_status.value}; "
                "amounts can only change while PENDING, record a new payment instead"
            )
        total = total_amount if total_amount is not None else payment.total_amount
        advance = advance_amount if advance_amount is not None else payment.advance_amount
        _check_amounts(total, advance)

    async with write_transaction(db, f"updating payment {payment_id}"):
        if total_amount is not None:
            payment.total_amount = total_amount
        if advance_amount is not None:
            payment.advance_amount = advance_amount
        if payment_method is not None:
            payment.payment_method = payment_method
        if voucher_type is not None:
            payment.voucher_type = voucher_type
        if observations is not None:
            payment.observations = observations

    logger.info(
        f"Payment {payment_id} updated -> "
        f"{derive_payment_status(payment.total_amount, payment.advance_amount).value}",
        extra={"payment_id": payment_id, "user_id": actor.id},
    )
    return payment
