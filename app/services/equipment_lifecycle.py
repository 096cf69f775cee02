"""
Equipment lifecycle: intake, status transitions and reactivation.

Every status change goes through ``transition`` (or ``reactivate``):

1. the actor's role is checked against the equipment,
2. the pair (current, next) is checked against ``TRANSITIONS``,
3. the side effects registered for the target status validate,
4. only then are the status, one history row and the side-effect writes
   committed together.

The equipment row is locked for the duration (``SELECT ... FOR UPDATE``)
and carries a version counter, so two concurrent transitions cannot both
win.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import write_transaction
from app.exceptions import (
    LedgerIntegrityError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from app.models.customer import Customer
from app.models.equipment import (
    Equipment,
    EquipmentStatus,
    EquipmentStatusHistory,
    EquipmentType,
    HistoryAction,
)
from app.models.expense import Expense, ExpenseType
from app.models.payment import ZERO, Payment, PaymentStatus
from app.models.user import User, UserRole, UserStatus
from app.schemas.equipment import StatusHistoryResponse
from app.security.rbac import Actor, Permission, ensure_admin, ensure_permission
from app.services.payment_ledger import active_payment, load_payments

logger = logging.getLogger(__name__)

RECEIVED = EquipmentStatus.RECEIVED
REPAIR = EquipmentStatus.REPAIR
REPAIRED = EquipmentStatus.REPAIRED
DELIVERED = EquipmentStatus.DELIVERED
CANCELLED = EquipmentStatus.CANCELLED

TRANSITIONS: dict[EquipmentStatus, frozenset[EquipmentStatus]] = {
    RECEIVED: frozenset({REPAIR, CANCELLED}),
    REPAIR: frozenset({REPAIRED, CANCELLED}),
    REPAIRED: frozenset({DELIVERED, REPAIR}),
    DELIVERED: frozenset(),
    # Terminal; only ``reactivate`` leaves it
    CANCELLED: frozenset(),
}

TECHNICIAN_TRANSITIONS = frozenset({(REPAIR, REPAIRED)})

FLAW_MIN_LENGTH = 5
FLAW_MAX_LENGTH = 500
INTAKE_OBSERVATION = "Equipment received"
REACTIVATION_OBSERVATION = "Service reactivated from CANCELLED"
CODE_ATTEMPTS = 3


def is_allowed(current: EquipmentStatus, new: EquipmentStatus) -> bool:
    return new in TRANSITIONS[current]


def validate_transition(current: EquipmentStatus, new: EquipmentStatus) -> None:
    """Raise StateConflictError for a pair outside the transition table."""
    if not is_allowed(current, new):
        raise StateConflictError(f"Transition {current.value} -> {new.value} is not allowed")


def check_actor(actor: Actor, equipment: Equipment, new_status: EquipmentStatus) -> None:
    """Administrators may request any transition; technicians only finish their own repairs."""
    if actor.is_admin:
        return
    if (equipment.status, new_status) not in TECHNICIAN_TRANSITIONS:
        raise PermissionDeniedError("Technicians can only mark equipment in REPAIR as REPAIRED")
    if equipment.assigned_technician_id != actor.id:
        raise PermissionDeniedError("This equipment is not assigned to you")


def can_read(actor: Actor, equipment: Equipment) -> bool:
    if actor.is_admin:
        return True
    return equipment.assigned_technician_id == actor.id or equipment.status == RECEIVED


def build_refund_expense(
    equipment: Equipment,
    payments: Sequence[Payment],
    history_id: str,
    actor: Actor,
    observations: Optional[str],
    now: datetime,
) -> Optional[Expense]:
    """The refund owed when cancelling, or None if nothing was received."""
    received = sum((p.advance_amount for p in payments if p.advance_amount), ZERO)
    if received <= ZERO:
        return None

    source = max(
        (p for p in payments if p.advance_amount and p.advance_amount > ZERO),
        key=lambda p: (p.payment_date, p.created_at or p.payment_date),
    )
    description = f"Refund for cancelled equipment {equipment.code}"
    notes = description if not observations else f"{description}. {observations}"

    return Expense(
        type=ExpenseType.OTHER,
        description=description,
        amount=received,
        beneficiary=equipment.customer_name or settings.BUSINESS_NAME,
        payment_method=source.payment_method,
        expense_date=now,
        observations=notes,
        equipment_id=equipment.id,
        status_history_id=history_id,
        created_by=actor.id,
        created_at=now,
    )


@dataclass
class TransitionContext:
    """State shared by the side effects of one transition."""

    db: AsyncSession
    equipment: Equipment
    new_status: EquipmentStatus
    actor: Actor
    observations: Optional[str]
    assigned_technician_id: Optional[int]
    now: datetime
    delivery_policy: str
    payments: list[Payment] = field(default_factory=list)
    technician: Optional[User] = None
    history: Optional[EquipmentStatusHistory] = None
    warnings: list[str] = field(default_factory=list)


class SideEffect:
    """Hook run when entering a status.

    ``validate`` runs before anything is written and may reject the
    transition. ``apply`` runs inside the write transaction after the status
    and history row are staged.
    """

    async def validate(self, ctx: TransitionContext) -> None:
        pass

    async def apply(self, ctx: TransitionContext) -> None:
        pass


class RequireActiveTechnician(SideEffect):
    async def validate(self, ctx):
        technician_id = ctx.assigned_technician_id or ctx.equipment.assigned_technician_id
        if technician_id is None:
            raise ValidationError(
                "technician required",
                errors=[{"field": "assigned_technician_id", "message": "required for REPAIR"}],
            )
        technician = await ctx.db.get(User, technician_id)
        if (
            technician is None
            or technician.role != UserRole.TECHNICIAN
            or technician.status != UserStatus.ACTIVE
        ):
            raise ValidationError(
                "technician not found or inactive",
                errors=[{"field": "assigned_technician_id", "message": "not an active technician"}],
            )
        ctx.technician = technician

    async def apply(self, ctx):
        ctx.equipment.assigned_technician_id = ctx.technician.id


class StampDelivery(SideEffect):
    """Sets the delivery date and enforces the delivery payment policy."""

    async def validate(self, ctx):
        ctx.payments = await load_payments(ctx.db, ctx.equipment.id)
        active = active_payment(ctx.payments)
        if active is not None and active.payment_status == PaymentStatus.COMPLETED:
            return
        if ctx.delivery_policy == "strict":
            raise ValidationError("A COMPLETED payment is required before delivery")
        message = f"Equipment {ctx.equipment.code} delivered without a COMPLETED payment"
        logger.warning(message, extra={"equipment_id": ctx.equipment.id})
        ctx.warnings.append(message)

    async def apply(self, ctx):
        ctx.equipment.delivery_date = ctx.now


class EmitRefund(SideEffect):
    """Posts one refund expense for the money received before cancelling."""

    async def validate(self, ctx):
        ctx.payments = await load_payments(ctx.db, ctx.equipment.id)

    async def apply(self, ctx):
        refund = build_refund_expense(
            ctx.equipment, ctx.payments, ctx.history.id, ctx.actor, ctx.observations, ctx.now
        )
        if refund is None:
            return
        ctx.db.add(refund)
        logger.info(
            f"Refund of {refund.amount} emitted for cancelled equipment {ctx.equipment.code}",
            extra={"equipment_id": ctx.equipment.id, "history_id": ctx.history.id},
        )


SIDE_EFFECTS: dict[EquipmentStatus, tuple[SideEffect, ...]] = {
    REPAIR: (RequireActiveTechnician(),),
    DELIVERED: (StampDelivery(),),
    CANCELLED: (EmitRefund(),),
}


@dataclass
class TransitionResult:
    equipment: Equipment
    warnings: list[str]


async def _load_equipment(db: AsyncSession, equipment_id: str, for_update: bool = False) -> Equipment:
    query = select(Equipment).where(Equipment.id == equipment_id)
    if for_update:
        query = query.with_for_update(of=Equipment)
    result = await db.execute(query.execution_options(populate_existing=True))
    equipment = result.unique().scalar_one_or_none()
    if equipment is None:
        raise NotFoundError("Equipment", equipment_id)
    return equipment


def _history_row(
    equipment: Equipment,
    status: EquipmentStatus,
    action: HistoryAction,
    actor: Actor,
    observations: Optional[str],
    now: datetime,
) -> EquipmentStatusHistory:
    return EquipmentStatusHistory(
        id=str(uuid.uuid4()),
        equipment_id=equipment.id,
        status=status,
        action=action,
        observations=observations,
        changed_by=actor.id,
        changed_at=now,
    )


async def transition(
    db: AsyncSession,
    equipment_id: str,
    new_status: EquipmentStatus,
    actor: Actor,
    observations: Optional[str] = None,
    assigned_technician_id: Optional[int] = None,
    delivery_policy: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Move an equipment to ``new_status``. Validates fully before writing."""
    ensure_permission(actor, Permission.CHANGE_STATUS)
    now = now or datetime.utcnow()
    delivery_policy = delivery_policy or settings.DELIVERY_PAYMENT_POLICY

    equipment = await _load_equipment(db, equipment_id, for_update=True)
    current, code = equipment.status, equipment.code
    try:
        check_actor(actor, equipment, new_status)
        validate_transition(current, new_status)

        ctx = TransitionContext(
            db=db,
            equipment=equipment,
            new_status=new_status,
            actor=actor,
            observations=observations,
            assigned_technician_id=assigned_technician_id,
            now=now,
            delivery_policy=delivery_policy,
        )
        effects = SIDE_EFFECTS.get(new_status, ())
        for effect in effects:
            await effect.validate(ctx)
    except (PermissionDeniedError, StateConflictError, ValidationError) as e:
        await db.rollback()
        logger.warning(
            f"Transition {current.value} -> {new_status.value} rejected for {code}: {e}",
            extra={"equipment_id": equipment_id, "user_id": actor.id},
        )
        raise

    async with write_transaction(db, f"moving {equipment.code} to {new_status.value}"):
        equipment.status = new_status
        ctx.history = _history_row(
            equipment, new_status, HistoryAction.TRANSITION, actor, observations, now
        )
        db.add(ctx.history)
        await db.flush()
        for effect in effects:
            await effect.apply(ctx)

    logger.info(
        f"Equipment {equipment.code}: {current.value} -> {new_status.value}",
        extra={"equipment_id": equipment_id, "user_id": actor.id},
    )
    equipment = await _load_equipment(db, equipment_id)
    return TransitionResult(equipment=equipment, warnings=ctx.warnings)


async def reactivate(
    db: AsyncSession,
    equipment_id: str,
    actor: Actor,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Equipment:
    """Return a CANCELLED equipment to RECEIVED. Posted refunds stay posted."""
    ensure_admin(actor)
    now = now or datetime.utcnow()

    equipment = await _load_equipment(db, equipment_id, for_update=True)
    if equipment.status != CANCELLED:
        message = f"Only CANCELLED equipment can be reactivated; {equipment.code} is {equipment.status.value}"
        await db.rollback()
        raise StateConflictError(message)

    async with write_transaction(db, f"reactivating {equipment.code}"):
        equipment.status = RECEIVED
        equipment.delivery_date = None
        db.add(
            _history_row(
                equipment,
                RECEIVED,
                HistoryAction.REACTIVATION,
                actor,
                observations or REACTIVATION_OBSERVATION,
                now,
            )
        )

    logger.info(
        f"Equipment {equipment.code} reactivated",
        extra={"equipment_id": equipment_id, "user_id": actor.id},
    )
    return await _load_equipment(db, equipment_id)


async def next_equipment_code(db: AsyncSession, day: date, prefix: Optional[str] = None) -> str:
    """Next free ``<PREFIX>-YYYYMMDD-NNNN`` code for the given day."""
    stem = f"{prefix or settings.BUSINESS_NAME}-{day:%Y%m%d}-"
    result = await db.execute(
        select(func.max(Equipment.code)).where(Equipment.code.like(f"{stem}%"))
    )
    last = result.scalar_one_or_none()
    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{stem}{sequence:04d}"


async def create_equipment(
    db: AsyncSession,
    actor: Actor,
    customer_id: int,
    type: EquipmentType,
    reported_flaw: str,
    brand: Optional[str] = None,
    model: Optional[str] = None,
    serial_number: Optional[str] = None,
    accessories: Optional[str] = None,
    service_type: Optional[str] = None,
    others: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Equipment:
    """Intake: register equipment in RECEIVED with its first history row."""
    ensure_permission(actor, Permission.MANAGE_EQUIPMENT)
    now = now or datetime.utcnow()

    flaw = (reported_flaw or "").strip()
    if not FLAW_MIN_LENGTH <= len(flaw) <= FLAW_MAX_LENGTH:
        raise ValidationError(
            f"reported_flaw must be {FLAW_MIN_LENGTH}-{FLAW_MAX_LENGTH} characters",
            errors=[{"field": "reported_flaw", "message": "invalid length"}],
        )

    customer = await db.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", str(customer_id))

    # A concurrent intake can take the same sequence number; the unique
    # constraint on code rejects it and the next attempt picks a new one.
    for attempt in range(1, CODE_ATTEMPTS + 1):
        code = await next_equipment_code(db, now.date())
        equipment = Equipment(
            id=str(uuid.uuid4()),
            code=code,
            type=type,
            brand=brand,
            model=model,
            serial_number=serial_number,
            reported_flaw=flaw,
            accessories=accessories,
            service_type=service_type,
            others=others,
            status=RECEIVED,
            entry_date=now,
            customer_id=customer_id,
        )
        try:
            async with write_transaction(db, f"registering equipment {code}"):
                db.add(equipment)
                await db.flush()
                db.add(
                    _history_row(
                        equipment, RECEIVED, HistoryAction.INTAKE, actor, INTAKE_OBSERVATION, now
                    )
                )
            break
        except LedgerIntegrityError:
            if attempt == CODE_ATTEMPTS:
                raise
            logger.warning(f"Equipment code {code} taken, retrying", extra={"attempt": attempt})

    logger.info(
        f"Equipment {equipment.code} received for customer {customer_id}",
        extra={"equipment_id": equipment.id, "user_id": actor.id},
    )
    return await _load_equipment(db, equipment.id)


async def get_equipment(db: AsyncSession, equipment_id: str, actor: Actor) -> Equipment:
    ensure_permission(actor, Permission.VIEW_EQUIPMENT)
    equipment = await _load_equipment(db, equipment_id)
    if not can_read(actor, equipment):
        raise PermissionDeniedError("This equipment is not assigned to you")
    return equipment


async def list_equipment(
    db: AsyncSession,
    actor: Actor,
    status: Optional[EquipmentStatus] = None,
    type: Optional[EquipmentType] = None,
    technician_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Equipment], int]:
    """Newest first. Technicians see their own equipment plus RECEIVED equipment."""
    ensure_permission(actor, Permission.VIEW_EQUIPMENT)
    query = select(Equipment)

    if not actor.is_admin:
        query = query.where(
            or_(Equipment.assigned_technician_id == actor.id, Equipment.status == RECEIVED)
        )
    if status:
        query = query.where(Equipment.status == status)
    if type:
        query = query.where(Equipment.type == type)
    if technician_id:
        query = query.where(Equipment.assigned_technician_id == technician_id)
    if search:
        pattern = f"%{search}%"
        query = query.join(Customer, Customer.id == Equipment.customer_id).where(
            or_(
                Equipment.code.ilike(pattern),
                Equipment.brand.ilike(pattern),
                Equipment.model.ilike(pattern),
                Equipment.serial_number.ilike(pattern),
                Customer.name.ilike(pattern),
            )
        )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    query = query.order_by(Equipment.entry_date.desc(), Equipment.code.desc()).offset(offset).limit(page_size)
    result = await db.execute(query)
    return list(result.unique().scalars().all()), total


async def delete_equipment(db: AsyncSession, equipment_id: str, actor: Actor) -> None:
    """Remove equipment that never took money and is RECEIVED or CANCELLED."""
    ensure_admin(actor)
    equipment = await _load_equipment(db, equipment_id, for_update=True)

    code = equipment.code
    if equipment.status not in (RECEIVED, CANCELLED):
        message = f"Equipment {code} is {equipment.status.value} and cannot be deleted"
        await db.rollback()
        raise StateConflictError(message)
    if await load_payments(db, equipment_id):
        await db.rollback()
        raise StateConflictError(f"Equipment {code} has payments and cannot be deleted")

    async with write_transaction(db, f"deleting equipment {equipment.code}"):
        await db.execute(
            delete(EquipmentStatusHistory).where(EquipmentStatusHistory.equipment_id == equipment_id)
        )
        await db.delete(equipment)

    logger.info(
        f"Equipment {code} deleted",
        extra={"equipment_id": equipment_id, "user_id": actor.id},
    )


async def status_history(
    db: AsyncSession, equipment_id: str, actor: Actor
) -> list[StatusHistoryResponse]:
    """History rows newest first, with the acting user's name."""
    await get_equipment(db, equipment_id, actor)

    result = await db.execute(
        select(EquipmentStatusHistory, User.name)
        .outerjoin(User, User.id == EquipmentStatusHistory.changed_by)
        .where(EquipmentStatusHistory.equipment_id == equipment_id)
        .order_by(EquipmentStatusHistory.changed_at.desc())
    )
    return [
        StatusHistoryResponse(
            id=row.id,
            equipment_id=row.equipment_id,
            status=row.status,
            action=row.action,
            observations=row.observations,
            changed_by=row.changed_by,
            changed_by_name=name,
            changed_at=row.changed_at,
        )
        for row, name in result.all()
    ]
