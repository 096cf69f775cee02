"""Equipment intake, lifecycle transitions, history and payments."""

from fastapi import APIRouter, Query, status
from typing import Optional

from app.api.deps import DbSession
from app.models.equipment import EquipmentStatus, EquipmentType
from app.schemas.equipment import (
    EquipmentCreate,
    EquipmentDetailResponse,
    EquipmentListResponse,
    EquipmentResponse,
    ReactivateRequest,
    StatusChangeRequest,
    StatusChangeResponse,
    StatusHistoryResponse,
)
from app.schemas.payment import PaymentBalanceResponse, PaymentCreate, PaymentResponse
from app.security.rbac import CurrentActor
from app.services import equipment_lifecycle as lifecycle
from app.services import payment_ledger as ledger

router = APIRouter()


@router.get("/", response_model=EquipmentListResponse)
async def list_equipment(
    db: DbSession,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[EquipmentStatus] = None,
    type: Optional[EquipmentType] = None,
    technician_id: Optional[int] = None,
    search: Optional[str] = None,
):
    """List equipment, newest first."""
    items, total = await lifecycle.list_equipment(
        db,
        actor,
        status=status,
        type=type,
        technician_id=technician_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    return EquipmentListResponse(items=items, total=total, page=page, page_size=page_size)


@router.post("/", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_equipment(data: EquipmentCreate, db: DbSession, actor: CurrentActor):
    """Register equipment received from a customer."""
    return await lifecycle.create_equipment(db, actor, **data.model_dump())


@router.get("/{equipment_id}", response_model=EquipmentDetailResponse)
async def get_equipment(equipment_id: str, db: DbSession, actor: CurrentActor):
    """Equipment with its active payment and balance."""
    equipment = await lifecycle.get_equipment(db, equipment_id, actor)
    payments = await ledger.load_payments(db, equipment_id)
    active = ledger.active_payment(payments)
    detail = EquipmentDetailResponse.model_validate(equipment)
    detail.active_payment = PaymentResponse.model_validate(active) if active else None
    detail.balance = ledger.compute_balance(equipment_id, payments)
    return detail


@router.delete("/{equipment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_equipment(equipment_id: str, db: DbSession, actor: CurrentActor):
    await lifecycle.delete_equipment(db, equipment_id, actor)


@router.post("/{equipment_id}/status", response_model=StatusChangeResponse)
async def change_status(
    equipment_id: str, data: StatusChangeRequest, db: DbSession, actor: CurrentActor
):
    """Move the equipment to a new status."""
    result = await lifecycle.transition(
        db,
        equipment_id,
        data.status,
        actor,
        observations=data.observations,
        assigned_technician_id=data.assigned_technician_id,
    )
    return StatusChangeResponse(
        equipment=EquipmentResponse.model_validate(result.equipment),
        warnings=result.warnings,
    )


@router.post("/{equipment_id}/reactivate", response_model=EquipmentResponse)
async def reactivate_equipment(
    equipment_id: str,
    db: DbSession,
    actor: CurrentActor,
    data: Optional[ReactivateRequest] = None,
):
    """Return CANCELLED equipment to RECEIVED."""
    return await lifecycle.reactivate(
        db, equipment_id, actor, observations=data.observations if data else None
    )


@router.get("/{equipment_id}/history", response_model=list[StatusHistoryResponse])
async def get_status_history(equipment_id: str, db: DbSession, actor: CurrentActor):
    """Status history, newest first."""
    return await lifecycle.status_history(db, equipment_id, actor)


@router.get("/{equipment_id}/payments", response_model=PaymentBalanceResponse)
async def get_payment_balance(equipment_id: str, db: DbSession, actor: CurrentActor):
    await lifecycle.get_equipment(db, equipment_id, actor)
    return await ledger.get_payment_balance(db, equipment_id)


@router.post(
    "/{equipment_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    equipment_id: str, data: PaymentCreate, db: DbSession, actor: CurrentActor
):
    """Record money received for the equipment."""
    return await ledger.record_payment(db, equipment_id, actor, **data.model_dump())
