from fastapi import APIRouter, Depends, status
from sqlalchemy import select
import logging

from app.api.deps import DbSession, get_password_hash
from app.database import write_transaction
from app.exceptions import NotFoundError, StateConflictError
from app.models.user import User, UserRole, UserStatus
from app.schemas.technician import (
    TechnicianCreate,
    TechnicianResponse,
    TechnicianListResponse,
    TechnicianStatusUpdate,
)
from app.security.rbac import Permission, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_permission(Permission.MANAGE_TECHNICIANS))])


async def _get_technician(db, technician_id: int) -> User:
    technician = await db.get(User, technician_id)
    if technician is None or technician.role != UserRole.TECHNICIAN:
        raise NotFoundError("Technician", str(technician_id))
    return technician


@router.get("/", response_model=TechnicianListResponse)
async def list_technicians(db: DbSession, active_only: bool = False):
    """List technicians, optionally only the ACTIVE ones."""
    query = select(User).where(User.role == UserRole.TECHNICIAN)
    if active_only:
        query = query.where(User.status == UserStatus.ACTIVE)
    result = await db.execute(query.order_by(User.name))
    items = result.scalars().all()
    return TechnicianListResponse(items=items, total=len(items))


@router.post("/", response_model=TechnicianResponse, status_code=status.HTTP_201_CREATED)
async def create_technician(data: TechnicianCreate, db: DbSession):
    """Create a technician account."""
    existing = await db.execute(select(User).where(User.email == data.email))
    if existing.scalar_one_or_none():
        raise StateConflictError(f"A user with email {data.email} already exists")

    technician = User(
        email=data.email,
        name=data.name,
        hashed_password=get_password_hash(data.password),
        role=UserRole.TECHNICIAN,
        status=UserStatus.ACTIVE,
    )
    async with write_transaction(db, "creating technician"):
        db.add(technician)
    logger.info(f"Technician {technician.id} created")
    return technician


@router.patch("/{technician_id}/status", response_model=TechnicianResponse)
async def update_technician_status(
    technician_id: int, data: TechnicianStatusUpdate, db: DbSession
):
    """Activate or deactivate a technician."""
    technician = await _get_technician(db, technician_id)
    async with write_transaction(db, f"updating technician {technician_id}"):
        technician.status = data.status
    logger.info(f"Technician {technician_id} is now {data.status.value}")
    return technician
