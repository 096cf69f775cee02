from fastapi import APIRouter, Depends, status
from datetime import date
from typing import Optional

from app.api.deps import DbSession
from app.models.expense import ExpenseType
from app.schemas.expense import ExpenseCreate, ExpenseListResponse, ExpenseResponse
from app.security.rbac import CurrentActor, Permission, require_permission
from app.services import expenses as expense_service

router = APIRouter()


@router.get(
    "/",
    response_model=ExpenseListResponse,
    dependencies=[Depends(require_permission(Permission.MANAGE_EXPENSES))],
)
async def list_expenses(
    db: DbSession,
    type: Optional[ExpenseType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    beneficiary: Optional[str] = None,
):
    """List expenses, newest first."""
    items = await expense_service.list_expenses(
        db, type=type, start_date=start_date, end_date=end_date, beneficiary=beneficiary
    )
    return ExpenseListResponse(items=items, total=len(items))


@router.post("/", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(data: ExpenseCreate, db: DbSession, actor: CurrentActor):
    return await expense_service.create_expense(db, actor, **data.model_dump())
