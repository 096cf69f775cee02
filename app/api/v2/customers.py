from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, func, or_
from typing import Optional
import logging

from app.api.deps import DbSession, CurrentUser
from app.database import write_transaction
from app.exceptions import NotFoundError
from app.models.customer import Customer
from app.schemas.customer import CustomerCreate, CustomerResponse, CustomerListResponse
from app.security.rbac import Permission, require_permission

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/",
    response_model=CustomerListResponse,
    dependencies=[Depends(require_permission(Permission.VIEW_CUSTOMERS))],
)
async def list_customers(
    db: DbSession,
    current_user: CurrentUser,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
):
    """List customers with pagination and search."""
    query = select(Customer)

    if search:
        query = query.where(
            or_(
                Customer.name.ilike(f"%{search}%"),
                Customer.phone.ilike(f"%{search}%"),
                Customer.email.ilike(f"%{search}%"),
                Customer.document_number.ilike(f"%{search}%"),
            )
        )

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    offset = (page - 1) * page_size
    query = query.offset(offset).limit(page_size).order_by(Customer.name, Customer.id)
    result = await db.execute(query)

    return CustomerListResponse(
        items=result.scalars().all(),
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{customer_id}",
    response_model=CustomerResponse,
    dependencies=[Depends(require_permission(Permission.VIEW_CUSTOMERS))],
)
async def get_customer(customer_id: int, db: DbSession, current_user: CurrentUser):
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer", str(customer_id))
    return customer


@router.post(
    "/",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission(Permission.MANAGE_CUSTOMERS))],
)
async def create_customer(customer_data: CustomerCreate, db: DbSession, current_user: CurrentUser):
    """Create a new customer."""
    customer = Customer(**customer_data.model_dump())
    async with write_transaction(db, "creating customer"):
        db.add(customer)
    logger.info(f"Customer {customer.id} created", extra={"user_id": current_user.id})
    return customer
