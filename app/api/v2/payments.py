from fastapi import APIRouter

from app.api.deps import DbSession
from app.schemas.payment import PaymentResponse, PaymentUpdate
from app.security.rbac import CurrentActor
from app.services import payment_ledger as ledger

router = APIRouter()


@router.put("/{payment_id}", response_model=PaymentResponse)
async def update_payment(payment_id: str, data: PaymentUpdate, db: DbSession, actor: CurrentActor):
    """Update a payment. Amounts can only change while it is PENDING."""
    return await ledger.update_payment(db, payment_id, actor, **data.model_dump(exclude_unset=True))
