from fastapi import APIRouter
from app.api.v2 import (
    auth,
    customers,
    equipment,
    expenses,
    payments,
    reports,
    technicians,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(technicians.router, prefix="/technicians", tags=["technicians"])
api_router.include_router(equipment.router, prefix="/equipment", tags=["equipment"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(expenses.router, prefix="/expenses", tags=["expenses"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
