from app.schemas.auth import LoginRequest, Token, TokenData, UserResponse, AuthMeResponse
from app.schemas.customer import CustomerCreate, CustomerResponse, CustomerListResponse
from app.schemas.technician import (
    TechnicianCreate,
    TechnicianResponse,
    TechnicianListResponse,
    TechnicianStatusUpdate,
)
from app.schemas.equipment import (
    EquipmentCreate,
    EquipmentResponse,
    EquipmentDetailResponse,
    EquipmentListResponse,
    StatusChangeRequest,
    StatusChangeResponse,
    StatusHistoryResponse,
    ReactivateRequest,
)
from app.schemas.payment import (
    PaymentCreate,
    PaymentUpdate,
    PaymentResponse,
    PaymentBalanceResponse,
)
from app.schemas.expense import ExpenseCreate, ExpenseResponse, ExpenseListResponse

__all__ = [
    "LoginRequest",
    "Token",
    "TokenData",
    "UserResponse",
    "AuthMeResponse",
    "CustomerCreate",
    "CustomerResponse",
    "CustomerListResponse",
    "TechnicianCreate",
    "TechnicianResponse",
    "TechnicianListResponse",
    "TechnicianStatusUpdate",
    "EquipmentCreate",
    "EquipmentResponse",
    "EquipmentDetailResponse",
    "EquipmentListResponse",
    "StatusChangeRequest",
    "StatusChangeResponse",
    "StatusHistoryResponse",
    "ReactivateRequest",
    "PaymentCreate",
    "PaymentUpdate",
    "PaymentResponse",
    "PaymentBalanceResponse",
    "ExpenseCreate",
    "ExpenseResponse",
    "ExpenseListResponse",
]
