"""
Role-Based Access Control (RBAC) Module

Two roles exist. Administrators may do anything; technicians read equipment
and operational data and move their own equipment out of REPAIR.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Set, Annotated
from fastapi import Depends
import logging

from app.api.deps import CurrentUser
from app.exceptions import PermissionDeniedError
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """Fine-grained permissions."""
    VIEW_EQUIPMENT = "view_equipment"
    MANAGE_EQUIPMENT = "manage_equipment"
    CHANGE_STATUS = "change_status"
    MANAGE_PAYMENTS = "manage_payments"
    MANAGE_EXPENSES = "manage_expenses"
    VIEW_FINANCIAL_REPORTS = "view_financial_reports"
    VIEW_OPERATIONAL_REPORTS = "view_operational_reports"
    MANAGE_CUSTOMERS = "manage_customers"
    VIEW_CUSTOMERS = "view_customers"
    MANAGE_TECHNICIANS = "manage_technicians"


# Role-to-permissions mapping
ROLE_PERMISSIONS: dict[UserRole, Set[Permission]] = {
    UserRole.TECHNICIAN: {
        Permission.VIEW_EQUIPMENT,
        Permission.CHANGE_STATUS,
        Permission.VIEW_OPERATIONAL_REPORTS,
        Permission.VIEW_CUSTOMERS,
    },
    UserRole.ADMINISTRATOR: set(Permission),  # All permissions
}


@dataclass(frozen=True)
class Actor:
    """Identity and role of whoever is calling into a service."""

    id: int
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=UserRole(user.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMINISTRATOR


def get_role_permissions(role: UserRole) -> Set[Permission]:
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(actor: Actor, permission: Permission) -> bool:
    """Check if the actor's role grants a specific permission."""
    return permission in get_role_permissions(actor.role)


def ensure_permission(actor: Actor, permission: Permission) -> None:
    """Raise PermissionDeniedError unless the actor holds the permission."""
    if not has_permission(actor, permission):
        logger.warning(
            f"Permission denied: user {actor.id} lacks {permission.value}",
            extra={"user_id": actor.id, "permission": permission.value}
        )
        raise PermissionDeniedError(f"Permission denied: requires {permission.value}")


def ensure_admin(actor: Actor) -> None:
    if not actor.is_admin:
        logger.warning(
            f"Admin access denied for user {actor.id}",
            extra={"user_id": actor.id, "role": actor.role.value}
        )
        raise PermissionDeniedError("Administrator access required")


async def get_current_actor(current_user: CurrentUser) -> Actor:
    return Actor.from_user(current_user)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


def require_permission(permission: Permission):
    """
    Dependency factory for requiring a specific permission.

    Usage:
        @router.post("/expenses")
        async def create_expense(
            actor: CurrentActor,
            _: None = Depends(require_permission(Permission.MANAGE_EXPENSES))
        ):
            ...
    """
    async def checker(actor: CurrentActor) -> None:
        ensure_permission(actor, permission)
    return checker
