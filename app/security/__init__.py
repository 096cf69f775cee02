# Security module
from app.security.rbac import (
    Actor,
    CurrentActor,
    Permission,
    ensure_admin,
    ensure_permission,
    require_permission,
)

__all__ = [
    "Actor",
    "CurrentActor",
    "Permission",
    "ensure_admin",
    "ensure_permission",
    "require_permission",
]
