from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_CATALOG_READ = "catalog.read"
PERM_CATALOG_WRITE = "catalog.write"
PERM_PROCEDURE_CLIENT = "procedure.client"
PERM_TASK_REVIEW = "task.review"
PERM_GAMIFICATION_READ = "gamification.read"
PERM_NOTIFICATION_READ = "notification.read"

CLIENT_PERMISSIONS = [PERM_CATALOG_READ, PERM_PROCEDURE_CLIENT, PERM_NOTIFICATION_READ]
EMPLOYEE_PERMISSIONS = [
    PERM_CATALOG_READ,
    PERM_TASK_REVIEW,
    PERM_GAMIFICATION_READ,
    PERM_NOTIFICATION_READ,
]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
