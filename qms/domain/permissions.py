from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qms.infra.context import RequestContext


class Role(StrEnum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    AUDITOR = "auditor"
    DEPT_MANAGER = "dept_manager"
    TECHNICIAN = "technician"
    VIEWER = "viewer"


ORG_WIDE_ROLES: frozenset[Role] = frozenset({Role.SUPERADMIN, Role.ADMIN})

PERM_MAINTENANCE_READ = "maintenance.read"
PERM_MAINTENANCE_WRITE = "maintenance.write"
PERM_MAINTENANCE_EXECUTE = "maintenance.execute"
PERM_MAINTENANCE_DELETE = "maintenance.delete"
PERM_CHECKLIST_READ = "checklist.read"
PERM_CHECKLIST_WRITE = "checklist.write"
PERM_NCR_READ = "ncr.read"
PERM_NCR_WRITE = "ncr.write"
PERM_NCR_DELETE = "ncr.delete"
PERM_DASHBOARD_READ = "dashboard.read"
PERM_REPORTING_READ = "reporting.read"

_READ_PERMISSIONS = frozenset(
    {
        PERM_MAINTENANCE_READ,
        PERM_CHECKLIST_READ,
        PERM_NCR_READ,
        PERM_DASHBOARD_READ,
    }
)
_FIELD_PERMISSIONS = _READ_PERMISSIONS | {PERM_MAINTENANCE_EXECUTE, PERM_CHECKLIST_WRITE, PERM_NCR_WRITE}
_MANAGER_PERMISSIONS = _FIELD_PERMISSIONS | {PERM_MAINTENANCE_WRITE, PERM_REPORTING_READ}
_ADMIN_PERMISSIONS = _MANAGER_PERMISSIONS | {PERM_MAINTENANCE_DELETE, PERM_NCR_DELETE}

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.SUPERADMIN: _ADMIN_PERMISSIONS,
    Role.ADMIN: _ADMIN_PERMISSIONS,
    Role.AUDITOR: _MANAGER_PERMISSIONS,
    Role.DEPT_MANAGER: _MANAGER_PERMISSIONS,
    Role.TECHNICIAN: _FIELD_PERMISSIONS,
    Role.VIEWER: _READ_PERMISSIONS,
}


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    permission: str
    reason: str | None = None


def permissions_for(role: str | None) -> frozenset[str]:
    try:
        return ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return frozenset()


def is_org_wide(role: str | None) -> bool:
    return role in {item.value for item in ORG_WIDE_ROLES}


def authorize(context: RequestContext, permission: str) -> AuthorizationDecision:
    if permission in permissions_for(context.role):
        return AuthorizationDecision(allowed=True, permission=permission)
    return AuthorizationDecision(
        allowed=False,
        permission=permission,
        reason=f"role {context.role!r} lacks permission {permission}",
    )
