from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from qms.domain.permissions import is_org_wide


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    role: str
    department_id: str | None = None

    @property
    def org_wide(self) -> bool:
        return is_org_wide(self.role)


def context_from_claims(claims: dict[str, Any]) -> RequestContext:
    user_id = claims.get("sub")
    role = claims.get("role")
    if not isinstance(user_id, str) or not user_id or not isinstance(role, str) or not role:
        raise ValueError("Invalid token claims")
    department_id = claims.get("department_id")
    return RequestContext(
        user_id=user_id,
        role=role,
        department_id=department_id if isinstance(department_id, str) and department_id else None,
    )
