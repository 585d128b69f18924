from __future__ import annotations

import pytest

from qms.domain.errors import AuthorizationError
from qms.domain.permissions import (
    PERM_MAINTENANCE_DELETE,
    PERM_MAINTENANCE_EXECUTE,
    PERM_MAINTENANCE_READ,
    PERM_MAINTENANCE_WRITE,
    PERM_NCR_DELETE,
    PERM_NCR_WRITE,
    PERM_REPORTING_READ,
    Role,
    authorize,
    permissions_for,
)
from qms.infra.context import RequestContext, context_from_claims
from qms.services.base import PageRequest, ensure_department_access, resolve_department_scope


def test_role_permission_layers() -> None:
    assert PERM_MAINTENANCE_READ in permissions_for(Role.VIEWER)
    assert PERM_NCR_WRITE not in permissions_for(Role.VIEWER)
    assert PERM_MAINTENANCE_EXECUTE in permissions_for(Role.TECHNICIAN)
    assert PERM_MAINTENANCE_WRITE not in permissions_for(Role.TECHNICIAN)
    assert PERM_REPORTING_READ in permissions_for(Role.AUDITOR)
    assert PERM_MAINTENANCE_DELETE not in permissions_for(Role.DEPT_MANAGER)
    assert PERM_NCR_DELETE in permissions_for(Role.ADMIN)
    assert permissions_for("janitor") == frozenset()


def test_authorize_reports_reason_when_denied() -> None:
    context = RequestContext(user_id="u1", role="technician", department_id="d1")

    allowed = authorize(context, PERM_NCR_WRITE)
    denied = authorize(context, PERM_NCR_DELETE)

    assert allowed.allowed
    assert allowed.reason is None
    assert not denied.allowed
    assert denied.permission == PERM_NCR_DELETE
    assert "technician" in (denied.reason or "")


def test_department_scope_is_forced_for_scoped_roles() -> None:
    manager = RequestContext(user_id="u1", role="dept_manager", department_id="d1")
    admin = RequestContext(user_id="u2", role="admin")

    assert resolve_department_scope(manager, "d2") == "d1"
    assert resolve_department_scope(manager, None) == "d1"
    assert resolve_department_scope(admin, "d2") == "d2"
    assert resolve_department_scope(admin, None) is None


def test_department_scope_requires_assignment() -> None:
    with pytest.raises(AuthorizationError):
        resolve_department_scope(RequestContext(user_id="u1", role="viewer"), None)


def test_ensure_department_access() -> None:
    manager = RequestContext(user_id="u1", role="dept_manager", department_id="d1")
    ensure_department_access(manager, "d1")
    ensure_department_access(RequestContext(user_id="u2", role="superadmin"), "d9")
    with pytest.raises(AuthorizationError):
        ensure_department_access(manager, "d2")


def test_context_from_claims() -> None:
    context = context_from_claims({"sub": "u1", "role": "auditor", "department_id": ""})
    assert context == RequestContext(user_id="u1", role="auditor", department_id=None)
    with pytest.raises(ValueError):
        context_from_claims({"role": "auditor"})


@pytest.mark.parametrize(
    ("page", "limit", "expected"),
    [
        (None, None, (1, 20)),
        (0, 5, (1, 10)),
        (3, 500, (3, 100)),
        (2, 25, (2, 25)),
    ],
)
def test_page_request_clamping(page: int | None, limit: int | None, expected: tuple[int, int]) -> None:
    request = PageRequest.clamped(page, limit)
    assert (request.page, request.limit) == expected


def test_page_request_offset_and_pages() -> None:
    request = PageRequest.clamped(3, 10)
    assert request.offset == 20
    assert request.pages(0) == 0
    assert request.pages(21) == 3
