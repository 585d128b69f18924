from __future__ import annotations

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from qms import main as app_main
from qms.api.deps import handle_service_error
from qms.api.routers import dashboard
from qms.domain.errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    QmsError,
    ValidationError,
)
from qms.infra import migrate
from qms.infra.auth import create_access_token


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ValidationError("bad window"), 400),
        (AuthorizationError("access denied to this department"), 403),
        (NotFoundError("ncr not found"), 404),
        (ConflictError("illegal transition: closed -> in_progress"), 409),
    ],
)
def test_service_errors_map_to_status(error: QmsError, status_code: int) -> None:
    with pytest.raises(HTTPException) as caught:
        handle_service_error(error)
    assert caught.value.status_code == status_code
    assert caught.value.detail == str(error)


def test_internal_error_hides_detail() -> None:
    with pytest.raises(HTTPException) as caught:
        handle_service_error(InternalError("db password rejected"))
    assert caught.value.status_code == 500
    assert caught.value.detail == "Internal server error"


def test_unexpected_exception_returns_generic_500() -> None:
    class _BrokenDashboard:
        def assemble_metrics(self, *args: object, **kwargs: object) -> None:
            raise RuntimeError("connection reset")

    app_main.app.dependency_overrides[dashboard.get_dashboard_service] = _BrokenDashboard
    try:
        client = TestClient(app_main.app, raise_server_exceptions=False)
        token = create_access_token(user_id="admin-1", role="admin")
        response = client.get("/api/dashboard/metrics", headers={"Authorization": f"Bearer {token}"})
    finally:
        app_main.app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_invalid_token_is_unauthorized() -> None:
    client = TestClient(app_main.app)
    response = client.get("/api/dashboard/metrics", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_run_upgrade_head(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[str, str | None]] = []

    def _upgrade(config: object, revision: str) -> None:
        calls.append((revision, getattr(config, "config_file_name", None)))

    monkeypatch.setattr(migrate.command, "upgrade", _upgrade)
    migrate.run_upgrade_head()

    assert calls == [("head", "alembic.ini")]
