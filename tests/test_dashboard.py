from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from qms import main as app_main
from qms.domain.models import (
    Asset,
    AssetType,
    Checklist,
    ChecklistStatus,
    Department,
    DocumentType,
    MaintenanceFrequency,
    MaintenanceSchedule,
    Ncr,
    NcrSeverity,
    now_utc,
    today_utc,
)
from qms.domain.state_machine import NcrStatus
from qms.infra import audit, db, events
from qms.infra.auth import create_access_token
from qms.infra.context import RequestContext
from qms.services.compliance_service import load_checklists
from qms.services.dashboard_service import DashboardService


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "dashboard_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(audit, "engine", engine)
    monkeypatch.setattr(events, "engine", engine)
    return engine


@pytest.fixture()
def dashboard_client(test_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(role: str, department_id: str | None = None) -> dict[str, str]:
    token = create_access_token(user_id="manager-1", role=role, department_id=department_id)
    return {"Authorization": f"Bearer {token}"}


def _seed(engine: Engine) -> dict[str, str]:
    today = today_utc()
    now = now_utc()
    with Session(engine) as session:
        cardiology = Department(name="Cardiology")
        oncology = Department(name="Oncology")
        session.add(cardiology)
        session.add(oncology)
        session.flush()
        monitors = AssetType(department_id=cardiology.id, name="ECG monitor")
        linacs = AssetType(department_id=oncology.id, name="Linear accelerator")
        session.add(monitors)
        session.add(linacs)
        session.flush()
        monitor = Asset(asset_type_id=monitors.id, asset_tag="ECG-01", name="ECG 1")
        linac = Asset(asset_type_id=linacs.id, asset_tag="LIN-01", name="Linac 1")
        session.add(monitor)
        session.add(linac)
        session.flush()

        document_types = [DocumentType(name=f"Procedure {index}") for index in range(5)]
        for row in document_types:
            session.add(row)
        session.flush()

        for document_type, offset, active in (
            (document_types[0], -2, True),
            (document_types[1], 3, True),
            (document_types[2], 20, True),
            (document_types[3], -5, False),
        ):
            session.add(
                MaintenanceSchedule(
                    asset_id=monitor.id,
                    document_type_id=document_type.id,
                    frequency=MaintenanceFrequency.MONTHLY,
                    next_due=today + timedelta(days=offset),
                    is_active=active,
                )
            )
        session.add(
            MaintenanceSchedule(
                asset_id=linac.id,
                document_type_id=document_types[4].id,
                frequency=MaintenanceFrequency.WEEKLY,
                next_due=today - timedelta(days=1),
            )
        )

        for days_ago, status in (
            (1, ChecklistStatus.COMPLETED),
            (5, ChecklistStatus.COMPLETED),
            (12, ChecklistStatus.COMPLETED),
            (20, ChecklistStatus.DRAFT),
            (45, ChecklistStatus.IN_PROGRESS),
        ):
            session.add(
                Checklist(
                    asset_id=monitor.id,
                    name="ECG daily",
                    created_by="tech-1",
                    status=status,
                    created_at=now - timedelta(days=days_ago),
                )
            )
        session.add(
            Checklist(
                asset_id=linac.id,
                name="Linac QA",
                created_by="tech-2",
                status=ChecklistStatus.DRAFT,
                created_at=now - timedelta(days=2),
            )
        )

        for index, (department_id, status, severity) in enumerate(
            (
                (cardiology.id, NcrStatus.OPEN, NcrSeverity.CRITICAL),
                (cardiology.id, NcrStatus.IN_PROGRESS, NcrSeverity.HIGH),
                (cardiology.id, NcrStatus.CLOSED, NcrSeverity.HIGH),
                (oncology.id, NcrStatus.OPEN, NcrSeverity.LOW),
            ),
            start=1,
        ):
            session.add(
                Ncr(
                    ncr_number=f"NCR-{today.year}-{index:04d}",
                    department_id=department_id,
                    description="seeded",
                    raised_by="qa-1",
                    status=status,
                    severity=severity,
                    due_date=today,
                    created_at=now - timedelta(days=index),
                )
            )
        session.commit()
        return {"cardiology": cardiology.id, "oncology": oncology.id}


def test_org_wide_metrics(dashboard_client: TestClient, test_engine: Engine) -> None:
    _seed(test_engine)

    response = dashboard_client.get("/api/dashboard/metrics", headers=_auth_header("admin"))

    assert response.status_code == 200
    body = response.json()
    assert body["department_id"] is None
    assert body["overdue_maintenance"] == 2
    assert body["due_soon_maintenance"] == 1
    assert body["pending_checklists"] == 3
    assert body["open_ncrs"] == 3
    assert body["compliance_rate"] == 60.0


def test_admin_can_filter_by_department(test_engine: Engine) -> None:
    ids = _seed(test_engine)

    metrics = DashboardService().assemble_metrics(
        RequestContext(user_id="admin-1", role="superadmin"),
        department_id=ids["oncology"],
    )

    assert metrics.department_id == ids["oncology"]
    assert (metrics.overdue_maintenance, metrics.due_soon_maintenance) == (1, 0)
    assert (metrics.pending_checklists, metrics.open_ncrs) == (1, 1)
    assert metrics.compliance_rate == 0.0


def test_scoped_role_ignores_foreign_department(dashboard_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)

    response = dashboard_client.get(
        f"/api/dashboard/metrics?department_id={ids['oncology']}",
        headers=_auth_header("dept_manager", ids["cardiology"]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["department_id"] == ids["cardiology"]
    assert body["overdue_maintenance"] == 1
    assert body["due_soon_maintenance"] == 1
    assert body["pending_checklists"] == 2
    assert body["open_ncrs"] == 2
    assert body["compliance_rate"] == 75.0


def test_dashboard_trends(dashboard_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)

    response = dashboard_client.get("/api/dashboard/trends", headers=_auth_header("viewer", ids["cardiology"]))

    assert response.status_code == 200
    points = response.json()
    assert len(points) == 6
    assert points[-1]["month"] == today_utc().strftime("%b %Y")
    assert sum(point["total"] for point in points) == 5


def test_compliance_report_requires_reporting_permission(
    dashboard_client: TestClient,
    test_engine: Engine,
) -> None:
    ids = _seed(test_engine)

    denied = dashboard_client.get("/api/reports/compliance", headers=_auth_header("viewer", ids["cardiology"]))
    allowed = dashboard_client.get("/api/reports/compliance", headers=_auth_header("auditor", ids["cardiology"]))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    body = allowed.json()
    assert body["summary"]["total"] == 4
    assert body["summary"]["rate"] == 75.0
    assert [row["department_name"] for row in body["by_department"]] == ["Cardiology"]


def test_compliance_by_department_sorted_by_rate(dashboard_client: TestClient, test_engine: Engine) -> None:
    _seed(test_engine)

    response = dashboard_client.get("/api/reports/compliance", headers=_auth_header("admin"))

    rows = response.json()["by_department"]
    assert [(row["department_name"], row["rate"]) for row in rows] == [("Cardiology", 75.0), ("Oncology", 0.0)]


def test_inverted_report_window_is_rejected(dashboard_client: TestClient, test_engine: Engine) -> None:
    _seed(test_engine)
    response = dashboard_client.get(
        "/api/reports/compliance?date_from=2024-03-31&date_to=2024-03-01",
        headers=_auth_header("admin"),
    )
    assert response.status_code == 400


def test_ncr_analysis(dashboard_client: TestClient, test_engine: Engine) -> None:
    _seed(test_engine)

    response = dashboard_client.get("/api/reports/ncr-analysis", headers=_auth_header("admin"))

    assert response.status_code == 200
    body = response.json()
    assert [row["severity"] for row in body["severity_breakdown"]] == ["critical", "high", "medium", "low"]
    by_severity = {row["severity"]: row for row in body["severity_breakdown"]}
    assert (by_severity["high"]["count"], by_severity["high"]["open"]) == (2, 1)
    assert by_severity["medium"]["count"] == 0
    assert len(body["trends"]) == 6
    assert sum(point["total"] for point in body["trends"]) == 4
    assert sum(point["closed"] for point in body["trends"]) == 1


def test_load_checklists_bounds_by_creation_date(test_engine: Engine) -> None:
    ids = _seed(test_engine)
    since = today_utc() - timedelta(days=30)

    with Session(test_engine) as session:
        everywhere = load_checklists(session, None, since)
        cardiology_only = load_checklists(session, ids["cardiology"], since)

    assert len(everywhere) == 5
    assert len(cardiology_only) == 4
    assert {department_id for _, department_id in cardiology_only} == {ids["cardiology"]}


def test_department_performance(dashboard_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    today = today_utc()
    month_start = today.replace(day=1)

    response = dashboard_client.get(
        f"/api/reports/department-performance?department_id={ids['cardiology']}",
        headers=_auth_header("auditor", ids["cardiology"]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Cardiology"
    assert body["total_assets"] == 1
    assert body["checklists_this_month"] == sum(
        1 for days_ago in (1, 5, 12, 20, 45) if today - timedelta(days=days_ago) >= month_start
    )
    assert body["ncrs_this_month"] == sum(1 for days_ago in (1, 2, 3) if today - timedelta(days=days_ago) >= month_start)
    assert [point["activity_date"] for point in body["recent_activity"]] == [
        (today - timedelta(days=days_ago)).isoformat() for days_ago in (1, 5, 12, 20)
    ]
    assert {point["checklist_count"] for point in body["recent_activity"]} == {1}


def test_department_performance_access(dashboard_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)

    foreign = dashboard_client.get(
        f"/api/reports/department-performance?department_id={ids['cardiology']}",
        headers=_auth_header("dept_manager", ids["oncology"]),
    )
    missing_param = dashboard_client.get("/api/reports/department-performance", headers=_auth_header("admin"))
    unknown = dashboard_client.get(
        "/api/reports/department-performance?department_id=missing",
        headers=_auth_header("admin"),
    )

    assert foreign.status_code == 403
    assert missing_param.status_code == 400
    assert unknown.status_code == 404


def test_audit_trail_is_scoped_filtered_and_paged(dashboard_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    manager = _auth_header("dept_manager", ids["cardiology"])
    for index in range(3):
        created = dashboard_client.post(
            "/api/ncrs",
            json={"description": f"Lead fault {index}", "department_id": ids["cardiology"]},
            headers=manager,
        )
        assert created.status_code == 201
    admin_created = dashboard_client.post(
        "/api/ncrs",
        json={"description": "Beam drift", "department_id": ids["oncology"]},
        headers=_auth_header("admin"),
    )
    assert admin_created.status_code == 201

    everything = dashboard_client.get("/api/reports/audit-trail", headers=_auth_header("admin"))
    scoped = dashboard_client.get(
        "/api/reports/audit-trail?entity_type=ncr",
        headers=_auth_header("auditor", ids["cardiology"]),
    )
    second_page = dashboard_client.get("/api/reports/audit-trail?page=2&limit=10", headers=_auth_header("admin"))
    yesterday = today_utc() - timedelta(days=1)
    earlier = dashboard_client.get(
        f"/api/reports/audit-trail?date_from={yesterday - timedelta(days=1)}&date_to={yesterday}",
        headers=_auth_header("admin"),
    )
    denied = dashboard_client.get("/api/reports/audit-trail", headers=_auth_header("viewer", ids["cardiology"]))

    assert everything.status_code == 200
    body = everything.json()
    assert body["total"] == 8
    timestamps = [row["ts"] for row in body["items"]]
    assert timestamps == sorted(timestamps, reverse=True)

    scoped_items = scoped.json()["items"]
    assert scoped.json()["total"] == 3
    assert {row["action"] for row in scoped_items} == {"create_ncr"}
    assert {row["department_id"] for row in scoped_items} == {ids["cardiology"]}

    assert second_page.json()["items"] == []
    assert (second_page.json()["total"], second_page.json()["pages"]) == (8, 1)
    assert earlier.json()["total"] == 0
    assert denied.status_code == 403
