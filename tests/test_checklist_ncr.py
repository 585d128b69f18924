from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from qms import main as app_main
from qms.domain.errors import ConflictError
from qms.domain.models import (
    Asset,
    AssetType,
    AuditLog,
    Checklist,
    ChecklistCreate,
    ChecklistItem,
    ChecklistItemResult,
    ChecklistItemResultRequest,
    Department,
    EventEnvelope,
    EventRecord,
    Ncr,
    NcrSeverity,
    today_utc,
)
from qms.infra import audit, db, events
from qms.infra.auth import create_access_token
from qms.infra.context import RequestContext
from qms.infra.events import EventBus
from qms.services import base
from qms.services.checklist_service import CHECKLIST_ITEM_FAILED, ChecklistService
from qms.services.ncr_service import NcrService, register_event_handlers


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "checklist_ncr_test.db"
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
def checklist_client(test_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(role: str, department_id: str | None = None, user_id: str = "tech-1") -> dict[str, str]:
    token = create_access_token(user_id=user_id, role=role, department_id=department_id)
    return {"Authorization": f"Bearer {token}"}


def _seed(engine: Engine) -> dict[str, str]:
    with Session(engine) as session:
        icu = Department(name="ICU")
        lab = Department(name="Laboratory")
        session.add(icu)
        session.add(lab)
        session.flush()
        ventilators = AssetType(department_id=icu.id, name="Ventilator")
        session.add(ventilators)
        session.flush()
        ventilator = Asset(asset_type_id=ventilators.id, asset_tag="VENT-01", name="Ventilator 1")
        session.add(ventilator)
        session.commit()
        return {"icu": icu.id, "lab": lab.id, "ventilator": ventilator.id}


def _create_checklist(client: TestClient, ids: dict[str, str]) -> dict:
    response = client.post(
        "/api/checklists",
        json={
            "asset_id": ids["ventilator"],
            "name": "Daily ventilator check",
            "questions": ["Alarm test passes", "Filters replaced", "  "],
        },
        headers=_auth_header("technician", ids["icu"]),
    )
    assert response.status_code == 201
    return response.json()


def test_create_checklist_starts_pending(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)

    body = _create_checklist(checklist_client, ids)

    assert body["checklist"]["status"] == "draft"
    assert [item["question"] for item in body["items"]] == ["Alarm test passes", "Filters replaced"]
    assert {item["result"] for item in body["items"]} == {"pending"}


def test_checklist_without_questions_is_rejected(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    response = checklist_client.post(
        "/api/checklists",
        json={"asset_id": ids["ventilator"], "name": "Empty", "questions": []},
        headers=_auth_header("technician", ids["icu"]),
    )
    assert response.status_code == 400


def test_failed_item_raises_one_ncr(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)
    item_id = checklist["items"][0]["id"]
    headers = _auth_header("technician", ids["icu"])

    failed = checklist_client.post(
        f"/api/checklists/items/{item_id}/result",
        json={"result": "fail", "remarks": "alarm silent"},
        headers=headers,
    )
    failed_again = checklist_client.post(
        f"/api/checklists/items/{item_id}/result",
        json={"result": "fail", "remarks": "still silent"},
        headers=headers,
    )

    assert failed.status_code == 200
    assert failed_again.status_code == 200
    listing = checklist_client.get("/api/ncrs", headers=headers)
    assert listing.status_code == 200
    items = listing.json()["items"]
    assert len(items) == 1
    ncr = items[0]
    assert ncr["checklist_item_id"] == item_id
    assert ncr["asset_id"] == ids["ventilator"]
    assert ncr["department_id"] == ids["icu"]
    assert ncr["severity"] == "medium"
    assert ncr["status"] == "open"
    assert ncr["raised_by"] == "tech-1"
    assert ncr["ncr_number"] == f"NCR-{today_utc().year}-0001"
    assert "Alarm test passes" in ncr["description"]
    assert ncr["action_count"] == 0

    detail = checklist_client.get(f"/api/checklists/{checklist['checklist']['id']}", headers=headers)
    assert detail.json()["checklist"]["status"] == "in_progress"
    with Session(test_engine) as session:
        event_types = [row.event_type for row in session.exec(select(EventRecord)).all()]
    assert event_types.count(CHECKLIST_ITEM_FAILED) == 2
    assert event_types.count("ncr.created") == 1


def test_passing_item_raises_no_ncr(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)

    response = checklist_client.post(
        f"/api/checklists/items/{checklist['items'][1]['id']}/result",
        json={"result": "pass"},
        headers=_auth_header("technician", ids["icu"]),
    )

    assert response.status_code == 200
    with Session(test_engine) as session:
        assert session.exec(select(Ncr)).all() == []


def test_pending_result_is_rejected(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)
    response = checklist_client.post(
        f"/api/checklists/items/{checklist['items'][0]['id']}/result",
        json={"result": "pending"},
        headers=_auth_header("technician", ids["icu"]),
    )
    assert response.status_code == 400


def test_other_department_cannot_record_results(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)
    response = checklist_client.post(
        f"/api/checklists/items/{checklist['items'][0]['id']}/result",
        json={"result": "pass"},
        headers=_auth_header("technician", ids["lab"]),
    )
    assert response.status_code == 403


def test_complete_requires_every_item_answered(checklist_client: TestClient, test_engine: Engine) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)
    checklist_id = checklist["checklist"]["id"]
    headers = _auth_header("technician", ids["icu"])

    checklist_client.post(
        f"/api/checklists/items/{checklist['items'][0]['id']}/result",
        json={"result": "na"},
        headers=headers,
    )
    early = checklist_client.post(f"/api/checklists/{checklist_id}/complete", headers=headers)
    checklist_client.post(
        f"/api/checklists/items/{checklist['items'][1]['id']}/result",
        json={"result": "pass"},
        headers=headers,
    )
    done = checklist_client.post(f"/api/checklists/{checklist_id}/complete", headers=headers)
    late = checklist_client.post(
        f"/api/checklists/items/{checklist['items'][1]['id']}/result",
        json={"result": "fail"},
        headers=headers,
    )

    assert early.status_code == 409
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert done.json()["completed_at"] is not None
    assert late.status_code == 409


def test_failed_item_handler_is_idempotent(test_engine: Engine) -> None:
    ids = _seed(test_engine)
    with Session(test_engine) as session:
        checklist = Checklist(asset_id=ids["ventilator"], name="Weekly", created_by="tech-2")
        session.add(checklist)
        session.flush()
        item = ChecklistItem(checklist_id=checklist.id, question="Battery holds charge")
        session.add(item)
        session.commit()
        item_id = item.id

    envelope = EventEnvelope(
        event_type=CHECKLIST_ITEM_FAILED,
        department_id=ids["icu"],
        actor_id="tech-2",
        payload={"checklist_item_id": item_id, "asset_id": ids["ventilator"], "question": "Battery holds charge"},
    )
    service = NcrService()

    first = service.create_from_failed_item(envelope)
    second = service.create_from_failed_item(envelope)

    assert first.id == second.id
    assert first.severity == NcrSeverity.MEDIUM
    assert first.raised_by == "tech-2"
    assert first.assigned_to is None


def test_failed_item_result_stands_when_ncr_handler_fails(
    checklist_client: TestClient,
    test_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ids = _seed(test_engine)
    checklist = _create_checklist(checklist_client, ids)
    item_id = checklist["items"][0]["id"]

    def _no_number(self: NcrService, event: EventEnvelope) -> Ncr:
        raise ConflictError("could not allocate a unique NCR number")

    monkeypatch.setattr(NcrService, "create_from_failed_item", _no_number)

    response = checklist_client.post(
        f"/api/checklists/items/{item_id}/result",
        json={"result": "fail", "remarks": "alarm silent"},
        headers=_auth_header("technician", ids["icu"]),
    )

    assert response.status_code == 200
    assert response.json()["result"] == "fail"
    with Session(test_engine) as session:
        stored = session.get(ChecklistItem, item_id)
        assert stored is not None
        assert stored.result == ChecklistItemResult.FAIL
        assert session.exec(select(Ncr)).all() == []
        event_types = [row.event_type for row in session.exec(select(EventRecord)).all()]
    assert event_types == [CHECKLIST_ITEM_FAILED]


def test_injected_engine_carries_audit_events_and_ncr(
    test_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    other_engine = create_engine(
        f"sqlite:///{tmp_path / 'injected.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(other_engine)
    ids = _seed(other_engine)
    bus = EventBus()
    monkeypatch.setattr(base, "event_bus", bus)
    register_event_handlers(bus, engine=other_engine)
    register_event_handlers(bus, engine=other_engine)

    context = RequestContext(user_id="tech-3", role="technician", department_id=ids["icu"])
    service = ChecklistService(engine=other_engine)
    _, items = service.create_checklist(
        context,
        ChecklistCreate(asset_id=ids["ventilator"], name="Night round", questions=["Oxygen supply connected"]),
    )
    service.record_item_result(context, items[0].id, ChecklistItemResultRequest(result=ChecklistItemResult.FAIL))

    with Session(other_engine) as session:
        ncrs = session.exec(select(Ncr)).all()
        assert len(ncrs) == 1
        assert ncrs[0].checklist_item_id == items[0].id
        audit_actions = {row.action for row in session.exec(select(AuditLog)).all()}
        assert {"create_checklist", "record_checklist_item", "create_ncr"} <= audit_actions
        assert len(session.exec(select(EventRecord)).all()) == 2
    with Session(test_engine) as session:
        assert session.exec(select(AuditLog)).all() == []
        assert session.exec(select(EventRecord)).all() == []
