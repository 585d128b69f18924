from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from qms.domain.errors import ConflictError, NotFoundError, ValidationError
from qms.domain.models import (
    Asset,
    ChecklistItem,
    Department,
    EventEnvelope,
    Ncr,
    NcrAction,
    NcrActionCreate,
    NcrActionType,
    NcrActionUpdate,
    NcrCreate,
    NcrListItem,
    NcrSeverity,
    NcrUpdate,
    now_utc,
    today_utc,
)
from qms.domain.scheduling import ncr_due_date
from qms.domain.state_machine import (
    NcrActionStatus,
    NcrStatus,
    can_ncr_action_transition,
    can_ncr_transition,
)
from qms.infra.context import RequestContext
from qms.infra.events import EventBus, event_bus
from qms.services.base import PageRequest, ServiceBase, ensure_department_access, resolve_department_scope
from qms.services.checklist_service import CHECKLIST_ITEM_FAILED

logger = logging.getLogger(__name__)

NCR_NUMBER_ATTEMPTS = 3
DEFAULT_CAPA_DESCRIPTION = "Investigate root cause and implement corrective measures"
SYSTEM_ROLE = "system"


def format_ncr_number(year: int, sequence: int) -> str:
    return f"NCR-{year}-{sequence:04d}"


class NcrService(ServiceBase):
    def _get_ncr(self, session: Session, ncr_id: str) -> Ncr:
        ncr = session.get(Ncr, ncr_id)
        if ncr is None:
            raise NotFoundError("ncr not found")
        return ncr

    def _get_action(self, session: Session, action_id: str) -> NcrAction:
        action = session.get(NcrAction, action_id)
        if action is None:
            raise NotFoundError("ncr action not found")
        return action

    def _list_actions(self, session: Session, ncr_id: str) -> list[NcrAction]:
        return list(
            session.exec(
                select(NcrAction).where(NcrAction.ncr_id == ncr_id).order_by(col(NcrAction.created_at).asc())
            ).all()
        )

    def _next_ncr_number(self, session: Session, year: int) -> str:
        # Count-based sequence; the unique constraint on ncr_number catches collisions.
        existing = session.exec(
            select(func.count()).select_from(Ncr).where(col(Ncr.ncr_number).like(f"NCR-{year}-%"))
        ).one()
        return format_ncr_number(year, int(existing) + 1)

    def _insert_ncr(
        self,
        *,
        raised_by: str,
        department_id: str,
        description: str,
        severity: NcrSeverity,
        asset_id: str | None,
        checklist_item_id: str | None,
        assigned_to: str | None,
        created_at: datetime,
    ) -> tuple[Ncr, NcrAction | None]:
        due_date = ncr_due_date(created_at, severity)
        for attempt in range(1, NCR_NUMBER_ATTEMPTS + 1):
            with self._session() as session:
                ncr_number = self._next_ncr_number(session, created_at.year)
                ncr = Ncr(
                    ncr_number=ncr_number,
                    checklist_item_id=checklist_item_id,
                    asset_id=asset_id,
                    department_id=department_id,
                    description=description,
                    raised_by=raised_by,
                    assigned_to=assigned_to,
                    status=NcrStatus.OPEN,
                    severity=severity,
                    due_date=due_date,
                    created_at=created_at,
                    updated_at=created_at,
                )
                session.add(ncr)
                action: NcrAction | None = None
                if assigned_to:
                    action = NcrAction(
                        ncr_id=ncr.id,
                        action_type=NcrActionType.CORRECTIVE,
                        description=DEFAULT_CAPA_DESCRIPTION,
                        assigned_to=assigned_to,
                        due_date=due_date,
                        status=NcrActionStatus.PENDING,
                        created_by=raised_by,
                    )
                    session.add(action)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    if attempt == NCR_NUMBER_ATTEMPTS:
                        raise ConflictError("could not allocate a unique NCR number") from exc
                    logger.warning("ncr number %s collided, retrying (%d/%d)", ncr_number, attempt, NCR_NUMBER_ATTEMPTS)
                    continue
                session.refresh(ncr)
                if action is not None:
                    session.refresh(action)
                return ncr, action
        raise ConflictError("could not allocate a unique NCR number")

    def _after_create(self, context: RequestContext, ncr: Ncr, action: NcrAction | None) -> None:
        logger.info("ncr %s created (severity=%s, due=%s)", ncr.ncr_number, ncr.severity, ncr.due_date)
        self._log_event(
            context,
            "create_ncr",
            "ncr",
            ncr.id,
            {"ncr_number": ncr.ncr_number, "severity": ncr.severity, "department_id": ncr.department_id},
        )
        if action is not None:
            self._log_event(
                context,
                "create_ncr_action",
                "ncr_action",
                action.id,
                {"ncr_id": ncr.id, "action_type": action.action_type},
            )
        self._publish(
            "ncr.created",
            {"ncr_id": ncr.id, "ncr_number": ncr.ncr_number, "status": ncr.status, "severity": ncr.severity},
            department_id=ncr.department_id,
            actor_id=context.user_id,
        )

    def create_ncr(
        self,
        context: RequestContext,
        payload: NcrCreate,
        *,
        now: datetime | None = None,
    ) -> tuple[Ncr, NcrAction | None]:
        ensure_department_access(context, payload.department_id)
        with self._session() as session:
            if session.get(Department, payload.department_id) is None:
                raise NotFoundError("department not found")
            if payload.asset_id is not None and session.get(Asset, payload.asset_id) is None:
                raise NotFoundError("asset not found")
            if payload.checklist_item_id is not None and session.get(ChecklistItem, payload.checklist_item_id) is None:
                raise NotFoundError("checklist item not found")

        ncr, action = self._insert_ncr(
            raised_by=context.user_id,
            department_id=payload.department_id,
            description=payload.description,
            severity=payload.severity,
            asset_id=payload.asset_id,
            checklist_item_id=payload.checklist_item_id,
            assigned_to=payload.assigned_to,
            created_at=now or now_utc(),
        )
        self._after_create(context, ncr, action)
        return ncr, action

    def create_from_failed_item(self, event: EventEnvelope) -> Ncr:
        payload = event.payload
        item_id = payload.get("checklist_item_id")
        if not isinstance(item_id, str) or event.department_id is None:
            raise ValidationError("failed checklist item event is missing its item or department")
        with self._session() as session:
            existing = session.exec(select(Ncr).where(Ncr.checklist_item_id == item_id)).first()
            if existing is not None:
                return existing

        raised_by = payload.get("raised_by") or event.actor_id or SYSTEM_ROLE
        description = f"Checklist item failed: {payload.get('question', '')}".strip()
        remarks = payload.get("remarks")
        if remarks:
            description = f"{description}\n{remarks}"
        context = RequestContext(user_id=raised_by, role=SYSTEM_ROLE, department_id=event.department_id)
        ncr, action = self._insert_ncr(
            raised_by=raised_by,
            department_id=event.department_id,
            description=description,
            severity=NcrSeverity.MEDIUM,
            asset_id=payload.get("asset_id"),
            checklist_item_id=item_id,
            assigned_to=None,
            created_at=now_utc(),
        )
        self._after_create(context, ncr, action)
        return ncr

    def list_ncrs(
        self,
        context: RequestContext,
        *,
        page: PageRequest,
        status: NcrStatus | None = None,
        severity: NcrSeverity | None = None,
        department_id: str | None = None,
        assigned_to: str | None = None,
    ) -> tuple[list[NcrListItem], int]:
        scoped_department = resolve_department_scope(context, department_id)
        filters: list[Any] = []
        if status is not None:
            filters.append(Ncr.status == status)
        if severity is not None:
            filters.append(Ncr.severity == severity)
        if scoped_department is not None:
            filters.append(Ncr.department_id == scoped_department)
        if assigned_to is not None:
            filters.append(Ncr.assigned_to == assigned_to)

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(Ncr).where(*filters)).one()
            rows = session.exec(
                select(Ncr, func.count(col(NcrAction.id)))
                .outerjoin(NcrAction, col(NcrAction.ncr_id) == Ncr.id)
                .where(*filters)
                .group_by(col(Ncr.id))
                .order_by(col(Ncr.created_at).desc())
                .offset(page.offset)
                .limit(page.limit)
            ).all()

        items = [
            NcrListItem.model_validate({**ncr.model_dump(), "action_count": int(action_count)})
            for ncr, action_count in rows
        ]
        return items, int(total)

    def get_ncr(self, context: RequestContext, ncr_id: str) -> tuple[Ncr, list[NcrAction]]:
        with self._session() as session:
            ncr = self._get_ncr(session, ncr_id)
            ensure_department_access(context, ncr.department_id)
            return ncr, self._list_actions(session, ncr_id)

    def _apply_status(self, ncr: Ncr, target: NcrStatus, today: date) -> None:
        if not can_ncr_transition(ncr.status, target):
            raise ConflictError(f"illegal transition: {ncr.status} -> {target}")
        ncr.status = target
        if target == NcrStatus.COMPLETED:
            ncr.completed_date = today
        if target == NcrStatus.CLOSED:
            ncr.closed_at = now_utc()

    def update_ncr(
        self,
        context: RequestContext,
        ncr_id: str,
        payload: NcrUpdate,
        *,
        today: date | None = None,
    ) -> Ncr:
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("status", "") is None:
            changes.pop("status")
        if not changes:
            raise ValidationError("no fields to update")
        with self._session() as session:
            ncr = self._get_ncr(session, ncr_id)
            ensure_department_access(context, ncr.department_id)
            previous_status = ncr.status
            target = changes.pop("status", None)
            if target is not None and target != ncr.status:
                self._apply_status(ncr, NcrStatus(target), today or today_utc())
            for field_name, value in changes.items():
                setattr(ncr, field_name, value)
            ncr.updated_at = now_utc()
            session.add(ncr)
            session.commit()
            session.refresh(ncr)

        self._log_event(context, "update_ncr", "ncr", ncr.id, payload.model_dump(mode="json", exclude_unset=True))
        if ncr.status != previous_status:
            logger.info("ncr %s moved %s -> %s", ncr.ncr_number, previous_status, ncr.status)
            self._publish(
                "ncr.status_changed",
                {"ncr_id": ncr.id, "from_status": previous_status, "to_status": ncr.status},
                department_id=ncr.department_id,
                actor_id=context.user_id,
            )
        return ncr

    def close_ncr(self, context: RequestContext, ncr_id: str) -> Ncr:
        with self._session() as session:
            ncr = self._get_ncr(session, ncr_id)
            ensure_department_access(context, ncr.department_id)
            if ncr.status == NcrStatus.CLOSED:
                return ncr
            self._apply_status(ncr, NcrStatus.CLOSED, today_utc())
            ncr.updated_at = now_utc()
            session.add(ncr)
            session.commit()
            session.refresh(ncr)

        self._log_event(context, "close_ncr", "ncr", ncr.id, {"ncr_number": ncr.ncr_number})
        return ncr

    def create_action(self, context: RequestContext, ncr_id: str, payload: NcrActionCreate) -> NcrAction:
        with self._session() as session:
            ncr = self._get_ncr(session, ncr_id)
            ensure_department_access(context, ncr.department_id)
            action = NcrAction(
                ncr_id=ncr.id,
                action_type=payload.action_type,
                description=payload.description,
                assigned_to=payload.assigned_to,
                due_date=payload.due_date,
                status=NcrActionStatus.PENDING,
                created_by=context.user_id,
            )
            session.add(action)
            session.commit()
            session.refresh(action)

        self._log_event(
            context,
            "create_ncr_action",
            "ncr_action",
            action.id,
            {"ncr_id": ncr_id, "action_type": action.action_type},
        )
        return action

    def update_action(
        self,
        context: RequestContext,
        action_id: str,
        payload: NcrActionUpdate,
        *,
        today: date | None = None,
    ) -> NcrAction:
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("status", "") is None:
            changes.pop("status")
        if not changes:
            raise ValidationError("no fields to update")
        with self._session() as session:
            action = self._get_action(session, action_id)
            ncr = self._get_ncr(session, action.ncr_id)
            ensure_department_access(context, ncr.department_id)
            target = changes.pop("status", None)
            if target is not None and target != action.status:
                if not can_ncr_action_transition(action.status, NcrActionStatus(target)):
                    raise ConflictError(f"illegal transition: {action.status} -> {target}")
                action.status = NcrActionStatus(target)
                if action.status == NcrActionStatus.COMPLETED:
                    action.completed_date = today or today_utc()
            for field_name, value in changes.items():
                setattr(action, field_name, value)
            action.updated_at = now_utc()
            session.add(action)
            session.commit()
            session.refresh(action)

        self._log_event(
            context,
            "update_ncr_action",
            "ncr_action",
            action.id,
            payload.model_dump(mode="json", exclude_unset=True),
        )
        return action


@dataclass(frozen=True)
class FailedItemNcrHandler:
    """Raises an NCR for each failed checklist item, on the given engine."""

    engine: Engine | None = None

    def __call__(self, event: EventEnvelope) -> None:
        NcrService(engine=self.engine).create_from_failed_item(event)


handle_checklist_item_failed = FailedItemNcrHandler()


def register_event_handlers(bus: EventBus = event_bus, engine: Engine | None = None) -> None:
    bus.subscribe(CHECKLIST_ITEM_FAILED, FailedItemNcrHandler(engine))
