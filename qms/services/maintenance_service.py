from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from qms.domain.errors import ConflictError, NotFoundError, ValidationError
from qms.domain.models import (
    Asset,
    AssetType,
    DocumentType,
    MaintenanceFrequency,
    MaintenanceRecord,
    MaintenanceRecordCreate,
    MaintenanceRecordStatusRequest,
    MaintenanceSchedule,
    MaintenanceScheduleCreate,
    MaintenanceScheduleListItem,
    MaintenanceScheduleUpdate,
    now_utc,
    today_utc,
)
from qms.domain.scheduling import DUE_SOON_DAYS, DueBucket, classify_due, compute_next_due
from qms.domain.state_machine import MaintenanceRecordStatus, can_record_transition
from qms.infra.context import RequestContext
from qms.services.base import PageRequest, ServiceBase, ensure_department_access, resolve_department_scope

logger = logging.getLogger(__name__)

RECENT_RECORDS_LIMIT = 10


def count_due_buckets(schedules: Iterable[MaintenanceSchedule], today: date) -> Counter[DueBucket]:
    """Partition active schedules with a next-due date into due buckets."""
    counts: Counter[DueBucket] = Counter({bucket: 0 for bucket in DueBucket})
    for schedule in schedules:
        if not schedule.is_active or schedule.next_due is None:
            continue
        counts[classify_due(schedule.next_due, today)] += 1
    return counts


class MaintenanceService(ServiceBase):
    def _get_schedule(self, session: Session, schedule_id: str) -> tuple[MaintenanceSchedule, str]:
        row = session.exec(
            select(MaintenanceSchedule, AssetType.department_id)
            .join(Asset, Asset.id == MaintenanceSchedule.asset_id)
            .join(AssetType, AssetType.id == Asset.asset_type_id)
            .where(MaintenanceSchedule.id == schedule_id)
        ).first()
        if row is None:
            raise NotFoundError("maintenance schedule not found")
        schedule, department_id = row
        return schedule, department_id

    def _get_record(self, session: Session, record_id: str) -> MaintenanceRecord:
        record = session.get(MaintenanceRecord, record_id)
        if record is None:
            raise NotFoundError("maintenance record not found")
        return record

    def _ensure_document_type(self, session: Session, document_type_id: str) -> None:
        if session.get(DocumentType, document_type_id) is None:
            raise NotFoundError("document type not found")

    def _find_active_duplicate(
        self,
        session: Session,
        asset_id: str,
        document_type_id: str,
        exclude_id: str | None = None,
    ) -> MaintenanceSchedule | None:
        statement = (
            select(MaintenanceSchedule)
            .where(MaintenanceSchedule.asset_id == asset_id)
            .where(MaintenanceSchedule.document_type_id == document_type_id)
            .where(col(MaintenanceSchedule.is_active).is_(True))
        )
        if exclude_id is not None:
            statement = statement.where(MaintenanceSchedule.id != exclude_id)
        return session.exec(statement).first()

    def _advance_schedule(self, session: Session, schedule_id: str | None, done_on: date) -> date | None:
        if schedule_id is None:
            return None
        schedule = session.get(MaintenanceSchedule, schedule_id)
        if schedule is None:
            return None
        schedule.last_done = done_on
        schedule.next_due = compute_next_due(done_on, schedule.frequency, schedule.frequency_value)
        schedule.updated_at = now_utc()
        session.add(schedule)
        return schedule.next_due

    def create_schedule(
        self,
        context: RequestContext,
        payload: MaintenanceScheduleCreate,
        *,
        today: date | None = None,
    ) -> MaintenanceSchedule:
        return self.create_schedules(context, [payload], today=today)[0]

    def create_schedules_for_asset(
        self,
        context: RequestContext,
        asset_id: str,
        payloads: Sequence[MaintenanceScheduleCreate],
        *,
        today: date | None = None,
    ) -> list[MaintenanceSchedule]:
        """Create every schedule of a newly onboarded asset, all or nothing."""
        bound = [payload.model_copy(update={"asset_id": asset_id}) for payload in payloads]
        return self.create_schedules(context, bound, today=today)

    def create_schedules(
        self,
        context: RequestContext,
        payloads: Sequence[MaintenanceScheduleCreate],
        *,
        today: date | None = None,
    ) -> list[MaintenanceSchedule]:
        if not payloads:
            raise ValidationError("at least one schedule is required")
        base_date = today or today_utc()
        seen: set[tuple[str, str]] = set()
        rows: list[MaintenanceSchedule] = []
        with self._session() as session:
            for payload in payloads:
                _, department_id = self._get_asset_with_department(session, payload.asset_id)
                ensure_department_access(context, department_id)
                self._ensure_document_type(session, payload.document_type_id)
                key = (payload.asset_id, payload.document_type_id)
                if key in seen or self._find_active_duplicate(session, *key) is not None:
                    raise ConflictError("maintenance schedule already exists for this asset and document type")
                seen.add(key)
                next_due = payload.next_due or compute_next_due(
                    base_date,
                    payload.frequency,
                    payload.frequency_value,
                )
                row = MaintenanceSchedule(
                    asset_id=payload.asset_id,
                    document_type_id=payload.document_type_id,
                    frequency=payload.frequency,
                    frequency_value=payload.frequency_value,
                    next_due=next_due,
                    is_active=True,
                )
                session.add(row)
                rows.append(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("maintenance schedule already exists for this asset and document type") from exc
            for row in rows:
                session.refresh(row)

        for row in rows:
            logger.info("maintenance schedule %s created for asset %s", row.id, row.asset_id)
            self._log_event(
                context,
                "create_maintenance_schedule",
                "maintenance_schedule",
                row.id,
                {"asset_id": row.asset_id, "document_type_id": row.document_type_id, "frequency": row.frequency},
            )
            self._publish(
                "maintenance.schedule.created",
                {"schedule_id": row.id, "asset_id": row.asset_id, "next_due": row.next_due.isoformat() if row.next_due else None},
                actor_id=context.user_id,
            )
        return rows

    def list_schedules(
        self,
        context: RequestContext,
        *,
        page: PageRequest,
        asset_id: str | None = None,
        department_id: str | None = None,
        frequency: MaintenanceFrequency | None = None,
        overdue: bool = False,
        due_soon: bool = False,
        active: bool | None = None,
        today: date | None = None,
    ) -> tuple[list[MaintenanceScheduleListItem], int]:
        current = today or today_utc()
        scoped_department = resolve_department_scope(context, department_id)
        statement = (
            select(MaintenanceSchedule, AssetType.department_id)
            .join(Asset, Asset.id == MaintenanceSchedule.asset_id)
            .join(AssetType, AssetType.id == Asset.asset_type_id)
        )
        if asset_id is not None:
            statement = statement.where(MaintenanceSchedule.asset_id == asset_id)
        if scoped_department is not None:
            statement = statement.where(AssetType.department_id == scoped_department)
        if frequency is not None:
            statement = statement.where(MaintenanceSchedule.frequency == frequency)
        if overdue:
            statement = statement.where(col(MaintenanceSchedule.next_due) < current)
        if due_soon:
            statement = statement.where(
                col(MaintenanceSchedule.next_due).between(current, current + timedelta(days=DUE_SOON_DAYS))
            )
        if active is not None:
            statement = statement.where(MaintenanceSchedule.is_active == active)

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(statement.subquery())).one()
            rows = session.exec(
                statement.order_by(col(MaintenanceSchedule.next_due).asc(), col(MaintenanceSchedule.created_at).asc())
                .offset(page.offset)
                .limit(page.limit)
            ).all()

        items: list[MaintenanceScheduleListItem] = []
        for schedule, row_department_id in rows:
            days_until_due = (schedule.next_due - current).days if schedule.next_due is not None else None
            due_status = classify_due(schedule.next_due, current).value if schedule.next_due is not None else None
            items.append(
                MaintenanceScheduleListItem.model_validate(
                    {
                        **schedule.model_dump(),
                        "department_id": row_department_id,
                        "days_until_due": days_until_due,
                        "due_status": due_status,
                    }
                )
            )
        return items, int(total)

    def get_schedule(
        self,
        context: RequestContext,
        schedule_id: str,
    ) -> tuple[MaintenanceSchedule, list[MaintenanceRecord]]:
        with self._session() as session:
            schedule, department_id = self._get_schedule(session, schedule_id)
            ensure_department_access(context, department_id)
            records = list(
                session.exec(
                    select(MaintenanceRecord)
                    .where(MaintenanceRecord.schedule_id == schedule_id)
                    .order_by(col(MaintenanceRecord.created_at).desc())
                    .limit(RECENT_RECORDS_LIMIT)
                ).all()
            )
            return schedule, records

    def update_schedule(
        self,
        context: RequestContext,
        schedule_id: str,
        payload: MaintenanceScheduleUpdate,
        *,
        today: date | None = None,
    ) -> MaintenanceSchedule:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationError("no fields to update")
        with self._session() as session:
            schedule, department_id = self._get_schedule(session, schedule_id)
            ensure_department_access(context, department_id)
            if changes.get("is_active") is True and not schedule.is_active:
                duplicate = self._find_active_duplicate(
                    session,
                    schedule.asset_id,
                    schedule.document_type_id,
                    exclude_id=schedule.id,
                )
                if duplicate is not None:
                    raise ConflictError("maintenance schedule already exists for this asset and document type")
            for field_name, value in changes.items():
                setattr(schedule, field_name, value)
            frequency_changed = "frequency" in changes or "frequency_value" in changes
            if frequency_changed and "next_due" not in changes:
                schedule.next_due = compute_next_due(
                    today or today_utc(),
                    schedule.frequency,
                    schedule.frequency_value,
                )
            schedule.updated_at = now_utc()
            session.add(schedule)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("maintenance schedule already exists for this asset and document type") from exc
            session.refresh(schedule)

        self._log_event(
            context,
            "update_maintenance_schedule",
            "maintenance_schedule",
            schedule.id,
            payload.model_dump(mode="json", exclude_unset=True),
        )
        return schedule

    def deactivate_schedule(self, context: RequestContext, schedule_id: str) -> MaintenanceSchedule:
        with self._session() as session:
            schedule, department_id = self._get_schedule(session, schedule_id)
            ensure_department_access(context, department_id)
            schedule.is_active = False
            schedule.updated_at = now_utc()
            session.add(schedule)
            session.commit()
            session.refresh(schedule)

        logger.info("maintenance schedule %s deactivated", schedule.id)
        self._log_event(
            context,
            "deactivate_maintenance_schedule",
            "maintenance_schedule",
            schedule.id,
            {"asset_id": schedule.asset_id, "document_type_id": schedule.document_type_id},
        )
        return schedule

    def record_maintenance(
        self,
        context: RequestContext,
        schedule_id: str,
        payload: MaintenanceRecordCreate,
    ) -> MaintenanceRecord:
        if payload.start_time and payload.end_time and payload.end_time < payload.start_time:
            raise ValidationError("end time must not precede start time")
        with self._session() as session:
            schedule, department_id = self._get_schedule(session, schedule_id)
            ensure_department_access(context, department_id)
            if not schedule.is_active:
                raise ConflictError("cannot record maintenance against an inactive schedule")
            record = MaintenanceRecord(
                asset_id=schedule.asset_id,
                schedule_id=schedule.id,
                checklist_id=payload.checklist_id,
                maintenance_type=payload.maintenance_type,
                performed_by=context.user_id,
                start_time=payload.start_time,
                end_time=payload.end_time,
                status=payload.status,
                findings=payload.findings,
                parts_used=payload.parts_used,
                cost=payload.cost,
            )
            if payload.status == MaintenanceRecordStatus.COMPLETED:
                done_on = (payload.end_time or now_utc()).date()
                record.next_maintenance_date = self._advance_schedule(session, schedule.id, done_on)
            session.add(record)
            session.commit()
            session.refresh(record)

        self._log_event(
            context,
            "record_maintenance",
            "maintenance_record",
            record.id,
            {"schedule_id": schedule_id, "status": record.status},
        )
        self._publish(
            "maintenance.record.created",
            {"record_id": record.id, "schedule_id": schedule_id, "status": record.status},
            department_id=department_id,
            actor_id=context.user_id,
        )
        return record

    def update_record_status(
        self,
        context: RequestContext,
        record_id: str,
        payload: MaintenanceRecordStatusRequest,
    ) -> MaintenanceRecord:
        with self._session() as session:
            record = self._get_record(session, record_id)
            _, department_id = self._get_asset_with_department(session, record.asset_id)
            ensure_department_access(context, department_id)
            previous_status = record.status
            if record.status == payload.status:
                return record
            if not can_record_transition(record.status, payload.status):
                raise ConflictError(f"illegal transition: {record.status} -> {payload.status}")
            record.status = payload.status
            if payload.findings is not None:
                record.findings = payload.findings
            if payload.status == MaintenanceRecordStatus.COMPLETED:
                record.end_time = record.end_time or now_utc()
                record.next_maintenance_date = self._advance_schedule(
                    session,
                    record.schedule_id,
                    record.end_time.date(),
                )
            record.updated_at = now_utc()
            session.add(record)
            session.commit()
            session.refresh(record)

        self._log_event(
            context,
            "update_maintenance_record_status",
            "maintenance_record",
            record.id,
            {"from_status": previous_status, "to_status": record.status},
        )
        return record
