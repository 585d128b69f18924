from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from typing import Any

from sqlalchemy import func
from sqlmodel import col, select

from qms.domain.compliance import TREND_MONTHS, created_on, day_start, month_windows
from qms.domain.errors import NotFoundError, ValidationError
from qms.domain.models import (
    OPEN_NCR_STATES,
    Asset,
    AssetType,
    AuditLog,
    DailyActivityPoint,
    Department,
    DepartmentPerformanceRead,
    Ncr,
    NcrAnalysisRead,
    NcrSeverity,
    NcrSeverityBreakdown,
    NcrTrendPoint,
    today_utc,
)
from qms.domain.state_machine import NcrStatus
from qms.infra.context import RequestContext
from qms.services.base import PageRequest, ServiceBase, ensure_department_access, resolve_department_scope
from qms.services.compliance_service import DEFAULT_WINDOW_DAYS, default_window, load_checklists

SEVERITY_ORDER = (NcrSeverity.CRITICAL, NcrSeverity.HIGH, NcrSeverity.MEDIUM, NcrSeverity.LOW)


def _resolve_window(window_start: date | None, window_end: date | None) -> tuple[date, date]:
    default_start, default_end = default_window(today_utc())
    start = window_start or default_start
    end = window_end or default_end
    if end < start:
        raise ValidationError("window end must not precede window start")
    return start, end


class ReportingService(ServiceBase):
    def ncr_analysis(
        self,
        context: RequestContext,
        *,
        window_start: date | None = None,
        window_end: date | None = None,
        department_id: str | None = None,
    ) -> NcrAnalysisRead:
        start, end = _resolve_window(window_start, window_end)
        scoped_department = resolve_department_scope(context, department_id)
        windows = month_windows(end, TREND_MONTHS)
        since = min(start, windows[0].start)

        statement = select(Ncr).where(col(Ncr.created_at) >= day_start(since - timedelta(days=1)))
        if scoped_department is not None:
            statement = statement.where(Ncr.department_id == scoped_department)
        with self._session() as session:
            ncrs = list(session.exec(statement).all())

        in_window = [ncr for ncr in ncrs if start <= created_on(ncr.created_at) <= end]
        breakdown = [
            NcrSeverityBreakdown(
                severity=severity,
                count=sum(1 for ncr in in_window if ncr.severity == severity),
                open=sum(1 for ncr in in_window if ncr.severity == severity and ncr.status in OPEN_NCR_STATES),
            )
            for severity in SEVERITY_ORDER
        ]

        trends: list[NcrTrendPoint] = []
        for window in windows:
            month_rows = [ncr for ncr in ncrs if window.start <= created_on(ncr.created_at) <= window.end]
            trends.append(
                NcrTrendPoint(
                    month=window.label,
                    total=len(month_rows),
                    closed=sum(1 for ncr in month_rows if ncr.status == NcrStatus.CLOSED),
                )
            )
        return NcrAnalysisRead(
            window_start=start,
            window_end=end,
            severity_breakdown=breakdown,
            trends=trends,
        )

    def department_performance(
        self,
        context: RequestContext,
        department_id: str,
        *,
        as_of: date | None = None,
    ) -> DepartmentPerformanceRead:
        """Month-to-date volumes for one department and its daily checklist activity.

        Activity covers the trailing 30 days, newest day first, and omits days
        without checklists.
        """
        ensure_department_access(context, department_id)
        today = as_of or today_utc()
        month_start = today.replace(day=1)
        activity_start = today - timedelta(days=DEFAULT_WINDOW_DAYS)
        since = min(month_start, activity_start)

        with self._session() as session:
            department = session.get(Department, department_id)
            if department is None:
                raise NotFoundError("department not found")
            total_assets = session.exec(
                select(func.count())
                .select_from(Asset)
                .join(AssetType, AssetType.id == Asset.asset_type_id)
                .where(AssetType.department_id == department_id)
            ).one()
            checklists = [checklist for checklist, _ in load_checklists(session, department_id, since)]
            ncrs = list(
                session.exec(
                    select(Ncr).where(
                        Ncr.department_id == department_id,
                        col(Ncr.created_at) >= day_start(month_start - timedelta(days=1)),
                    )
                ).all()
            )

        created_days = [created_on(checklist.created_at) for checklist in checklists]
        per_day = Counter(day for day in created_days if activity_start <= day <= today)
        return DepartmentPerformanceRead(
            department_id=department.id,
            name=department.name,
            description=department.description,
            total_assets=int(total_assets),
            checklists_this_month=sum(1 for day in created_days if month_start <= day <= today),
            ncrs_this_month=sum(1 for ncr in ncrs if month_start <= created_on(ncr.created_at) <= today),
            recent_activity=[
                DailyActivityPoint(activity_date=day, checklist_count=count)
                for day, count in sorted(per_day.items(), reverse=True)
            ],
        )

    def audit_trail(
        self,
        context: RequestContext,
        *,
        page: PageRequest,
        window_start: date | None = None,
        window_end: date | None = None,
        entity_type: str | None = None,
        action: str | None = None,
        actor_id: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        start, end = _resolve_window(window_start, window_end)
        scoped_department = resolve_department_scope(context, None)
        filters: list[Any] = [
            col(AuditLog.ts) >= day_start(start),
            col(AuditLog.ts) < day_start(end + timedelta(days=1)),
        ]
        if entity_type is not None:
            filters.append(AuditLog.entity_type == entity_type)
        if action is not None:
            filters.append(AuditLog.action == action)
        if actor_id is not None:
            filters.append(AuditLog.actor_id == actor_id)
        if scoped_department is not None:
            filters.append(AuditLog.department_id == scoped_department)

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(AuditLog).where(*filters)).one()
            rows = list(
                session.exec(
                    select(AuditLog)
                    .where(*filters)
                    .order_by(col(AuditLog.ts).desc())
                    .offset(page.offset)
                    .limit(page.limit)
                ).all()
            )
        return rows, int(total)
