from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta

from sqlmodel import Session, col, select

from qms.domain.compliance import TREND_MONTHS, compliance_trend, compute_compliance, day_start, month_windows
from qms.domain.errors import ValidationError
from qms.domain.models import (
    Asset,
    AssetType,
    Checklist,
    ComplianceRead,
    ComplianceTrendPoint,
    Department,
    DepartmentComplianceRead,
    today_utc,
)
from qms.infra.context import RequestContext
from qms.services.base import ServiceBase, resolve_department_scope

DEFAULT_WINDOW_DAYS = 30


def default_window(as_of: date) -> tuple[date, date]:
    return as_of - timedelta(days=DEFAULT_WINDOW_DAYS), as_of


def load_checklists(
    session: Session,
    department_id: str | None,
    since: date,
) -> list[tuple[Checklist, str]]:
    """Checklists created on or after ``since`` with their owning department.

    The lower bound is widened by a day; callers apply the exact window.
    """
    statement = (
        select(Checklist, AssetType.department_id)
        .join(Asset, Asset.id == Checklist.asset_id)
        .join(AssetType, AssetType.id == Asset.asset_type_id)
        .where(col(Checklist.created_at) >= day_start(since - timedelta(days=1)))
    )
    if department_id is not None:
        statement = statement.where(AssetType.department_id == department_id)
    return list(session.exec(statement).all())


class ComplianceService(ServiceBase):
    def summary(
        self,
        context: RequestContext,
        *,
        window_start: date | None = None,
        window_end: date | None = None,
        department_id: str | None = None,
    ) -> ComplianceRead:
        default_start, default_end = default_window(today_utc())
        start = window_start or default_start
        end = window_end or default_end
        if end < start:
            raise ValidationError("window end must not precede window start")
        scoped_department = resolve_department_scope(context, department_id)
        with self._session() as session:
            rows = load_checklists(session, scoped_department, start)
        result = compute_compliance((checklist for checklist, _ in rows), start, end)
        return ComplianceRead(
            window_start=start,
            window_end=end,
            total=result.total,
            completed=result.completed,
            rate=result.rate,
        )

    def trend(
        self,
        context: RequestContext,
        *,
        as_of: date | None = None,
        department_id: str | None = None,
        months: int = TREND_MONTHS,
    ) -> list[ComplianceTrendPoint]:
        current = as_of or today_utc()
        scoped_department = resolve_department_scope(context, department_id)
        since = month_windows(current, months)[0].start
        with self._session() as session:
            rows = load_checklists(session, scoped_department, since)
        return compliance_trend([checklist for checklist, _ in rows], current, months)

    def compliance_by_department(
        self,
        context: RequestContext,
        *,
        window_start: date | None = None,
        window_end: date | None = None,
    ) -> list[DepartmentComplianceRead]:
        default_start, default_end = default_window(today_utc())
        start = window_start or default_start
        end = window_end or default_end
        if end < start:
            raise ValidationError("window end must not precede window start")
        scoped_department = resolve_department_scope(context, None)
        with self._session() as session:
            department_query = select(Department)
            if scoped_department is not None:
                department_query = department_query.where(Department.id == scoped_department)
            departments = list(session.exec(department_query).all())
            rows = load_checklists(session, scoped_department, start)

        by_department: dict[str, list[Checklist]] = defaultdict(list)
        for checklist, row_department_id in rows:
            by_department[row_department_id].append(checklist)

        report: list[DepartmentComplianceRead] = []
        for department in departments:
            result = compute_compliance(by_department.get(department.id, []), start, end)
            report.append(
                DepartmentComplianceRead(
                    department_id=department.id,
                    department_name=department.name,
                    total=result.total,
                    completed=result.completed,
                    rate=result.rate,
                )
            )
        report.sort(key=lambda item: (-item.rate, item.department_name))
        return report
