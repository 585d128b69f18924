from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func
from sqlmodel import col, select

from qms.domain.compliance import compute_compliance
from qms.domain.models import (
    PENDING_CHECKLIST_STATES,
    OPEN_NCR_STATES,
    Asset,
    AssetType,
    Checklist,
    DashboardMetricsRead,
    MaintenanceSchedule,
    Ncr,
    today_utc,
)
from qms.domain.scheduling import DueBucket
from qms.infra.context import RequestContext
from qms.services.base import ServiceBase, resolve_department_scope
from qms.services.compliance_service import default_window, load_checklists
from qms.services.maintenance_service import count_due_buckets

logger = logging.getLogger(__name__)


class DashboardService(ServiceBase):
    def assemble_metrics(
        self,
        context: RequestContext,
        *,
        as_of: date | None = None,
        department_id: str | None = None,
    ) -> DashboardMetricsRead:
        current = as_of or today_utc()
        scoped_department = resolve_department_scope(context, department_id)
        window_start, window_end = default_window(current)

        with self._session() as session:
            schedule_query = (
                select(MaintenanceSchedule)
                .join(Asset, Asset.id == MaintenanceSchedule.asset_id)
                .join(AssetType, AssetType.id == Asset.asset_type_id)
                .where(col(MaintenanceSchedule.is_active).is_(True))
                .where(col(MaintenanceSchedule.next_due).is_not(None))
            )
            pending_query = (
                select(func.count())
                .select_from(Checklist)
                .join(Asset, Asset.id == Checklist.asset_id)
                .join(AssetType, AssetType.id == Asset.asset_type_id)
                .where(col(Checklist.status).in_(PENDING_CHECKLIST_STATES))
            )
            ncr_query = select(func.count()).select_from(Ncr).where(col(Ncr.status).in_(OPEN_NCR_STATES))
            if scoped_department is not None:
                schedule_query = schedule_query.where(AssetType.department_id == scoped_department)
                pending_query = pending_query.where(AssetType.department_id == scoped_department)
                ncr_query = ncr_query.where(Ncr.department_id == scoped_department)

            schedules = list(session.exec(schedule_query).all())
            pending_checklists = int(session.exec(pending_query).one())
            open_ncrs = int(session.exec(ncr_query).one())
            checklists = [checklist for checklist, _ in load_checklists(session, scoped_department, window_start)]

        buckets = count_due_buckets(schedules, current)
        compliance = compute_compliance(checklists, window_start, window_end)
        logger.debug("dashboard metrics assembled for department=%s as_of=%s", scoped_department, current)
        return DashboardMetricsRead(
            as_of=current,
            department_id=scoped_department,
            overdue_maintenance=buckets[DueBucket.OVERDUE],
            due_soon_maintenance=buckets[DueBucket.DUE_SOON],
            pending_checklists=pending_checklists,
            open_ncrs=open_ncrs,
            compliance_rate=compliance.rate,
        )
