from __future__ import annotations

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends

from qms.api.deps import get_request_context, handle_service_error, require_perm
from qms.domain.errors import QmsError
from qms.domain.models import (
    AuditLogRead,
    AuditTrailPage,
    ComplianceReportRead,
    DepartmentPerformanceRead,
    NcrAnalysisRead,
)
from qms.domain.permissions import PERM_REPORTING_READ
from qms.infra.context import RequestContext
from qms.services.base import PageRequest
from qms.services.compliance_service import ComplianceService
from qms.services.reporting_service import ReportingService

router = APIRouter()


def get_compliance_service() -> ComplianceService:
    return ComplianceService()


def get_reporting_service() -> ReportingService:
    return ReportingService()


Context = Annotated[RequestContext, Depends(get_request_context)]


@router.get(
    "/compliance",
    response_model=ComplianceReportRead,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def compliance_report(
    context: Context,
    service: Annotated[ComplianceService, Depends(get_compliance_service)],
    date_from: date | None = None,
    date_to: date | None = None,
    department_id: str | None = None,
) -> ComplianceReportRead:
    try:
        summary = service.summary(
            context,
            window_start=date_from,
            window_end=date_to,
            department_id=department_id,
        )
        by_department = service.compliance_by_department(context, window_start=date_from, window_end=date_to)
    except QmsError as exc:
        handle_service_error(exc)
    return ComplianceReportRead(summary=summary, by_department=by_department)


@router.get(
    "/ncr-analysis",
    response_model=NcrAnalysisRead,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def ncr_analysis(
    context: Context,
    service: Annotated[ReportingService, Depends(get_reporting_service)],
    date_from: date | None = None,
    date_to: date | None = None,
    department_id: str | None = None,
) -> NcrAnalysisRead:
    try:
        return service.ncr_analysis(
            context,
            window_start=date_from,
            window_end=date_to,
            department_id=department_id,
        )
    except QmsError as exc:
        handle_service_error(exc)


@router.get(
    "/department-performance",
    response_model=DepartmentPerformanceRead,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def department_performance(
    context: Context,
    service: Annotated[ReportingService, Depends(get_reporting_service)],
    department_id: str,
) -> DepartmentPerformanceRead:
    try:
        return service.department_performance(context, department_id)
    except QmsError as exc:
        handle_service_error(exc)


@router.get(
    "/audit-trail",
    response_model=AuditTrailPage,
    dependencies=[Depends(require_perm(PERM_REPORTING_READ))],
)
def audit_trail(
    context: Context,
    service: Annotated[ReportingService, Depends(get_reporting_service)],
    date_from: date | None = None,
    date_to: date | None = None,
    entity_type: str | None = None,
    action: str | None = None,
    actor_id: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> AuditTrailPage:
    paging = PageRequest.clamped(page, limit)
    try:
        rows, total = service.audit_trail(
            context,
            page=paging,
            window_start=date_from,
            window_end=date_to,
            entity_type=entity_type,
            action=action,
            actor_id=actor_id,
        )
    except QmsError as exc:
        handle_service_error(exc)
    return AuditTrailPage(
        items=[AuditLogRead.model_validate(row) for row in rows],
        page=paging.page,
        limit=paging.limit,
        total=total,
        pages=paging.pages(total),
    )
