from __future__ import annotations

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends

from qms.api.deps import get_request_context, handle_service_error, require_perm
from qms.domain.errors import QmsError
from qms.domain.models import ComplianceTrendPoint, DashboardMetricsRead
from qms.domain.permissions import PERM_DASHBOARD_READ
from qms.infra.context import RequestContext
from qms.services.compliance_service import ComplianceService
from qms.services.dashboard_service import DashboardService

router = APIRouter()


def get_dashboard_service() -> DashboardService:
    return DashboardService()


def get_compliance_service() -> ComplianceService:
    return ComplianceService()


Context = Annotated[RequestContext, Depends(get_request_context)]


@router.get(
    "/metrics",
    response_model=DashboardMetricsRead,
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def dashboard_metrics(
    context: Context,
    service: Annotated[DashboardService, Depends(get_dashboard_service)],
    as_of: date | None = None,
    department_id: str | None = None,
) -> DashboardMetricsRead:
    try:
        return service.assemble_metrics(context, as_of=as_of, department_id=department_id)
    except QmsError as exc:
        handle_service_error(exc)


@router.get(
    "/trends",
    response_model=list[ComplianceTrendPoint],
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def dashboard_trends(
    context: Context,
    service: Annotated[ComplianceService, Depends(get_compliance_service)],
    as_of: date | None = None,
    department_id: str | None = None,
) -> list[ComplianceTrendPoint]:
    try:
        return service.trend(context, as_of=as_of, department_id=department_id)
    except QmsError as exc:
        handle_service_error(exc)
