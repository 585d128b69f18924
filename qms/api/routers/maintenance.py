from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from qms.api.deps import get_request_context, handle_service_error, require_perm
from qms.domain.errors import QmsError
from qms.domain.models import (
    MaintenanceFrequency,
    MaintenanceRecordCreate,
    MaintenanceRecordRead,
    MaintenanceRecordStatusRequest,
    MaintenanceScheduleCreate,
    MaintenanceScheduleDetailRead,
    MaintenanceSchedulePage,
    MaintenanceScheduleRead,
    MaintenanceScheduleUpdate,
)
from qms.domain.permissions import (
    PERM_MAINTENANCE_DELETE,
    PERM_MAINTENANCE_EXECUTE,
    PERM_MAINTENANCE_READ,
    PERM_MAINTENANCE_WRITE,
)
from qms.infra.context import RequestContext
from qms.services.base import PageRequest
from qms.services.maintenance_service import MaintenanceService

router = APIRouter()


def get_maintenance_service() -> MaintenanceService:
    return MaintenanceService()


Context = Annotated[RequestContext, Depends(get_request_context)]
Service = Annotated[MaintenanceService, Depends(get_maintenance_service)]


@router.get(
    "/schedules",
    response_model=MaintenanceSchedulePage,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_READ))],
)
def list_schedules(
    context: Context,
    service: Service,
    page: int = 1,
    limit: int | None = None,
    asset_id: str | None = None,
    department_id: str | None = None,
    frequency: MaintenanceFrequency | None = None,
    overdue: bool = False,
    due_soon: bool = False,
    active: bool | None = None,
) -> MaintenanceSchedulePage:
    paging = PageRequest.clamped(page, limit)
    try:
        items, total = service.list_schedules(
            context,
            page=paging,
            asset_id=asset_id,
            department_id=department_id,
            frequency=frequency,
            overdue=overdue,
            due_soon=due_soon,
            active=active,
        )
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceSchedulePage(
        items=items,
        page=paging.page,
        limit=paging.limit,
        total=total,
        pages=paging.pages(total),
    )


@router.post(
    "/schedules",
    response_model=MaintenanceScheduleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_WRITE))],
)
def create_schedule(
    payload: MaintenanceScheduleCreate,
    context: Context,
    service: Service,
) -> MaintenanceScheduleRead:
    try:
        row = service.create_schedule(context, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceScheduleRead.model_validate(row)


@router.post(
    "/schedules/batch",
    response_model=list[MaintenanceScheduleRead],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_WRITE))],
)
def create_schedules(
    payload: list[MaintenanceScheduleCreate],
    context: Context,
    service: Service,
) -> list[MaintenanceScheduleRead]:
    try:
        rows = service.create_schedules(context, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return [MaintenanceScheduleRead.model_validate(row) for row in rows]


@router.get(
    "/schedules/{schedule_id}",
    response_model=MaintenanceScheduleDetailRead,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_READ))],
)
def get_schedule(schedule_id: str, context: Context, service: Service) -> MaintenanceScheduleDetailRead:
    try:
        schedule, records = service.get_schedule(context, schedule_id)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceScheduleDetailRead(
        schedule=MaintenanceScheduleRead.model_validate(schedule),
        recent_records=[MaintenanceRecordRead.model_validate(record) for record in records],
    )


@router.put(
    "/schedules/{schedule_id}",
    response_model=MaintenanceScheduleRead,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_WRITE))],
)
def update_schedule(
    schedule_id: str,
    payload: MaintenanceScheduleUpdate,
    context: Context,
    service: Service,
) -> MaintenanceScheduleRead:
    try:
        row = service.update_schedule(context, schedule_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceScheduleRead.model_validate(row)


@router.delete(
    "/schedules/{schedule_id}",
    response_model=MaintenanceScheduleRead,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_DELETE))],
)
def deactivate_schedule(schedule_id: str, context: Context, service: Service) -> MaintenanceScheduleRead:
    try:
        row = service.deactivate_schedule(context, schedule_id)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceScheduleRead.model_validate(row)


@router.post(
    "/schedules/{schedule_id}/records",
    response_model=MaintenanceRecordRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_EXECUTE))],
)
def record_maintenance(
    schedule_id: str,
    payload: MaintenanceRecordCreate,
    context: Context,
    service: Service,
) -> MaintenanceRecordRead:
    try:
        row = service.record_maintenance(context, schedule_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceRecordRead.model_validate(row)


@router.post(
    "/records/{record_id}/status",
    response_model=MaintenanceRecordRead,
    dependencies=[Depends(require_perm(PERM_MAINTENANCE_EXECUTE))],
)
def update_record_status(
    record_id: str,
    payload: MaintenanceRecordStatusRequest,
    context: Context,
    service: Service,
) -> MaintenanceRecordRead:
    try:
        row = service.update_record_status(context, record_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return MaintenanceRecordRead.model_validate(row)
