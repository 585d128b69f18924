from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from qms.api.deps import get_request_context, handle_service_error, require_perm
from qms.domain.errors import QmsError
from qms.domain.models import (
    NcrActionCreate,
    NcrActionRead,
    NcrActionUpdate,
    NcrCreate,
    NcrDetailRead,
    NcrPage,
    NcrRead,
    NcrSeverity,
    NcrUpdate,
)
from qms.domain.permissions import PERM_NCR_DELETE, PERM_NCR_READ, PERM_NCR_WRITE
from qms.domain.state_machine import NcrStatus
from qms.infra.context import RequestContext
from qms.services.base import PageRequest
from qms.services.ncr_service import NcrService

router = APIRouter()


def get_ncr_service() -> NcrService:
    return NcrService()


Context = Annotated[RequestContext, Depends(get_request_context)]
Service = Annotated[NcrService, Depends(get_ncr_service)]


@router.get(
    "",
    response_model=NcrPage,
    dependencies=[Depends(require_perm(PERM_NCR_READ))],
)
def list_ncrs(
    context: Context,
    service: Service,
    ncr_status: Annotated[NcrStatus | None, Query(alias="status")] = None,
    severity: NcrSeverity | None = None,
    department_id: str | None = None,
    assigned_to: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> NcrPage:
    paging = PageRequest.clamped(page, limit)
    try:
        items, total = service.list_ncrs(
            context,
            page=paging,
            status=ncr_status,
            severity=severity,
            department_id=department_id,
            assigned_to=assigned_to,
        )
    except QmsError as exc:
        handle_service_error(exc)
    return NcrPage(items=items, page=paging.page, limit=paging.limit, total=total, pages=paging.pages(total))


@router.post(
    "",
    response_model=NcrDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_NCR_WRITE))],
)
def create_ncr(payload: NcrCreate, context: Context, service: Service) -> NcrDetailRead:
    try:
        ncr, action = service.create_ncr(context, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrDetailRead(
        ncr=NcrRead.model_validate(ncr),
        actions=[NcrActionRead.model_validate(action)] if action is not None else [],
    )


@router.get(
    "/{ncr_id}",
    response_model=NcrDetailRead,
    dependencies=[Depends(require_perm(PERM_NCR_READ))],
)
def get_ncr(ncr_id: str, context: Context, service: Service) -> NcrDetailRead:
    try:
        ncr, actions = service.get_ncr(context, ncr_id)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrDetailRead(
        ncr=NcrRead.model_validate(ncr),
        actions=[NcrActionRead.model_validate(action) for action in actions],
    )


@router.put(
    "/{ncr_id}",
    response_model=NcrRead,
    dependencies=[Depends(require_perm(PERM_NCR_WRITE))],
)
def update_ncr(ncr_id: str, payload: NcrUpdate, context: Context, service: Service) -> NcrRead:
    try:
        row = service.update_ncr(context, ncr_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrRead.model_validate(row)


@router.delete(
    "/{ncr_id}",
    response_model=NcrRead,
    dependencies=[Depends(require_perm(PERM_NCR_DELETE))],
)
def close_ncr(ncr_id: str, context: Context, service: Service) -> NcrRead:
    try:
        row = service.close_ncr(context, ncr_id)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrRead.model_validate(row)


@router.post(
    "/{ncr_id}/actions",
    response_model=NcrActionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_NCR_WRITE))],
)
def create_action(
    ncr_id: str,
    payload: NcrActionCreate,
    context: Context,
    service: Service,
) -> NcrActionRead:
    try:
        row = service.create_action(context, ncr_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrActionRead.model_validate(row)


@router.put(
    "/actions/{action_id}",
    response_model=NcrActionRead,
    dependencies=[Depends(require_perm(PERM_NCR_WRITE))],
)
def update_action(
    action_id: str,
    payload: NcrActionUpdate,
    context: Context,
    service: Service,
) -> NcrActionRead:
    try:
        row = service.update_action(context, action_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return NcrActionRead.model_validate(row)
