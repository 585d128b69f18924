from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from qms.api.deps import get_request_context, handle_service_error, require_perm
from qms.domain.errors import QmsError
from qms.domain.models import (
    ChecklistCreate,
    ChecklistDetailRead,
    ChecklistItemRead,
    ChecklistItemResultRequest,
    ChecklistRead,
)
from qms.domain.permissions import PERM_CHECKLIST_READ, PERM_CHECKLIST_WRITE
from qms.infra.context import RequestContext
from qms.services.checklist_service import ChecklistService

router = APIRouter()


def get_checklist_service() -> ChecklistService:
    return ChecklistService()


Context = Annotated[RequestContext, Depends(get_request_context)]
Service = Annotated[ChecklistService, Depends(get_checklist_service)]


@router.post(
    "",
    response_model=ChecklistDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_CHECKLIST_WRITE))],
)
def create_checklist(payload: ChecklistCreate, context: Context, service: Service) -> ChecklistDetailRead:
    try:
        checklist, items = service.create_checklist(context, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return ChecklistDetailRead(
        checklist=ChecklistRead.model_validate(checklist),
        items=[ChecklistItemRead.model_validate(item) for item in items],
    )


@router.get(
    "/{checklist_id}",
    response_model=ChecklistDetailRead,
    dependencies=[Depends(require_perm(PERM_CHECKLIST_READ))],
)
def get_checklist(checklist_id: str, context: Context, service: Service) -> ChecklistDetailRead:
    try:
        checklist, items = service.get_checklist(context, checklist_id)
    except QmsError as exc:
        handle_service_error(exc)
    return ChecklistDetailRead(
        checklist=ChecklistRead.model_validate(checklist),
        items=[ChecklistItemRead.model_validate(item) for item in items],
    )


@router.post(
    "/items/{item_id}/result",
    response_model=ChecklistItemRead,
    dependencies=[Depends(require_perm(PERM_CHECKLIST_WRITE))],
)
def record_item_result(
    item_id: str,
    payload: ChecklistItemResultRequest,
    context: Context,
    service: Service,
) -> ChecklistItemRead:
    try:
        item = service.record_item_result(context, item_id, payload)
    except QmsError as exc:
        handle_service_error(exc)
    return ChecklistItemRead.model_validate(item)


@router.post(
    "/{checklist_id}/complete",
    response_model=ChecklistRead,
    dependencies=[Depends(require_perm(PERM_CHECKLIST_WRITE))],
)
def complete_checklist(checklist_id: str, context: Context, service: Service) -> ChecklistRead:
    try:
        checklist = service.complete_checklist(context, checklist_id)
    except QmsError as exc:
        handle_service_error(exc)
    return ChecklistRead.model_validate(checklist)
