from __future__ import annotations

import logging

from sqlmodel import Session, col, select

from qms.domain.errors import ConflictError, NotFoundError, ValidationError
from qms.domain.models import (
    Checklist,
    ChecklistCreate,
    ChecklistItem,
    ChecklistItemResult,
    ChecklistItemResultRequest,
    ChecklistStatus,
    DocumentType,
    now_utc,
)
from qms.infra.context import RequestContext
from qms.services.base import ServiceBase, ensure_department_access

logger = logging.getLogger(__name__)

CHECKLIST_ITEM_FAILED = "checklist.item_failed"

_FINAL_CHECKLIST_STATES = {ChecklistStatus.COMPLETED, ChecklistStatus.CANCELLED}


class ChecklistService(ServiceBase):
    def _get_checklist(self, session: Session, checklist_id: str) -> tuple[Checklist, str]:
        checklist = session.get(Checklist, checklist_id)
        if checklist is None:
            raise NotFoundError("checklist not found")
        _, department_id = self._get_asset_with_department(session, checklist.asset_id)
        return checklist, department_id

    def _list_items(self, session: Session, checklist_id: str) -> list[ChecklistItem]:
        return list(
            session.exec(
                select(ChecklistItem)
                .where(ChecklistItem.checklist_id == checklist_id)
                .order_by(col(ChecklistItem.sort_order).asc())
            ).all()
        )

    def create_checklist(self, context: RequestContext, payload: ChecklistCreate) -> tuple[Checklist, list[ChecklistItem]]:
        questions = [item.strip() for item in payload.questions if item.strip()]
        if not questions:
            raise ValidationError("checklist requires at least one question")
        with self._session() as session:
            _, department_id = self._get_asset_with_department(session, payload.asset_id)
            ensure_department_access(context, department_id)
            if payload.document_type_id is not None and session.get(DocumentType, payload.document_type_id) is None:
                raise NotFoundError("document type not found")
            checklist = Checklist(
                asset_id=payload.asset_id,
                document_type_id=payload.document_type_id,
                name=payload.name,
                status=ChecklistStatus.DRAFT,
                created_by=context.user_id,
            )
            session.add(checklist)
            session.flush()
            for index, question in enumerate(questions):
                session.add(ChecklistItem(checklist_id=checklist.id, question=question, sort_order=index))
            session.commit()
            session.refresh(checklist)
            items = self._list_items(session, checklist.id)

        self._log_event(
            context,
            "create_checklist",
            "checklist",
            checklist.id,
            {"asset_id": checklist.asset_id, "items": len(items)},
        )
        return checklist, items

    def get_checklist(self, context: RequestContext, checklist_id: str) -> tuple[Checklist, list[ChecklistItem]]:
        with self._session() as session:
            checklist, department_id = self._get_checklist(session, checklist_id)
            ensure_department_access(context, department_id)
            return checklist, self._list_items(session, checklist_id)

    def record_item_result(
        self,
        context: RequestContext,
        item_id: str,
        payload: ChecklistItemResultRequest,
    ) -> ChecklistItem:
        if payload.result == ChecklistItemResult.PENDING:
            raise ValidationError("result must be pass, fail or na")
        with self._session() as session:
            item = session.get(ChecklistItem, item_id)
            if item is None:
                raise NotFoundError("checklist item not found")
            checklist, department_id = self._get_checklist(session, item.checklist_id)
            ensure_department_access(context, department_id)
            if checklist.status in _FINAL_CHECKLIST_STATES:
                raise ConflictError(f"checklist is {checklist.status}")
            item.result = payload.result
            item.remarks = payload.remarks
            item.checked_by = context.user_id
            item.checked_at = now_utc()
            session.add(item)
            if checklist.status == ChecklistStatus.DRAFT:
                checklist.status = ChecklistStatus.IN_PROGRESS
                session.add(checklist)
            session.commit()
            session.refresh(item)
            asset_id = checklist.asset_id

        self._log_event(
            context,
            "record_checklist_item",
            "checklist_item",
            item.id,
            {"checklist_id": item.checklist_id, "result": item.result},
        )
        if item.result == ChecklistItemResult.FAIL:
            logger.info("checklist item %s failed, raising %s", item.id, CHECKLIST_ITEM_FAILED)
            try:
                self._publish(
                    CHECKLIST_ITEM_FAILED,
                    {
                        "checklist_item_id": item.id,
                        "checklist_id": item.checklist_id,
                        "asset_id": asset_id,
                        "question": item.question,
                        "remarks": item.remarks,
                        "raised_by": context.user_id,
                    },
                    department_id=department_id,
                    actor_id=context.user_id,
                )
            except Exception:
                logger.exception("handling %s for checklist item %s failed", CHECKLIST_ITEM_FAILED, item.id)
        return item

    def complete_checklist(self, context: RequestContext, checklist_id: str) -> Checklist:
        with self._session() as session:
            checklist, department_id = self._get_checklist(session, checklist_id)
            ensure_department_access(context, department_id)
            if checklist.status in _FINAL_CHECKLIST_STATES:
                raise ConflictError(f"checklist is {checklist.status}")
            pending = [item for item in self._list_items(session, checklist_id) if item.result == ChecklistItemResult.PENDING]
            if pending:
                raise ConflictError(f"{len(pending)} checklist item(s) still pending")
            checklist.status = ChecklistStatus.COMPLETED
            checklist.completed_at = now_utc()
            session.add(checklist)
            session.commit()
            session.refresh(checklist)

        self._log_event(context, "complete_checklist", "checklist", checklist.id, {"asset_id": checklist.asset_id})
        return checklist
