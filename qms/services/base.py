from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from qms.domain.errors import AuthorizationError, NotFoundError
from qms.domain.models import Asset, AssetType, EventEnvelope
from qms.infra.audit import log_event
from qms.infra.context import RequestContext
from qms.infra.db import get_engine
from qms.infra.events import event_bus

DEFAULT_PAGE_LIMIT = 20
MIN_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT

    @classmethod
    def clamped(cls, page: int | None, limit: int | None) -> PageRequest:
        resolved_page = max(1, page or 1)
        resolved_limit = DEFAULT_PAGE_LIMIT if limit is None else min(MAX_PAGE_LIMIT, max(MIN_PAGE_LIMIT, limit))
        return cls(page=resolved_page, limit=resolved_limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def pages(self, total: int) -> int:
        return math.ceil(total / self.limit)


def resolve_department_scope(context: RequestContext, requested_department_id: str | None) -> str | None:
    """Department filter to apply for ``context``.

    Department-scoped roles always get their own department; the requested
    value is only honoured for organisation-wide roles.
    """
    if context.org_wide:
        return requested_department_id
    if context.department_id is None:
        raise AuthorizationError("no department assigned to caller")
    return context.department_id


def ensure_department_access(context: RequestContext, department_id: str) -> None:
    if context.org_wide:
        return
    if context.department_id != department_id:
        raise AuthorizationError("access denied to this department")


class ServiceBase:
    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    def _log_event(
        self,
        context: RequestContext | None,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        log_event(context, action, entity_type, entity_id, metadata, bind=self._engine)

    def _publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        department_id: str | None = None,
        actor_id: str | None = None,
    ) -> EventEnvelope:
        return event_bus.publish_dict(
            event_type,
            payload,
            department_id=department_id,
            actor_id=actor_id,
            bind=self._engine,
        )

    def _get_asset_with_department(self, session: Session, asset_id: str) -> tuple[Asset, str]:
        row = session.exec(
            select(Asset, AssetType.department_id)
            .join(AssetType, AssetType.id == Asset.asset_type_id)
            .where(Asset.id == asset_id)
        ).first()
        if row is None:
            raise NotFoundError("asset not found")
        asset, department_id = row
        return asset, department_id
