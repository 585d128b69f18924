from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from qms.domain.models import AuditLog, now_utc
from qms.infra.context import RequestContext
from qms.infra.db import engine

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def write_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    method: str | None = None,
    status_code: int | None = None,
    department_id: str | None = None,
    detail: dict[str, Any] | None = None,
    bind: Engine | None = None,
) -> None:
    log = AuditLog(
        actor_id=actor_id,
        department_id=department_id,
        action=action,
        resource=resource,
        entity_type=entity_type,
        entity_id=entity_id,
        method=method,
        status_code=status_code,
        detail=detail or {},
    )
    with Session(bind or engine) as session:
        session.add(log)
        session.commit()


def log_event(
    context: RequestContext | None,
    action: str,
    entity_type: str,
    entity_id: str,
    metadata: dict[str, Any] | None = None,
    *,
    bind: Engine | None = None,
) -> None:
    """Record a business event after it has been committed.

    Failures are logged and dropped so the caller's operation stands.
    """
    detail: dict[str, Any] = {
        "who": {
            "actor_id": context.user_id if context else None,
            "role": context.role if context else None,
            "department_id": context.department_id if context else None,
        },
        "metadata": metadata or {},
    }
    try:
        write_audit_log(
            actor_id=context.user_id if context else None,
            action=action,
            resource=f"{entity_type}/{entity_id}",
            entity_type=entity_type,
            entity_id=entity_id,
            department_id=context.department_id if context else None,
            detail=detail,
            bind=bind,
        )
    except Exception:
        logger.exception("audit log failed for %s %s/%s", action, entity_type, entity_id)


def _status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method
        if method not in WRITE_METHODS or path in {"/healthz", "/readyz"}:
            return response

        claims = getattr(request.state, "claims", {})
        route = request.scope.get("route")
        detail: dict[str, Any] = {
            "who": {
                "actor_id": claims.get("sub"),
                "role": claims.get("role"),
                "department_id": claims.get("department_id"),
            },
            "when": {"request_ts": now_utc().isoformat()},
            "where": {
                "path": path,
                "route": getattr(route, "path", path),
                "query": request.url.query,
                "client_ip": request.client.host if request.client is not None else None,
            },
            "result": {
                "status_code": response.status_code,
                "outcome": _status_outcome(response.status_code),
            },
        }
        try:
            write_audit_log(
                actor_id=claims.get("sub"),
                action=f"{method}:{path}",
                resource=path,
                method=method,
                status_code=response.status_code,
                department_id=claims.get("department_id"),
                detail=detail,
            )
        except Exception:
            logger.exception("request audit failed for %s %s", method, path)
        return response
