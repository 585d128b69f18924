from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from qms.api.routers import checklists, dashboard, maintenance, ncr, reports
from qms.infra.audit import AuditMiddleware
from qms.infra.db import check_db_ready
from qms.infra.events import event_bus
from qms.infra.logs import configure_logging
from qms.services.ncr_service import register_event_handlers

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="qms",
    description="Quality management service: maintenance schedules, compliance, NCRs and dashboards.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])
app.include_router(checklists.router, prefix="/api/checklists", tags=["checklists"])
app.include_router(ncr.router, prefix="/api/ncrs", tags=["ncrs"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])

register_event_handlers(event_bus)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
