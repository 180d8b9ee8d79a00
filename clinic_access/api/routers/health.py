"""Liveness and readiness endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from clinic_access.api.dependencies import get_engine
from clinic_access.engine import AccessControlEngine

router = APIRouter()


@router.get("/healthz", summary="Liveness probe")
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Readiness probe")
def readiness_check(engine: AccessControlEngine = Depends(get_engine)) -> JSONResponse:
    """Ready once a policy snapshot is loaded and the audit consumer is draining."""

    consumer_running = engine.pipeline.running
    ready = engine.store.version > 0 and (consumer_running or not engine.settings.audit_consumer_autostart)
    body: Dict[str, Any] = {
        "status": "ready" if ready else "starting",
        "policy_version": engine.store.version,
        "audit_consumer_running": consumer_running,
        "audit_pending": engine.pipeline.pending,
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)
