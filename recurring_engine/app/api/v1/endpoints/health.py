from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from recurring_engine.app.api.deps import get_health_monitor
from recurring_engine.app.core.config import settings
from recurring_engine.app.schemas.jobs import SystemHealthResponse
from recurring_engine.app.services.health import HealthMonitor, HealthStatus

router = APIRouter()


@router.get("")
def health() -> dict:
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/detailed", response_model=SystemHealthResponse)
def health_detailed(monitor: HealthMonitor = Depends(get_health_monitor)):
    report = monitor.perform_all_checks()
    if report.overall == HealthStatus.UNHEALTHY:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=report.to_dict(),
        )
    return report.to_dict()
