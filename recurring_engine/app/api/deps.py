from __future__ import annotations

import hmac
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from recurring_engine.app.core.config import settings
from recurring_engine.app.core.database import SessionLocal
from recurring_engine.app.services.health import HealthMonitor
from recurring_engine.app.services.job_tracker import JobTracker
from recurring_engine.app.services.sweep import RuleSweeper

cron_bearer = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(cron_bearer),
) -> None:
    """Guard for the scheduler trigger; open when no CRON_SECRET is configured."""
    if not settings.CRON_SECRET:
        return
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), settings.CRON_SECRET.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_job_tracker(request: Request) -> JobTracker:
    return request.app.state.job_tracker


def get_sweeper(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> RuleSweeper:
    return RuleSweeper(session_factory)


def get_health_monitor(
    request: Request,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    tracker: JobTracker = Depends(get_job_tracker),
) -> HealthMonitor:
    return HealthMonitor(
        session_factory,
        tracker,
        settings.SWEEP_JOB_NAME,
        started_at=request.app.state.started_at,
    )
