"""Health checks for the database and the job system."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recurring_engine.app.core.config import settings
from recurring_engine.app.models.recurring import RecurringRule
from recurring_engine.app.services.job_tracker import JobTracker

logger = logging.getLogger(__name__)

SLOW_DATABASE_MS = 5000
LONG_RUNNING_JOB = timedelta(minutes=30)
MAX_FAILURE_RATE = 0.5


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class HealthCheck:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str | None = None
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    response_time_ms: float | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "last_checked": self.last_checked.isoformat(),
            "response_time_ms": self.response_time_ms,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    overall: HealthStatus
    checks: list[HealthCheck]
    uptime_seconds: float
    timestamp: datetime
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "checks": [check.to_dict() for check in self.checks],
            "uptime_seconds": self.uptime_seconds,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
        }


class HealthMonitor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        tracker: JobTracker,
        job_name: str | None = None,
        started_at: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tracker = tracker
        self._job_name = job_name or settings.SWEEP_JOB_NAME
        # time.monotonic() reading taken at process start
        self._started = started_at if started_at is not None else time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def check_database(self) -> HealthCheck:
        check = HealthCheck(name="database")
        started = time.perf_counter()
        try:
            with self._session_factory() as db:
                db.execute(text("SELECT 1"))
                rule_count = db.execute(select(func.count(RecurringRule.id))).scalar_one()
                active_count = db.execute(
                    select(func.count(RecurringRule.id)).where(RecurringRule.is_active.is_(True))
                ).scalar_one()
            check.details = {"recurring_rules": rule_count, "active_recurring_rules": active_count}
            check.response_time_ms = (time.perf_counter() - started) * 1000
            if check.response_time_ms > SLOW_DATABASE_MS:
                check.status = HealthStatus.DEGRADED
                check.message = "Database response time is slow"
        except SQLAlchemyError as exc:
            check.status = HealthStatus.UNHEALTHY
            check.message = str(exc)
            check.response_time_ms = (time.perf_counter() - started) * 1000
            logger.error("Database health check failed: %s", exc)
        return check

    def check_job_system(self) -> HealthCheck:
        check = HealthCheck(name="job_system")
        stats = self._tracker.get_stats(self._job_name)
        running = self._tracker.get_running_jobs()
        now = datetime.now(timezone.utc)
        long_running = [job for job in running if now - job.start_time > LONG_RUNNING_JOB]
        failure_rate = stats.failed / stats.total if stats.total else 0.0

        check.details = {
            "total_executions": stats.total,
            "successful_executions": stats.succeeded,
            "failed_executions": stats.failed,
            "failure_rate": failure_rate,
            "avg_duration_ms": stats.avg_duration_ms,
            "running_jobs": len(running),
            "long_running_jobs": len(long_running),
            "last_execution": (
                stats.last_execution.start_time.isoformat() if stats.last_execution else None
            ),
        }
        if long_running:
            check.status = HealthStatus.DEGRADED
            check.message = f"{len(long_running)} long-running jobs detected"
        elif failure_rate > MAX_FAILURE_RATE:
            check.status = HealthStatus.DEGRADED
            check.message = f"High failure rate: {failure_rate * 100:.1f}%"
        return check

    def perform_all_checks(self) -> SystemHealth:
        checks = [self.check_database(), self.check_job_system()]
        overall = max((check.status for check in checks), key=_SEVERITY.__getitem__)
        health = SystemHealth(
            overall=overall,
            checks=checks,
            uptime_seconds=self.uptime_seconds,
            timestamp=datetime.now(timezone.utc),
            version=settings.APP_VERSION,
        )
        if overall != HealthStatus.HEALTHY:
            logger.warning(
                "System health is %s: %s",
                overall.value,
                ", ".join(f"{c.name}={c.status.value}" for c in checks if c.status != HealthStatus.HEALTHY),
            )
        return health
