"""In-memory tracking of job executions.

The tracker is an operational aid, not an audit ledger: history lives in a
bounded deque and is lost on restart.  Every finalized execution is kept most
recent first; stats are derived from that history when queried.
"""

from __future__ import annotations

import enum
import logging
import secrets
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class JobStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobExecution:
    id: str
    job_name: str
    start_time: datetime
    end_time: datetime | None = None
    status: JobStatus = JobStatus.RUNNING
    result: Any = None
    error: str | None = None
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class JobStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    avg_duration_ms: float = 0.0
    last_execution: JobExecution | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "avg_duration_ms": self.avg_duration_ms,
            "last_execution": self.last_execution.to_dict() if self.last_execution else None,
        }


class JobTracker:
    """Records start / completion / failure of jobs with a capped history."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("Job history capacity must be at least 1")
        self.capacity = capacity
        self._running: dict[str, JobExecution] = {}
        self._history: deque[JobExecution] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def start(self, job_name: str) -> str:
        execution_id = f"{job_name}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
        execution = JobExecution(
            id=execution_id,
            job_name=job_name,
            start_time=datetime.now(timezone.utc),
        )
        with self._lock:
            self._running[execution_id] = execution
        logger.info("Job started: %s (%s)", job_name, execution_id)
        return execution_id

    def complete(self, execution_id: str, result: Any = None) -> None:
        execution = self._finalize(execution_id, JobStatus.COMPLETED, result=result)
        if execution is not None:
            logger.info(
                "Job completed: %s (%s) in %.0f ms",
                execution.job_name, execution_id, execution.duration_ms,
            )

    def fail(self, execution_id: str, error: BaseException | str) -> None:
        message = str(error) if isinstance(error, BaseException) else error
        execution = self._finalize(execution_id, JobStatus.FAILED, error=message)
        if execution is not None:
            logger.error(
                "Job failed: %s (%s) after %.0f ms: %s",
                execution.job_name, execution_id, execution.duration_ms, message,
            )

    def _finalize(
        self,
        execution_id: str,
        status: JobStatus,
        *,
        result: Any = None,
        error: str | None = None,
    ) -> JobExecution | None:
        with self._lock:
            execution = self._running.pop(execution_id, None)
            if execution is None:
                logger.warning("Attempted to finalize unknown job execution: %s", execution_id)
                return None
            execution.end_time = datetime.now(timezone.utc)
            execution.status = status
            execution.result = result
            execution.error = error
            execution.duration_ms = (
                execution.end_time - execution.start_time
            ).total_seconds() * 1000
            self._history.appendleft(execution)
        return execution

    # ─── Queries ─────────────────────────────────────────────────────────

    def get_running_jobs(self) -> list[JobExecution]:
        with self._lock:
            return list(self._running.values())

    def get_history(self, job_name: str | None = None, limit: int = 10) -> list[JobExecution]:
        with self._lock:
            history = list(self._history)
        if job_name:
            history = [e for e in history if e.job_name == job_name]
        return history[: max(limit, 0)]

    def get_stats(self, job_name: str | None = None) -> JobStats:
        history = self.get_history(job_name, limit=self.capacity)
        durations = [e.duration_ms for e in history if e.duration_ms is not None]
        return JobStats(
            total=len(history),
            succeeded=sum(1 for e in history if e.status == JobStatus.COMPLETED),
            failed=sum(1 for e in history if e.status == JobStatus.FAILED),
            avg_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            last_execution=history[0] if history else None,
        )

    def get_status(self) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            "running_jobs": [
                {
                    "id": job.id,
                    "job_name": job.job_name,
                    "start_time": job.start_time.isoformat(),
                    "elapsed_ms": (now - job.start_time).total_seconds() * 1000,
                }
                for job in self.get_running_jobs()
            ],
            "recent_executions": [e.to_dict() for e in self.get_history(limit=5)],
            "stats": self.get_stats().to_dict(),
        }
