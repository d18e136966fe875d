"""Read-only view of the job tracker, including a Prometheus text export."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from recurring_engine.app.api.deps import get_job_tracker
from recurring_engine.app.schemas.jobs import JobHistoryResponse, JobStatsOut, JobStatusResponse
from recurring_engine.app.services.job_tracker import JobTracker

router = APIRouter()


@router.get("/status", response_model=JobStatusResponse)
def job_status(tracker: JobTracker = Depends(get_job_tracker)) -> dict:
    return tracker.get_status()


@router.get("/history", response_model=JobHistoryResponse)
def job_history(
    job_name: str | None = None,
    limit: int = Query(10, ge=1, le=1000),
    tracker: JobTracker = Depends(get_job_tracker),
) -> dict:
    return {
        "job_name": job_name,
        "executions": [e.to_dict() for e in tracker.get_history(job_name, limit)],
    }


@router.get("/stats", response_model=JobStatsOut)
def job_stats(
    job_name: str | None = None,
    tracker: JobTracker = Depends(get_job_tracker),
) -> dict:
    return tracker.get_stats(job_name).to_dict()


@router.get("/metrics", response_class=PlainTextResponse)
def job_metrics(tracker: JobTracker = Depends(get_job_tracker)) -> str:
    stats = tracker.get_stats()
    lines = [
        "# HELP recurring_jobs_total Total number of job executions",
        "# TYPE recurring_jobs_total counter",
        f"recurring_jobs_total {stats.total}",
        "# HELP recurring_jobs_succeeded_total Number of successful job executions",
        "# TYPE recurring_jobs_succeeded_total counter",
        f"recurring_jobs_succeeded_total {stats.succeeded}",
        "# HELP recurring_jobs_failed_total Number of failed job executions",
        "# TYPE recurring_jobs_failed_total counter",
        f"recurring_jobs_failed_total {stats.failed}",
        "# HELP recurring_jobs_duration_ms_avg Average job duration in milliseconds",
        "# TYPE recurring_jobs_duration_ms_avg gauge",
        f"recurring_jobs_duration_ms_avg {stats.avg_duration_ms:.3f}",
        "# HELP recurring_jobs_running Number of jobs currently running",
        "# TYPE recurring_jobs_running gauge",
        f"recurring_jobs_running {len(tracker.get_running_jobs())}",
    ]
    return "\n".join(lines) + "\n"
