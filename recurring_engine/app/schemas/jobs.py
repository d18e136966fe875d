"""Pydantic response schemas for the scheduler trigger, job tracker and health."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


# ── Job executions ───────────────────────────────────────────────────────────

class JobExecutionOut(BaseModel):
    id: str
    job_name: str
    start_time: str
    end_time: str | None = None
    status: str
    result: Any = None
    error: str | None = None
    duration_ms: float | None = None


class JobStatsOut(BaseModel):
    total: int
    succeeded: int
    failed: int
    avg_duration_ms: float
    last_execution: JobExecutionOut | None = None


class RunningJobOut(BaseModel):
    id: str
    job_name: str
    start_time: str
    elapsed_ms: float


class JobStatusResponse(BaseModel):
    running_jobs: list[RunningJobOut]
    recent_executions: list[JobExecutionOut]
    stats: JobStatsOut


class JobHistoryResponse(BaseModel):
    job_name: str | None = None
    executions: list[JobExecutionOut]


# ── Sweep ────────────────────────────────────────────────────────────────────

class RuleFailureOut(BaseModel):
    rule_id: str
    error_type: str
    message: str


class SweepResultOut(BaseModel):
    processed: int
    skipped: int
    failed: int
    created_transactions: int
    deactivated_rules: int
    errors: list[RuleFailureOut]


class CronRunResponse(BaseModel):
    success: bool
    message: str
    result: SweepResultOut
    timestamp: str


# ── Health ───────────────────────────────────────────────────────────────────

class HealthCheckOut(BaseModel):
    name: str
    status: str
    message: str | None = None
    last_checked: str
    response_time_ms: float | None = None
    details: dict[str, Any]


class SystemHealthResponse(BaseModel):
    overall: str
    checks: list[HealthCheckOut]
    uptime_seconds: float
    timestamp: str
    version: str
