"""Recurring transaction task: generates every occurrence that has fallen due."""

from __future__ import annotations

from recurring_engine.app.core.config import settings
from recurring_engine.app.services.job_tracker import JobTracker
from recurring_engine.app.workers.celery_app import celery

# Owned by this worker process; the HTTP app keeps its own on app.state
job_tracker = JobTracker(settings.JOB_HISTORY_SIZE)


@celery.task(name="recurring_engine.app.workers.tasks.recurring.process_due_rules")
def process_due_rules() -> dict:
    """Run one tracked sweep over all due recurring rules."""
    from recurring_engine.app.core.database import SessionLocal
    from recurring_engine.app.services.sweep import RuleSweeper, run_tracked_sweep

    result = run_tracked_sweep(RuleSweeper(SessionLocal), job_tracker)
    return result.to_dict()
