"""Scheduler trigger: runs one tracked sweep of due recurring rules."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from recurring_engine.app.api.deps import get_job_tracker, get_sweeper, require_cron_secret
from recurring_engine.app.schemas.jobs import CronRunResponse
from recurring_engine.app.services.errors import RecurringEngineError
from recurring_engine.app.services.job_tracker import JobTracker
from recurring_engine.app.services.sweep import RuleSweeper, run_tracked_sweep

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route(
    "/recurring-transactions",
    methods=["GET", "POST"],
    response_model=CronRunResponse,
    dependencies=[Depends(require_cron_secret)],
)
def trigger_recurring_transactions(
    sweeper: RuleSweeper = Depends(get_sweeper),
    tracker: JobTracker = Depends(get_job_tracker),
) -> dict:
    try:
        result = run_tracked_sweep(sweeper, tracker)
    except RecurringEngineError as e:
        logger.error("Recurring transaction sweep failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Recurring transaction sweep failed", "error": str(e)},
        )
    return {
        "success": True,
        "message": "Recurring transactions processed",
        "result": result.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
