"""Celery application instance.

Start the worker::

    celery -A recurring_engine.app.workers.celery_app worker --loglevel=info
    celery -A recurring_engine.app.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from recurring_engine.app.core.config import settings

celery = Celery(
    "recurring_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.SCHEDULER_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Auto-discover tasks in workers/tasks/*.py
celery.autodiscover_tasks(["recurring_engine.app.workers.tasks"])

# Beat schedule: periodic tasks
celery.conf.beat_schedule = {
    "process-recurring-transactions-daily": {
        "task": "recurring_engine.app.workers.tasks.recurring.process_due_rules",
        "schedule": crontab(hour=settings.SWEEP_CRON_HOUR, minute=settings.SWEEP_CRON_MINUTE),
    },
}
