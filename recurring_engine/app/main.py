import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recurring_engine.app.api.v1.api import api_router
from recurring_engine.app.core.config import settings
from recurring_engine.app.services.job_tracker import JobTracker

app = FastAPI(title="Recurring Transaction Engine", version=settings.APP_VERSION)

# ─── Process-wide state ──────────────────────────────────────────────────────
app.state.job_tracker = JobTracker(settings.JOB_HISTORY_SIZE)
app.state.started_at = time.monotonic()

# ─── CORS: restrict to configured origins ───────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)

app.include_router(api_router)
