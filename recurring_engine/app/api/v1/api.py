from fastapi import APIRouter

from recurring_engine.app.api.v1.endpoints import cron, health, jobs, recurring

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(recurring.router, prefix="/recurring-rules", tags=["recurring-rules"])
