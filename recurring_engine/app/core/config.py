from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./recurring.db"
    # Storage timeouts surface as per-rule failures instead of hanging a sweep
    DB_STATEMENT_TIMEOUT_MS: int = 15000
    DB_POOL_TIMEOUT_SECONDS: int = 10

    # Shared secret forwarded by the external cron trigger (empty = no check)
    CRON_SECRET: str = ""

    # Allowed CORS origins, a JSON list in the environment
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Sweep behaviour
    STALE_CLAIM_MINUTES: int = 10
    JOB_HISTORY_SIZE: int = 100
    SWEEP_JOB_NAME: str = "recurring-transactions"
    SWEEP_MAX_WORKERS: int = 1
    MAX_CATCHUP_OCCURRENCES: int = 366
    CURRENCY_MINOR_UNITS: int = 2

    # Redis / Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    SCHEDULER_TIMEZONE: str = "Europe/Rome"
    SWEEP_CRON_HOUR: int = 9
    SWEEP_CRON_MINUTE: int = 0

    APP_VERSION: str = "1.0.0"


settings = Settings()
