from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from recurring_engine.app.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    """Per-dialect timeouts so a slow database fails a rule instead of a sweep."""
    if url.startswith("postgresql"):
        return {
            "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
            "pool_pre_ping": True,
            "connect_args": {
                "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
            },
        }
    if url.startswith("sqlite"):
        return {
            "connect_args": {
                "check_same_thread": False,
                "timeout": settings.DB_STATEMENT_TIMEOUT_MS / 1000,
            },
        }
    return {}


engine = create_engine(settings.DATABASE_URL, echo=False, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
