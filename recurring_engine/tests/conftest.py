"""Shared test fixtures.

Each test gets a fresh in-memory SQLite database.  The engine code under test
opens its own sessions (one per rule), so the fixtures hand out a session
factory bound to that database rather than a single rolled-back session.
All sessions share one connection through StaticPool: commit before handing
control to the engine, and expire the ``db`` session before reading back.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from recurring_engine.app.api.deps import get_session_factory
from recurring_engine.app.core.database import Base, get_db
from recurring_engine.app.main import app
from recurring_engine.app.models.audit import AuditLog
from recurring_engine.app.models.recurring import FrequencyType, RecurringRule, RuleType
from recurring_engine.app.models.transaction import Transaction
from recurring_engine.app.services.job_tracker import JobTracker

# Fixed clock for every test: Sunday 15 March 2026, 09:00 UTC
NOW = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ─── Database ────────────────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def tracker() -> JobTracker:
    return JobTracker(capacity=100)


@pytest.fixture()
def client(
    session_factory: sessionmaker[Session],
    tracker: JobTracker,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the per-test database and a fresh tracker."""

    def _override_get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    original_tracker = app.state.job_tracker
    app.state.job_tracker = tracker
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.job_tracker = original_tracker


# ─── Rule factory ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_rule(db: Session) -> Callable[..., RecurringRule]:
    """Insert and commit a RecurringRule; keyword arguments override defaults."""

    def _make(**overrides: Any) -> RecurringRule:
        due = overrides.pop("next_due_date", TODAY)
        values: dict[str, Any] = {
            "user_id": uuid.uuid4(),
            "description": "Rent",
            "amount": Decimal("100.00"),
            "rule_type": RuleType.EXPENSE,
            "start_date": due,
            "frequency": FrequencyType.MONTHLY,
            "frequency_interval": 1,
            "next_due_date": due,
            "occurrences_generated": 0,
            "is_installment": False,
            "is_first_occurrence_generated": False,
            "transaction_group_id": f"tgroup-{uuid.uuid4().hex}",
            "is_active": True,
        }
        values.update(overrides)
        rule = RecurringRule(**values)
        db.add(rule)
        db.commit()
        return rule

    return _make


# ─── Read-back helpers ───────────────────────────────────────────────────────


def reload_rule(db: Session, rule_id: uuid.UUID) -> RecurringRule:
    db.expire_all()
    return db.execute(select(RecurringRule).where(RecurringRule.id == rule_id)).scalar_one()


def transactions_for(db: Session, rule_id: uuid.UUID) -> list[Transaction]:
    db.expire_all()
    return list(
        db.execute(
            select(Transaction)
            .where(Transaction.recurring_rule_id == rule_id)
            .order_by(Transaction.occurrence_index)
        ).scalars()
    )


def audit_actions(db: Session, rule_id: uuid.UUID) -> list[str]:
    db.expire_all()
    return list(
        db.execute(
            select(AuditLog.action)
            .where(AuditLog.record_id == str(rule_id))
            .order_by(AuditLog.created_at)
        ).scalars()
    )


def transaction_count(db: Session) -> int:
    db.expire_all()
    return db.execute(select(func.count(Transaction.id))).scalar_one()


def bearer(secret: str) -> dict[str, str]:
    """Return Authorization header dict."""
    return {"Authorization": f"Bearer {secret}"}
