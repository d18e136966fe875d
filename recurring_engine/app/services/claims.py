"""Row-level processing claims on recurring rules.

A claim is taken with one conditional UPDATE (compare-and-swap): the row only
changes when nobody holds a live claim and the rule is still due, so two
overlapping sweeps can never both pass.  A claim older than the stale
threshold is treated as abandoned by a crashed worker and may be taken over.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Union
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from recurring_engine.app.core.config import settings
from recurring_engine.app.models.recurring import RecurringRule
from recurring_engine.app.services.errors import STORAGE_EXCEPTIONS, translate_storage_error

logger = logging.getLogger(__name__)


class ClaimOutcome(str, enum.Enum):
    CLAIMED = "CLAIMED"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    NOT_DUE = "NOT_DUE"


@dataclass(frozen=True)
class Unclaimed:
    pass


@dataclass(frozen=True)
class ClaimedBy:
    token: str
    since: datetime


ClaimState = Union[Unclaimed, ClaimedBy]


def default_stale_after() -> timedelta:
    return timedelta(minutes=settings.STALE_CLAIM_MINUTES)


def new_run_token() -> str:
    return uuid.uuid4().hex


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything here is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def claim_state(
    rule: RecurringRule,
    now: datetime,
    stale_after: timedelta | None = None,
) -> ClaimState:
    """Read the claim on *rule* as a tagged state; expired claims read as Unclaimed."""
    stale_after = stale_after or default_stale_after()
    if rule.processing_claim is None or rule.last_processed_at is None:
        return Unclaimed()
    since = as_utc(rule.last_processed_at)
    if as_utc(now) - since > stale_after:
        return Unclaimed()
    return ClaimedBy(token=rule.processing_claim, since=since)


def due_condition(today: date) -> ColumnElement[bool]:
    """SQL predicate: active, due on/before *today* and not past its end date."""
    return and_(
        RecurringRule.is_active.is_(True),
        RecurringRule.next_due_date <= today,
        or_(
            RecurringRule.end_date.is_(None),
            RecurringRule.next_due_date <= RecurringRule.end_date,
        ),
    )


def try_claim(
    db: Session,
    rule_id: UUID,
    run_token: str,
    now: datetime,
    *,
    stale_after: timedelta | None = None,
    claimed_at: datetime | None = None,
) -> ClaimOutcome:
    """Atomically claim *rule_id* for *run_token*. Commits.

    *now* decides due-ness; *claimed_at* (default *now*) is the wall-clock time
    the claim is stamped with and measured against for staleness.
    """
    stale_after = stale_after or default_stale_after()
    claimed_at = claimed_at or now
    cutoff = claimed_at - stale_after
    try:
        result = db.execute(
            update(RecurringRule)
            .where(
                RecurringRule.id == rule_id,
                due_condition(now.date()),
                or_(
                    RecurringRule.processing_claim.is_(None),
                    RecurringRule.last_processed_at.is_(None),
                    RecurringRule.last_processed_at < cutoff,
                ),
            )
            .values(processing_claim=run_token, last_processed_at=claimed_at)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        db.commit()
        if claimed:
            return ClaimOutcome.CLAIMED

        still_due = db.execute(
            select(RecurringRule.id).where(RecurringRule.id == rule_id, due_condition(now.date()))
        ).first()
    except STORAGE_EXCEPTIONS as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc

    if still_due is None:
        return ClaimOutcome.NOT_DUE
    logger.debug("Recurring rule %s already claimed by another run", rule_id)
    return ClaimOutcome.ALREADY_CLAIMED


def release(db: Session, rule_id: UUID, run_token: str) -> bool:
    """Clear the claim on *rule_id* if *run_token* still holds it. Commits."""
    try:
        result = db.execute(
            update(RecurringRule)
            .where(RecurringRule.id == rule_id, RecurringRule.processing_claim == run_token)
            .values(processing_claim=None)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        db.commit()
    except STORAGE_EXCEPTIONS as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc
    return released
