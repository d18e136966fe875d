"""Rule sweep: process every due recurring rule once per trigger.

Each rule is handled independently (own session, own claim token); a failing
rule is recorded and the sweep moves on.  Only a failure to read the due set
itself fails the whole sweep.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from recurring_engine.app.core.config import settings
from recurring_engine.app.models.recurring import RecurringRule
from recurring_engine.app.services.audit import log_action
from recurring_engine.app.services.claims import (
    ClaimOutcome,
    due_condition,
    new_run_token,
    release,
    try_claim,
)
from recurring_engine.app.services.errors import (
    STORAGE_EXCEPTIONS,
    AlreadyClaimed,
    AmountComputationError,
    ClaimLost,
    DuplicateOccurrence,
    InvalidFrequencyConfig,
    RuleInactive,
    RuleNotFound,
    StorageError,
    translate_storage_error,
)
from recurring_engine.app.services.generator import generate_occurrence
from recurring_engine.app.services.job_tracker import JobTracker

logger = logging.getLogger(__name__)

# Expected race outcomes: another run got there first, or the rule changed
_SKIP_ERRORS = (AlreadyClaimed, ClaimLost, RuleInactive, RuleNotFound, DuplicateOccurrence)
# Bad rule data: retrying will not help, somebody has to look at the rule
_DATA_ERRORS = (InvalidFrequencyConfig, AmountComputationError)


# ─── Results ─────────────────────────────────────────────────────────────────


@dataclass
class RuleFailure:
    rule_id: UUID
    error_type: str
    message: str


@dataclass
class RuleOutcome:
    rule_id: UUID
    status: str = "skipped"
    created_transactions: int = 0
    occurrences: int = 0
    deactivated: bool = False
    failure: RuleFailure | None = None


@dataclass
class SweepResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    created_transactions: int = 0
    deactivated_rules: int = 0
    errors: list[RuleFailure] = field(default_factory=list)

    def record(self, outcome: RuleOutcome) -> None:
        if outcome.status == "processed":
            self.processed += 1
        elif outcome.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
        self.created_transactions += outcome.created_transactions
        if outcome.deactivated:
            self.deactivated_rules += 1
        if outcome.failure is not None:
            self.errors.append(outcome.failure)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["errors"] = [
            {**asdict(failure), "rule_id": str(failure.rule_id)} for failure in self.errors
        ]
        return data


# ─── Queries ─────────────────────────────────────────────────────────────────


def due_rule_ids(db: Session, today: date) -> list[UUID]:
    """Ids of every rule eligible for processing on *today*, oldest due first."""
    try:
        return list(
            db.execute(
                select(RecurringRule.id)
                .where(due_condition(today))
                .order_by(RecurringRule.next_due_date.asc(), RecurringRule.id.asc())
            ).scalars()
        )
    except STORAGE_EXCEPTIONS as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc


def deactivate_finished_rules(db: Session) -> int:
    """Deactivate unclaimed active rules past their end date or occurrence cap. Commits."""
    finished = and_(
        RecurringRule.is_active.is_(True),
        RecurringRule.processing_claim.is_(None),
        or_(
            and_(
                RecurringRule.end_date.is_not(None),
                RecurringRule.next_due_date > RecurringRule.end_date,
            ),
            and_(
                RecurringRule.total_occurrences.is_not(None),
                RecurringRule.occurrences_generated >= RecurringRule.total_occurrences,
            ),
        ),
    )
    try:
        rule_ids = list(db.execute(select(RecurringRule.id).where(finished)).scalars())
        if not rule_ids:
            return 0
        result = db.execute(
            update(RecurringRule)
            .where(RecurringRule.id.in_(rule_ids), finished)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        for rule_id in rule_ids:
            log_action(
                db,
                user_id=None,
                action="RECURRING_RULE_DEACTIVATED",
                resource_type="recurring_rules",
                resource_id=str(rule_id),
                changes={"reason": "End date or occurrence cap reached"},
            )
        deactivated = result.rowcount
        db.commit()
    except STORAGE_EXCEPTIONS as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc

    logger.info("Deactivated %d finished recurring rules", deactivated)
    return deactivated


# ─── Sweeper ─────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleSweeper:
    """Claims and generates every due rule; one instance per scheduler process."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        stale_after: timedelta | None = None,
        max_workers: int | None = None,
        max_catchup: int | None = None,
        minor_units: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = stale_after or timedelta(minutes=settings.STALE_CLAIM_MINUTES)
        self._max_workers = max_workers or settings.SWEEP_MAX_WORKERS
        self._max_catchup = max_catchup or settings.MAX_CATCHUP_OCCURRENCES
        self._minor_units = minor_units
        self._clock = clock

    def run_sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        logger.info("Starting recurring transaction sweep at %s", now.isoformat())

        result = SweepResult()
        with self._session_factory() as db:
            result.deactivated_rules += deactivate_finished_rules(db)
            rule_ids = due_rule_ids(db, now.date())
        logger.info("Found %d due recurring rules", len(rule_ids))

        if self._max_workers > 1 and len(rule_ids) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                outcomes = list(pool.map(lambda rule_id: self.process_rule(rule_id, now), rule_ids))
        else:
            outcomes = [self.process_rule(rule_id, now) for rule_id in rule_ids]

        for outcome in outcomes:
            result.record(outcome)

        logger.info(
            "Recurring transaction sweep finished: processed=%d skipped=%d failed=%d "
            "created=%d deactivated=%d",
            result.processed, result.skipped, result.failed,
            result.created_transactions, result.deactivated_rules,
        )
        return result

    def process_rule(self, rule_id: UUID, now: datetime) -> RuleOutcome:
        """Generate every due occurrence of one rule, catching up missed ones."""
        outcome = RuleOutcome(rule_id=rule_id)
        token = new_run_token()

        with self._session_factory() as db:
            try:
                self._generate_due_occurrences(db, rule_id, token, now, outcome)
            except _SKIP_ERRORS as exc:
                logger.warning("Skipped recurring rule %s: %s", rule_id, exc)
            except _DATA_ERRORS as exc:
                logger.error("Recurring rule %s has invalid data and needs attention: %s", rule_id, exc)
                self._mark_failed(outcome, exc)
            except StorageError as exc:
                logger.warning("Storage failure on recurring rule %s, retrying next sweep: %s", rule_id, exc)
                self._mark_failed(outcome, exc)
            except Exception as exc:
                logger.exception("Unexpected error processing recurring rule %s", rule_id)
                self._mark_failed(outcome, exc)

        if outcome.status != "failed" and outcome.occurrences > 0:
            outcome.status = "processed"
        return outcome

    def _generate_due_occurrences(
        self,
        db: Session,
        rule_id: UUID,
        token: str,
        now: datetime,
        outcome: RuleOutcome,
    ) -> None:
        for _ in range(self._max_catchup):
            claim = try_claim(
                db, rule_id, token, now,
                stale_after=self._stale_after, claimed_at=self._clock(),
            )
            if claim == ClaimOutcome.NOT_DUE:
                return
            if claim == ClaimOutcome.ALREADY_CLAIMED:
                raise AlreadyClaimed(rule_id)

            try:
                occurrence = generate_occurrence(
                    db, rule_id, token, self._clock(), minor_units=self._minor_units,
                )
            except Exception:
                self._release_claim(db, rule_id, token)
                raise

            outcome.occurrences += 1
            if not occurrence.recovered:
                outcome.created_transactions += 1
            if occurrence.deactivated:
                outcome.deactivated = True
                return

        logger.warning(
            "Recurring rule %s still due after %d occurrences, the next sweep continues",
            rule_id, self._max_catchup,
        )

    def _release_claim(self, db: Session, rule_id: UUID, token: str) -> None:
        try:
            release(db, rule_id, token)
        except StorageError as exc:
            logger.warning(
                "Could not release claim on recurring rule %s, it expires after %s: %s",
                rule_id, self._stale_after, exc,
            )

    @staticmethod
    def _mark_failed(outcome: RuleOutcome, exc: Exception) -> None:
        outcome.status = "failed"
        outcome.failure = RuleFailure(
            rule_id=outcome.rule_id,
            error_type=type(exc).__name__,
            message=str(exc),
        )


# ─── Tracked entry point ─────────────────────────────────────────────────────


def run_tracked_sweep(
    sweeper: RuleSweeper,
    tracker: JobTracker,
    job_name: str | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """Run one sweep wrapped in a job execution record on *tracker*."""
    execution_id = tracker.start(job_name or settings.SWEEP_JOB_NAME)
    try:
        result = sweeper.run_sweep(now)
    except Exception as exc:
        tracker.fail(execution_id, exc)
        raise
    tracker.complete(execution_id, result.to_dict())
    return result
