"""Occurrence generation: one due rule → one transaction + advanced rule state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recurring_engine.app.core.config import settings
from recurring_engine.app.models.recurring import RecurringRule, RuleType
from recurring_engine.app.models.transaction import Transaction
from recurring_engine.app.services.audit import log_action
from recurring_engine.app.services.errors import (
    STORAGE_EXCEPTIONS,
    AmountComputationError,
    ClaimLost,
    DuplicateOccurrence,
    RecurringEngineError,
    RuleInactive,
    RuleNotFound,
    is_duplicate_occurrence,
    translate_storage_error,
)
from recurring_engine.app.services.schedule import compute_next_due_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedOccurrence:
    transaction_id: UUID
    rule_id: UUID
    occurrence_index: int
    occurrence_date: date
    amount: Decimal
    next_due_date: date
    deactivated: bool
    # True when the transaction already existed and was adopted, not written
    recovered: bool


# ─── Amounts ─────────────────────────────────────────────────────────────────


def _quantum(minor_units: int) -> Decimal:
    return Decimal(1).scaleb(-minor_units)


def split_installments(total: Decimal, count: int, minor_units: int = 2) -> list[Decimal]:
    """Split *total* into *count* minor-unit shares; the last absorbs the remainder."""
    quantum = _quantum(minor_units)
    total = Decimal(total)
    if count < 1:
        raise AmountComputationError(f"Installment count must be positive, got {count}")
    if total <= 0:
        raise AmountComputationError(f"Installment total must be positive, got {total}")
    if total.quantize(quantum) != total:
        raise AmountComputationError(
            f"Installment total {total} is not expressible in {minor_units} minor units"
        )

    share = (total / count).quantize(quantum, rounding=ROUND_HALF_UP)
    final = (total - share * (count - 1)).quantize(quantum)
    if share <= 0 or final <= 0:
        raise AmountComputationError(
            f"Cannot split {total} into {count} installments of at least {quantum}"
        )
    return [share] * (count - 1) + [final]


def occurrence_amount(
    rule: RecurringRule,
    occurrence_index: int,
    minor_units: int | None = None,
) -> Decimal:
    """Unsigned amount of occurrence *occurrence_index* (1-based) of *rule*."""
    if minor_units is None:
        minor_units = settings.CURRENCY_MINOR_UNITS
    if not rule.is_installment:
        return Decimal(rule.amount)

    if rule.total_amount is None or rule.total_occurrences is None:
        raise AmountComputationError(
            f"Installment rule {rule.id} needs both a total amount and a total occurrence count"
        )
    if not 1 <= occurrence_index <= rule.total_occurrences:
        raise AmountComputationError(
            f"Occurrence {occurrence_index} is outside installment plan of "
            f"{rule.total_occurrences} for rule {rule.id}"
        )
    shares = split_installments(rule.total_amount, rule.total_occurrences, minor_units)
    return shares[occurrence_index - 1]


def signed_amount(rule_type: RuleType, amount: Decimal) -> Decimal:
    """Income is stored positive; expenses and outgoing transfers negative."""
    if rule_type == RuleType.INCOME:
        return abs(amount)
    return -abs(amount)


def _occurrence_description(rule: RecurringRule, occurrence_index: int) -> str:
    if rule.is_installment and rule.total_occurrences:
        return f"{rule.description} ({occurrence_index}/{rule.total_occurrences})"
    return rule.description


def deactivation_reason(rule: RecurringRule) -> str | None:
    if rule.cap_reached:
        return "All occurrences generated"
    if rule.end_date is not None and rule.next_due_date > rule.end_date:
        return "End date reached"
    return None


# ─── Generation ──────────────────────────────────────────────────────────────


def generate_occurrence(
    db: Session,
    rule_id: UUID,
    claim_token: str,
    now: datetime,
    *,
    minor_units: int | None = None,
) -> GeneratedOccurrence:
    """Write the rule's current occurrence and advance it, releasing the claim.

    The transaction insert, the rule update, the claim release and the audit
    row commit together.  If a transaction for the same
    ``(recurring_rule_id, occurrence_index)`` is already present it is adopted
    instead of written again.  On any error the session is rolled back and
    the claim is left for the caller to release.
    """
    occurrence_index = 0
    try:
        rule = db.execute(
            select(RecurringRule).where(RecurringRule.id == rule_id).with_for_update()
        ).scalar_one_or_none()
        if rule is None:
            raise RuleNotFound(rule_id)
        if rule.processing_claim != claim_token:
            raise ClaimLost(rule_id, claim_token)
        if not rule.is_active:
            raise RuleInactive(rule_id)
        if rule.cap_reached:
            # Cap lowered by an edit after the last run: finish the rule instead
            rule.is_active = False
            rule.processing_claim = None
            db.commit()
            logger.info("Deactivated recurring rule %s: occurrence cap already reached", rule_id)
            raise RuleInactive(rule_id)

        occurrence_index = rule.occurrences_generated + 1
        occurrence_date = rule.next_due_date

        transaction = db.execute(
            select(Transaction).where(
                Transaction.recurring_rule_id == rule.id,
                Transaction.occurrence_index == occurrence_index,
            )
        ).scalar_one_or_none()
        recovered = transaction is not None

        if transaction is None:
            amount = occurrence_amount(rule, occurrence_index, minor_units)
            transaction = Transaction(
                user_id=rule.user_id,
                description=_occurrence_description(rule, occurrence_index),
                amount=signed_amount(rule.rule_type, amount),
                occurrence_date=occurrence_date,
                sub_category_id=rule.sub_category_id,
                money_account_id=rule.money_account_id,
                goal_id=rule.goal_id,
                notes=rule.notes or f"Auto-generated from recurring rule {rule.id}",
                is_recurring_instance=True,
                recurring_rule_id=rule.id,
                transaction_group_id=rule.transaction_group_id,
                occurrence_index=occurrence_index,
            )
            db.add(transaction)
            db.flush()
        else:
            logger.warning(
                "Occurrence %d of recurring rule %s already written as transaction %s, adopting it",
                occurrence_index, rule.id, transaction.id,
            )

        rule.occurrences_generated = occurrence_index
        rule.is_first_occurrence_generated = True
        rule.next_due_date = compute_next_due_date(
            rule.next_due_date,
            rule.frequency,
            rule.frequency_interval,
            rule.day_of_week,
            rule.day_of_month,
        )
        rule.last_processed_at = now

        reason = deactivation_reason(rule)
        if reason is not None:
            rule.is_active = False
        rule.processing_claim = None

        result = GeneratedOccurrence(
            transaction_id=transaction.id,
            rule_id=rule.id,
            occurrence_index=occurrence_index,
            occurrence_date=occurrence_date,
            amount=Decimal(transaction.amount),
            next_due_date=rule.next_due_date,
            deactivated=reason is not None,
            recovered=recovered,
        )

        log_action(
            db,
            user_id=None,
            action="RECURRING_OCCURRENCE_GENERATED",
            resource_type="recurring_rules",
            resource_id=str(rule.id),
            changes={
                "transaction_id": str(result.transaction_id),
                "occurrence_index": occurrence_index,
                "occurrence_date": occurrence_date.isoformat(),
                "amount": str(result.amount),
                "next_due_date": result.next_due_date.isoformat(),
                "recovered": recovered,
            },
        )
        if reason is not None:
            log_action(
                db,
                user_id=None,
                action="RECURRING_RULE_DEACTIVATED",
                resource_type="recurring_rules",
                resource_id=str(rule.id),
                changes={"reason": reason, "occurrences_generated": occurrence_index},
            )

        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_duplicate_occurrence(exc):
            raise DuplicateOccurrence(rule_id, occurrence_index) from exc
        raise translate_storage_error(exc) from exc
    except RecurringEngineError:
        db.rollback()
        raise
    except STORAGE_EXCEPTIONS as exc:
        db.rollback()
        raise translate_storage_error(exc) from exc

    if result.deactivated:
        logger.info("Deactivated recurring rule %s: %s", rule_id, reason)
    return result
