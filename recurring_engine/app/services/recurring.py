"""Service layer for recurring rule management.

These are the user-action side of a rule's lifecycle.  None of them commit;
the caller owns the transaction.  Edits take a row lock and refuse to touch a
rule while a live processing claim is on it, so they never interleave with a
sweep generating the same rule.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from recurring_engine.app.core.config import settings
from recurring_engine.app.models.recurring import FrequencyType, RecurringRule, RuleType
from recurring_engine.app.models.transaction import Transaction
from recurring_engine.app.services.audit import log_action
from recurring_engine.app.services.claims import ClaimedBy, claim_state, due_condition
from recurring_engine.app.services.errors import RuleBusy, RuleNotFound
from recurring_engine.app.services.generator import occurrence_amount, split_installments
from recurring_engine.app.services.schedule import (
    first_due_date,
    iter_due_dates,
    validate_frequency_config,
)

_SCHEDULE_FIELDS = ("frequency", "frequency_interval", "day_of_week", "day_of_month")
# Optional fields an update may reset to empty
CLEARABLE_FIELDS = (
    "notes",
    "end_date",
    "total_occurrences",
    "day_of_week",
    "day_of_month",
    "sub_category_id",
    "money_account_id",
    "goal_id",
)


# ─── Helpers ─────────────────────────────────────────────────────────────────


def new_transaction_group_id() -> str:
    return f"tgroup-{uuid.uuid4().hex}"


def load_rule(db: Session, rule_id: UUID, *, lock: bool = False) -> RecurringRule:
    stmt = select(RecurringRule).where(RecurringRule.id == rule_id)
    if lock:
        stmt = stmt.with_for_update()
    rule = db.execute(stmt).scalar_one_or_none()
    if rule is None:
        raise RuleNotFound(rule_id)
    return rule


def _assert_not_claimed(rule: RecurringRule, now: datetime) -> None:
    if isinstance(claim_state(rule, now), ClaimedBy):
        raise RuleBusy(rule.id)


def _is_due(rule: RecurringRule, today: date) -> bool:
    return (
        rule.is_active
        and rule.next_due_date <= today
        and (rule.end_date is None or rule.next_due_date <= rule.end_date)
    )


def _rule_to_dict(rule: RecurringRule, today: date) -> dict[str, Any]:
    return {
        "id": str(rule.id),
        "user_id": str(rule.user_id),
        "description": rule.description,
        "amount": str(rule.amount),
        "total_amount": str(rule.total_amount) if rule.total_amount is not None else None,
        "rule_type": rule.rule_type.value,
        "frequency": rule.frequency.value,
        "frequency_interval": rule.frequency_interval,
        "day_of_week": rule.day_of_week,
        "day_of_month": rule.day_of_month,
        "start_date": rule.start_date.isoformat(),
        "next_due_date": rule.next_due_date.isoformat(),
        "end_date": rule.end_date.isoformat() if rule.end_date else None,
        "total_occurrences": rule.total_occurrences,
        "occurrences_generated": rule.occurrences_generated,
        "is_installment": rule.is_installment,
        "is_active": rule.is_active,
        "is_due": _is_due(rule, today),
        "transaction_group_id": rule.transaction_group_id,
        "last_processed_at": rule.last_processed_at.isoformat() if rule.last_processed_at else None,
        "notes": rule.notes,
    }


# ─── Queries ─────────────────────────────────────────────────────────────────


def get_recurring_rule(db: Session, rule_id: UUID, today: date | None = None) -> dict[str, Any]:
    """Return a single rule as a dict, with an is_due flag."""
    return _rule_to_dict(load_rule(db, rule_id), today or date.today())


def list_recurring_rules(
    db: Session,
    *,
    user_id: UUID | None = None,
    is_installment: bool | None = None,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Return rules ordered by next due date, optionally filtered."""
    stmt = select(RecurringRule).order_by(RecurringRule.next_due_date.asc())
    if user_id is not None:
        stmt = stmt.where(RecurringRule.user_id == user_id)
    if is_installment is not None:
        stmt = stmt.where(RecurringRule.is_installment.is_(is_installment))
    today = today or date.today()
    return [_rule_to_dict(rule, today) for rule in db.execute(stmt).scalars()]


def list_due_rules(db: Session, today: date) -> list[RecurringRule]:
    return list(
        db.execute(
            select(RecurringRule)
            .where(due_condition(today))
            .order_by(RecurringRule.next_due_date.asc())
        ).scalars()
    )


def preview_occurrences(
    rule: RecurringRule,
    count: int = 12,
    minor_units: int | None = None,
) -> list[dict[str, Any]]:
    """Upcoming (not yet generated) occurrences, respecting cap and end date."""
    remaining = count
    if rule.total_occurrences is not None:
        remaining = min(remaining, rule.total_occurrences - rule.occurrences_generated)
    if not rule.is_active or remaining <= 0:
        return []

    upcoming: list[dict[str, Any]] = []
    dates = iter_due_dates(
        rule.next_due_date,
        rule.frequency,
        rule.frequency_interval,
        rule.day_of_week,
        rule.day_of_month,
        count=remaining,
    )
    for offset, due in enumerate(dates, start=1):
        if rule.end_date is not None and due > rule.end_date:
            break
        index = rule.occurrences_generated + offset
        upcoming.append({
            "occurrence_index": index,
            "date": due.isoformat(),
            "amount": str(occurrence_amount(rule, index, minor_units)),
        })
    return upcoming


# ─── Commands ────────────────────────────────────────────────────────────────


def create_recurring_rule(
    db: Session,
    *,
    user_id: UUID,
    description: str,
    amount: Decimal,
    rule_type: str,
    start_date: date,
    frequency: str,
    frequency_interval: int = 1,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    end_date: date | None = None,
    total_occurrences: int | None = None,
    is_installment: bool = False,
    total_amount: Decimal | None = None,
    sub_category_id: UUID | None = None,
    goal_id: UUID | None = None,
    money_account_id: UUID | None = None,
    external_system_id: str | None = None,
    notes: str | None = None,
) -> RecurringRule:
    """Create a new recurring rule.

    For installment rules *amount* is the full amount to spread unless
    *total_amount* is given; the stored base amount is then the first share.
    MONTHLY rules without an anchor day are anchored to the start date's day.
    Does NOT call db.commit(); the caller is responsible.
    """
    try:
        kind = RuleType(rule_type)
    except ValueError:
        raise ValueError(f"Invalid rule type: {rule_type}")

    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError("Amount must be greater than zero")
    if end_date is not None and end_date < start_date:
        raise ValueError("End date must not be before start date")
    if total_occurrences is not None and total_occurrences < 1:
        raise ValueError("Total occurrences must be at least 1")

    freq = validate_frequency_config(frequency, frequency_interval, day_of_week, day_of_month)
    if freq == FrequencyType.MONTHLY and day_of_month is None:
        day_of_month = start_date.day

    if is_installment:
        if total_occurrences is None:
            raise ValueError("Installment rules need a total number of occurrences")
        total_amount = Decimal(str(total_amount)) if total_amount is not None else amount
        shares = split_installments(total_amount, total_occurrences, settings.CURRENCY_MINOR_UNITS)
        amount = shares[0]

    rule = RecurringRule(
        user_id=user_id,
        description=description,
        amount=amount,
        total_amount=total_amount if is_installment else None,
        rule_type=kind,
        sub_category_id=sub_category_id,
        goal_id=goal_id,
        money_account_id=money_account_id,
        start_date=start_date,
        frequency=freq,
        frequency_interval=frequency_interval,
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        next_due_date=first_due_date(start_date, freq, day_of_week, day_of_month),
        end_date=end_date,
        total_occurrences=total_occurrences,
        occurrences_generated=0,
        is_installment=is_installment,
        is_first_occurrence_generated=False,
        transaction_group_id=new_transaction_group_id(),
        external_system_id=external_system_id,
        is_active=True,
        notes=notes,
    )
    db.add(rule)
    db.flush()

    log_action(
        db,
        user_id=user_id,
        action="RECURRING_RULE_CREATED",
        resource_type="recurring_rules",
        resource_id=str(rule.id),
        changes={
            "description": description,
            "frequency": freq.value,
            "next_due_date": rule.next_due_date.isoformat(),
        },
    )
    return rule


def update_recurring_rule(
    db: Session,
    *,
    rule_id: UUID,
    user_id: UUID,
    now: datetime,
    description: str | None = None,
    amount: Decimal | None = None,
    notes: str | None = None,
    frequency: str | None = None,
    frequency_interval: int | None = None,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    next_due_date: date | None = None,
    end_date: date | None = None,
    total_occurrences: int | None = None,
    sub_category_id: UUID | None = None,
    money_account_id: UUID | None = None,
    goal_id: UUID | None = None,
    clear: Collection[str] = (),
) -> RecurringRule:
    """Update an existing rule. Raises RuleBusy while it is being processed. Does NOT commit.

    A ``None`` argument leaves the field unchanged; fields named in *clear* are
    reset to empty instead.
    """
    unknown = set(clear) - set(CLEARABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot clear: {', '.join(sorted(unknown))}")

    rule = load_rule(db, rule_id, lock=True)
    _assert_not_claimed(rule, now)

    changes: dict[str, Any] = {}
    if description is not None:
        rule.description = description
        changes["description"] = description
    if amount is not None:
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Amount must be greater than zero")
        if rule.is_installment:
            raise ValueError("Installment amounts are derived from the total and cannot be edited")
        rule.amount = amount
        changes["amount"] = str(amount)
    if notes is not None:
        rule.notes = notes
        changes["notes"] = notes
    if end_date is not None:
        if end_date < rule.start_date:
            raise ValueError("End date must not be before start date")
        rule.end_date = end_date
        changes["end_date"] = end_date.isoformat()
    if total_occurrences is not None:
        if total_occurrences < rule.occurrences_generated or total_occurrences < 1:
            raise ValueError(
                f"Total occurrences cannot be below the {rule.occurrences_generated} already generated"
            )
        if rule.is_installment:
            raise ValueError("The installment plan length cannot be changed")
        rule.total_occurrences = total_occurrences
        changes["total_occurrences"] = total_occurrences
    for field_name, value in (
        ("sub_category_id", sub_category_id),
        ("money_account_id", money_account_id),
        ("goal_id", goal_id),
    ):
        if value is not None:
            setattr(rule, field_name, value)
            changes[field_name] = str(value)

    if "total_occurrences" in clear and rule.is_installment:
        raise ValueError("The installment plan length cannot be changed")
    for field_name in ("notes", "end_date", "total_occurrences", "sub_category_id",
                       "money_account_id", "goal_id"):
        if field_name in clear:
            setattr(rule, field_name, None)
            changes[field_name] = None

    schedule = {
        "frequency": frequency if frequency is not None else rule.frequency,
        "frequency_interval": (
            frequency_interval if frequency_interval is not None else rule.frequency_interval
        ),
        "day_of_week": day_of_week if day_of_week is not None else rule.day_of_week,
        "day_of_month": day_of_month if day_of_month is not None else rule.day_of_month,
    }
    if frequency is not None and FrequencyType(frequency) != rule.frequency:
        # Anchors belong to the old frequency unless given again
        if day_of_week is None:
            schedule["day_of_week"] = None
        if day_of_month is None:
            schedule["day_of_month"] = None
    for anchor in ("day_of_week", "day_of_month"):
        if anchor in clear:
            schedule[anchor] = None
    schedule["frequency"] = validate_frequency_config(
        schedule["frequency"],
        schedule["frequency_interval"],
        schedule["day_of_week"],
        schedule["day_of_month"],
    )
    touched = frequency is not None or "day_of_month" in clear
    if touched and schedule["frequency"] == FrequencyType.MONTHLY and schedule["day_of_month"] is None:
        # Same default as on create, so month-end starts keep their anchor
        schedule["day_of_month"] = rule.start_date.day
    schedule_changed = any(getattr(rule, name) != schedule[name] for name in _SCHEDULE_FIELDS)
    if schedule_changed:
        for name in _SCHEDULE_FIELDS:
            setattr(rule, name, schedule[name])
        changes["schedule"] = {
            "frequency": rule.frequency.value,
            "frequency_interval": rule.frequency_interval,
            "day_of_week": rule.day_of_week,
            "day_of_month": rule.day_of_month,
        }

    if next_due_date is not None:
        rule.next_due_date = next_due_date
    elif schedule_changed and rule.occurrences_generated == 0:
        rule.next_due_date = first_due_date(
            rule.start_date, rule.frequency, rule.day_of_week, rule.day_of_month,
        )
    if next_due_date is not None or schedule_changed:
        changes["next_due_date"] = rule.next_due_date.isoformat()

    db.flush()
    log_action(
        db,
        user_id=user_id,
        action="RECURRING_RULE_UPDATED",
        resource_type="recurring_rules",
        resource_id=str(rule.id),
        changes=changes,
    )
    return rule


def set_rule_active(
    db: Session,
    *,
    rule_id: UUID,
    user_id: UUID,
    active: bool,
    now: datetime,
) -> RecurringRule:
    """Activate or deactivate a rule. Does NOT commit."""
    rule = load_rule(db, rule_id, lock=True)
    _assert_not_claimed(rule, now)
    if active and rule.cap_reached:
        raise ValueError("All occurrences of this rule have already been generated")

    old_active = rule.is_active
    rule.is_active = active
    db.flush()

    log_action(
        db,
        user_id=user_id,
        action="RECURRING_RULE_STATUS_CHANGED",
        resource_type="recurring_rules",
        resource_id=str(rule.id),
        changes={"old_active": old_active, "new_active": active},
    )
    return rule


def delete_recurring_rule(
    db: Session,
    *,
    rule_id: UUID,
    user_id: UUID,
    now: datetime,
) -> str:
    """Delete a rule that never generated anything, otherwise deactivate it.

    Returns ``"deleted"`` or ``"deactivated"``. Does NOT commit.
    """
    rule = load_rule(db, rule_id, lock=True)
    _assert_not_claimed(rule, now)

    generated = db.execute(
        select(func.count(Transaction.id)).where(Transaction.recurring_rule_id == rule.id)
    ).scalar_one()

    if generated == 0:
        log_action(
            db,
            user_id=user_id,
            action="RECURRING_RULE_DELETED",
            resource_type="recurring_rules",
            resource_id=str(rule.id),
            changes={"description": rule.description},
        )
        db.delete(rule)
        db.flush()
        return "deleted"

    rule.is_active = False
    db.flush()
    log_action(
        db,
        user_id=user_id,
        action="RECURRING_RULE_DEACTIVATED",
        resource_type="recurring_rules",
        resource_id=str(rule.id),
        changes={"reason": "Deleted by user", "generated_transactions": generated},
    )
    return "deactivated"
