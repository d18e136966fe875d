"""Tests for recurring rule management."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from recurring_engine.app.models.recurring import FrequencyType, RecurringRule, RuleType
from recurring_engine.app.models.transaction import Transaction
from recurring_engine.app.services.errors import InvalidFrequencyConfig, RuleBusy, RuleNotFound
from recurring_engine.app.services.recurring import (
    create_recurring_rule,
    delete_recurring_rule,
    get_recurring_rule,
    list_due_rules,
    list_recurring_rules,
    preview_occurrences,
    set_rule_active,
    update_recurring_rule,
)
from recurring_engine.tests.conftest import NOW, TODAY, audit_actions, reload_rule

USER = uuid.UUID("00000000-0000-0000-0000-00000000a11c")


def _create(db: Session, **overrides: object) -> RecurringRule:
    values: dict[str, object] = {
        "user_id": USER,
        "description": "Netflix",
        "amount": Decimal("12.99"),
        "rule_type": "EXPENSE",
        "start_date": date(2026, 3, 15),
        "frequency": "MONTHLY",
    }
    values.update(overrides)
    rule = create_recurring_rule(db, **values)  # type: ignore[arg-type]
    db.commit()
    return rule


# ─── Create ──────────────────────────────────────────────────────────────────


class TestCreateRule:
    def test_monthly_defaults_anchor_to_start_day(self, db: Session) -> None:
        rule = _create(db, start_date=date(2026, 1, 31))

        assert rule.frequency == FrequencyType.MONTHLY
        assert rule.day_of_month == 31
        assert rule.next_due_date == date(2026, 1, 31)
        assert rule.rule_type == RuleType.EXPENSE
        assert rule.transaction_group_id.startswith("tgroup-")
        assert rule.occurrences_generated == 0
        assert rule.is_active is True
        assert audit_actions(db, rule.id) == ["RECURRING_RULE_CREATED"]

    def test_weekly_anchor_moves_first_due_date(self, db: Session) -> None:
        rule = _create(db, frequency="WEEKLY", day_of_week=5)
        assert rule.next_due_date == date(2026, 3, 20)

    def test_group_ids_are_unique(self, db: Session) -> None:
        assert _create(db).transaction_group_id != _create(db).transaction_group_id

    def test_installment_spreads_the_amount(self, db: Session) -> None:
        rule = _create(
            db,
            amount=Decimal("100.00"),
            is_installment=True,
            total_occurrences=3,
        )

        assert rule.total_amount == Decimal("100.00")
        assert rule.amount == Decimal("33.33")
        assert [p["amount"] for p in preview_occurrences(rule)] == ["33.33", "33.33", "33.34"]

    def test_installment_needs_occurrence_count(self, db: Session) -> None:
        with pytest.raises(ValueError, match="total number of occurrences"):
            create_recurring_rule(
                db,
                user_id=USER,
                description="Sofa",
                amount=Decimal("900"),
                rule_type="EXPENSE",
                start_date=TODAY,
                frequency="MONTHLY",
                is_installment=True,
            )

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"rule_type": "GIFT"}, ValueError),
            ({"amount": Decimal("0")}, ValueError),
            ({"end_date": date(2026, 3, 1)}, ValueError),
            ({"total_occurrences": 0}, ValueError),
            ({"frequency": "HOURLY"}, InvalidFrequencyConfig),
            ({"frequency": "DAILY", "day_of_week": 3}, InvalidFrequencyConfig),
            ({"frequency_interval": 0}, InvalidFrequencyConfig),
        ],
    )
    def test_rejects_invalid_input(
        self, db: Session, overrides: dict[str, object], error: type[Exception],
    ) -> None:
        values: dict[str, object] = {
            "user_id": USER,
            "description": "Bad",
            "amount": Decimal("10"),
            "rule_type": "EXPENSE",
            "start_date": date(2026, 3, 15),
            "frequency": "MONTHLY",
        }
        values.update(overrides)
        with pytest.raises(error):
            create_recurring_rule(db, **values)  # type: ignore[arg-type]


# ─── Update ──────────────────────────────────────────────────────────────────


class TestUpdateRule:
    def test_refuses_while_claimed(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="run-a", last_processed_at=NOW)
        with pytest.raises(RuleBusy):
            update_recurring_rule(
                db, rule_id=rule.id, user_id=USER, now=NOW + timedelta(minutes=1), description="x",
            )

    def test_allowed_once_claim_is_stale(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="crashed", last_processed_at=NOW - timedelta(hours=1))
        update_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW, description="Rent 2026")
        db.commit()
        assert reload_rule(db, rule.id).description == "Rent 2026"

    def test_schedule_change_recomputes_first_due_date(self, db: Session) -> None:
        rule = _create(db)
        update_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW, day_of_month=20)
        db.commit()

        fresh = reload_rule(db, rule.id)
        assert fresh.day_of_month == 20
        assert fresh.next_due_date == date(2026, 3, 20)
        assert "RECURRING_RULE_UPDATED" in audit_actions(db, rule.id)

    def test_switching_frequency_drops_old_anchor(self, db: Session) -> None:
        rule = _create(db)
        update_recurring_rule(
            db, rule_id=rule.id, user_id=USER, now=NOW, frequency="WEEKLY", day_of_week=1,
        )
        db.commit()

        fresh = reload_rule(db, rule.id)
        assert fresh.frequency == FrequencyType.WEEKLY
        assert fresh.day_of_month is None
        assert fresh.next_due_date == date(2026, 3, 16)

    def test_switching_to_monthly_anchors_to_start_day(self, db: Session) -> None:
        rule = _create(db, frequency="WEEKLY", start_date=date(2024, 1, 31))
        update_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW, frequency="MONTHLY")
        db.commit()

        fresh = reload_rule(db, rule.id)
        assert fresh.day_of_month == 31
        assert [o["date"] for o in preview_occurrences(fresh, 4)] == [
            "2024-01-31", "2024-02-29", "2024-03-31", "2024-04-30",
        ]

    def test_clear_resets_optional_fields(self, db: Session) -> None:
        rule = _create(db, end_date=date(2026, 12, 31), total_occurrences=6, notes="streaming")
        update_recurring_rule(
            db, rule_id=rule.id, user_id=USER, now=NOW,
            clear=("end_date", "total_occurrences", "notes"),
        )
        db.commit()

        fresh = reload_rule(db, rule.id)
        assert fresh.end_date is None
        assert fresh.total_occurrences is None
        assert fresh.notes is None

    def test_clearing_monthly_anchor_falls_back_to_start_day(self, db: Session) -> None:
        rule = _create(db, start_date=date(2026, 1, 31), day_of_month=15)
        update_recurring_rule(
            db, rule_id=rule.id, user_id=USER, now=NOW, clear=("day_of_month",),
        )
        db.commit()

        assert reload_rule(db, rule.id).day_of_month == 31

    def test_installment_length_cannot_be_cleared(self, db: Session) -> None:
        rule = _create(db, amount=Decimal("90.00"), is_installment=True, total_occurrences=3)
        with pytest.raises(ValueError, match="installment plan length"):
            update_recurring_rule(
                db, rule_id=rule.id, user_id=USER, now=NOW, clear=("total_occurrences",),
            )

    def test_clear_rejects_unknown_fields(self, db: Session) -> None:
        rule = _create(db)
        with pytest.raises(ValueError, match="Cannot clear"):
            update_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW, clear=("amount",))

    def test_cap_cannot_drop_below_generated(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(occurrences_generated=4, total_occurrences=12)
        with pytest.raises(ValueError, match="already generated"):
            update_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW, total_occurrences=3)

    def test_unknown_rule(self, db: Session) -> None:
        with pytest.raises(RuleNotFound):
            update_recurring_rule(db, rule_id=uuid.uuid4(), user_id=USER, now=NOW)


# ─── Activation & delete ─────────────────────────────────────────────────────


class TestActivationAndDelete:
    def test_deactivate_and_reactivate(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        set_rule_active(db, rule_id=rule.id, user_id=USER, active=False, now=NOW)
        db.commit()
        assert reload_rule(db, rule.id).is_active is False

        set_rule_active(db, rule_id=rule.id, user_id=USER, active=True, now=NOW)
        db.commit()
        assert reload_rule(db, rule.id).is_active is True

    def test_cannot_reactivate_finished_rule(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(is_active=False, total_occurrences=2, occurrences_generated=2)
        with pytest.raises(ValueError):
            set_rule_active(db, rule_id=rule.id, user_id=USER, active=True, now=NOW)

    def test_delete_unused_rule_is_hard(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        rule_id = rule.id

        assert delete_recurring_rule(db, rule_id=rule_id, user_id=USER, now=NOW) == "deleted"
        db.commit()

        with pytest.raises(RuleNotFound):
            get_recurring_rule(db, rule_id)

    def test_delete_rule_with_history_is_soft(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        db.add(
            Transaction(
                user_id=rule.user_id,
                description="Rent",
                amount=Decimal("-100"),
                occurrence_date=TODAY,
                is_recurring_instance=True,
                recurring_rule_id=rule.id,
                occurrence_index=1,
            )
        )
        db.commit()

        assert delete_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW) == "deactivated"
        db.commit()
        assert reload_rule(db, rule.id).is_active is False

    def test_delete_refused_while_claimed(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="run-a", last_processed_at=NOW)
        with pytest.raises(RuleBusy):
            delete_recurring_rule(db, rule_id=rule.id, user_id=USER, now=NOW)


# ─── Queries ─────────────────────────────────────────────────────────────────


class TestQueries:
    def test_get_reports_due_flag(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        due = make_rule()
        later = make_rule(next_due_date=TODAY + timedelta(days=3))

        assert get_recurring_rule(db, due.id, TODAY)["is_due"] is True
        assert get_recurring_rule(db, later.id, TODAY)["is_due"] is False

    def test_list_filters(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        user = uuid.uuid4()
        make_rule(user_id=user)
        make_rule(
            user_id=user,
            is_installment=True,
            total_amount=Decimal("300"),
            total_occurrences=3,
        )
        make_rule()

        assert len(list_recurring_rules(db, user_id=user)) == 2
        assert len(list_recurring_rules(db, user_id=user, is_installment=True)) == 1
        assert len(list_recurring_rules(db)) == 3

    def test_list_due_rules(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        due = make_rule(next_due_date=TODAY - timedelta(days=2))
        make_rule(next_due_date=TODAY + timedelta(days=2))
        make_rule(is_active=False)
        make_rule(next_due_date=TODAY, end_date=TODAY - timedelta(days=1))

        assert [r.id for r in list_due_rules(db, TODAY)] == [due.id]


class TestPreview:
    def test_respects_end_date(
        self, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(day_of_month=15, end_date=date(2026, 5, 20))
        assert [p["date"] for p in preview_occurrences(rule)] == [
            "2026-03-15", "2026-04-15", "2026-05-15",
        ]

    def test_respects_remaining_cap(
        self, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(
            is_installment=True,
            total_amount=Decimal("100.00"),
            total_occurrences=3,
            occurrences_generated=1,
        )
        preview = preview_occurrences(rule)
        assert [p["occurrence_index"] for p in preview] == [2, 3]
        assert [p["amount"] for p in preview] == ["33.33", "33.34"]

    def test_inactive_rule_has_no_preview(
        self, make_rule: Callable[..., RecurringRule],
    ) -> None:
        assert preview_occurrences(make_rule(is_active=False)) == []
