"""Tests for processing claims on recurring rules."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, timedelta

from sqlalchemy.orm import Session

from recurring_engine.app.models.recurring import RecurringRule
from recurring_engine.app.services.claims import (
    ClaimedBy,
    ClaimOutcome,
    Unclaimed,
    claim_state,
    release,
    try_claim,
)
from recurring_engine.tests.conftest import NOW, reload_rule

STALE = timedelta(minutes=10)


class TestTryClaim:
    def test_claims_due_unclaimed_rule(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()

        assert try_claim(db, rule.id, "run-a", NOW, stale_after=STALE) == ClaimOutcome.CLAIMED

        fresh = reload_rule(db, rule.id)
        assert fresh.processing_claim == "run-a"
        assert claim_state(fresh, NOW, STALE) == ClaimedBy(token="run-a", since=NOW)

    def test_second_claim_loses(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        assert try_claim(db, rule.id, "run-a", NOW, stale_after=STALE) == ClaimOutcome.CLAIMED

        outcome = try_claim(db, rule.id, "run-b", NOW + timedelta(seconds=1), stale_after=STALE)

        assert outcome == ClaimOutcome.ALREADY_CLAIMED
        assert reload_rule(db, rule.id).processing_claim == "run-a"

    def test_not_due_in_future(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(next_due_date=NOW.date() + timedelta(days=1))
        assert try_claim(db, rule.id, "run-a", NOW) == ClaimOutcome.NOT_DUE
        assert reload_rule(db, rule.id).processing_claim is None

    def test_not_due_when_inactive(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(is_active=False)
        assert try_claim(db, rule.id, "run-a", NOW) == ClaimOutcome.NOT_DUE

    def test_not_due_past_end_date(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(next_due_date=date(2026, 3, 10), end_date=date(2026, 3, 1))
        assert try_claim(db, rule.id, "run-a", NOW) == ClaimOutcome.NOT_DUE

    def test_due_on_end_date(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(next_due_date=date(2026, 3, 10), end_date=date(2026, 3, 10))
        assert try_claim(db, rule.id, "run-a", NOW) == ClaimOutcome.CLAIMED

    def test_stale_claim_is_taken_over(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="crashed-run", last_processed_at=NOW - timedelta(minutes=11))

        assert try_claim(db, rule.id, "run-b", NOW, stale_after=STALE) == ClaimOutcome.CLAIMED
        assert reload_rule(db, rule.id).processing_claim == "run-b"

    def test_live_claim_is_respected(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="busy-run", last_processed_at=NOW - timedelta(minutes=5))

        assert try_claim(db, rule.id, "run-b", NOW, stale_after=STALE) == ClaimOutcome.ALREADY_CLAIMED

    def test_claim_stamped_with_claimed_at(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        taken = NOW + timedelta(minutes=15)

        outcome = try_claim(db, rule.id, "run-a", NOW, stale_after=STALE, claimed_at=taken)

        assert outcome == ClaimOutcome.CLAIMED
        fresh = reload_rule(db, rule.id)
        assert claim_state(fresh, taken + timedelta(minutes=1), STALE) == ClaimedBy(
            token="run-a", since=taken,
        )
        assert (
            try_claim(db, rule.id, "run-b", taken + timedelta(minutes=1), stale_after=STALE)
            == ClaimOutcome.ALREADY_CLAIMED
        )


class TestRelease:
    def test_release_by_holder(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        try_claim(db, rule.id, "run-a", NOW)

        assert release(db, rule.id, "run-a") is True
        assert reload_rule(db, rule.id).processing_claim is None

    def test_release_by_other_token_is_noop(
        self, db: Session, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule()
        try_claim(db, rule.id, "run-a", NOW)

        assert release(db, rule.id, "run-b") is False
        assert reload_rule(db, rule.id).processing_claim == "run-a"


class TestClaimState:
    def test_unclaimed_without_token(
        self, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(last_processed_at=NOW)
        assert claim_state(rule, NOW, STALE) == Unclaimed()

    def test_expired_claim_reads_unclaimed(
        self, make_rule: Callable[..., RecurringRule],
    ) -> None:
        rule = make_rule(processing_claim="old", last_processed_at=NOW - timedelta(minutes=30))
        assert claim_state(rule, NOW, STALE) == Unclaimed()
