"""Recurring transaction rules.

A RecurringRule stores a repeating financial event (amount, kind, target
account / sub-category / goal) together with its schedule (frequency,
interval, optional anchors, next due date, optional end conditions).  The
sweep materializes one Transaction per due occurrence and advances
`next_due_date`; `processing_claim` is the row-level claim that keeps two
overlapping sweeps from generating the same occurrence twice.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recurring_engine.app.core.database import Base

if TYPE_CHECKING:
    from recurring_engine.app.models.transaction import Transaction


# ─── Enums ───────────────────────────────────────────────────────────────────


class FrequencyType(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class RuleType(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"
    TRANSFER = "TRANSFER"


# ─── Models ──────────────────────────────────────────────────────────────────


class RecurringRule(Base):
    """A user-defined recurring financial event."""

    __tablename__ = "recurring_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Owning user, sub-category, goal and account live in collaborator schemas
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    total_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=20, scale=4), nullable=True,
    )
    rule_type: Mapped[RuleType] = mapped_column(
        Enum(RuleType, name="ruletype"), nullable=False, default=RuleType.EXPENSE,
    )
    sub_category_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    goal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    money_account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[FrequencyType] = mapped_column(
        Enum(FrequencyType, name="frequencytype"), nullable=False,
    )
    frequency_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    total_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)
    occurrences_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_installment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_first_occurrence_generated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    last_processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_claim: Mapped[str | None] = mapped_column(String(64), nullable=True)

    transaction_group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_system_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    generated_transactions: Mapped[list[Transaction]] = relationship(
        back_populates="recurring_rule", passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("frequency_interval >= 1", name="ck_recurring_rules_interval_positive"),
        CheckConstraint(
            "occurrences_generated >= 0", name="ck_recurring_rules_occurrences_non_negative",
        ),
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week BETWEEN 0 AND 6)",
            name="ck_recurring_rules_day_of_week_range",
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_recurring_rules_day_of_month_range",
        ),
        Index("ix_recurring_rules_due", "is_active", "next_due_date"),
        Index("ix_recurring_rules_user", "user_id"),
        Index("ix_recurring_rules_group", "transaction_group_id"),
    )

    @property
    def cap_reached(self) -> bool:
        return (
            self.total_occurrences is not None
            and self.occurrences_generated >= self.total_occurrences
        )
