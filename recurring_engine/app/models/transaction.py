"""Transactions materialized from recurring rules.

Each row is one occurrence of a rule.  `(recurring_rule_id, occurrence_index)`
is unique: it is the key a later run uses to recognise an occurrence that was
already written, so it is never generated twice.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recurring_engine.app.core.database import Base

if TYPE_CHECKING:
    from recurring_engine.app.models.recurring import RecurringRule


class Transaction(Base):
    """An immutable transaction produced by one rule occurrence."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    sub_category_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    money_account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    goal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_recurring_instance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_rule_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("recurring_rules.id", ondelete="SET NULL"), nullable=True,
    )
    transaction_group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occurrence_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )

    recurring_rule: Mapped[RecurringRule | None] = relationship(
        back_populates="generated_transactions",
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_rule_id", "occurrence_index", name="uq_transactions_rule_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "occurrence_date"),
        Index("ix_transactions_group", "transaction_group_id"),
    )

    @property
    def is_goal_contribution(self) -> bool:
        return self.goal_id is not None
