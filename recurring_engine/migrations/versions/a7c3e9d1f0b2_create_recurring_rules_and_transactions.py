"""Create recurring rules, transactions and audit log tables.

Revision ID: a7c3e9d1f0b2
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "a7c3e9d1f0b2"
down_revision: Union[str, None] = None
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def upgrade() -> None:
    # Enums are created automatically by create_table via sa.Enum()
    op.create_table(
        "recurring_rules",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("total_amount", sa.Numeric(precision=20, scale=4), nullable=True),
        sa.Column(
            "rule_type",
            sa.Enum("EXPENSE", "INCOME", "TRANSFER", name="ruletype"),
            nullable=False,
            server_default="EXPENSE",
        ),
        sa.Column("sub_category_id", sa.Uuid(), nullable=True),
        sa.Column("goal_id", sa.Uuid(), nullable=True),
        sa.Column("money_account_id", sa.Uuid(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum("DAILY", "WEEKLY", "MONTHLY", "YEARLY", name="frequencytype"),
            nullable=False,
        ),
        sa.Column("frequency_interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("total_occurrences", sa.Integer(), nullable=True),
        sa.Column("occurrences_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_installment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_first_occurrence_generated",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_claim", sa.String(64), nullable=True),
        sa.Column("transaction_group_id", sa.String(64), nullable=False),
        sa.Column("external_system_id", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("frequency_interval >= 1", name="ck_recurring_rules_interval_positive"),
        sa.CheckConstraint(
            "occurrences_generated >= 0", name="ck_recurring_rules_occurrences_non_negative",
        ),
        sa.CheckConstraint(
            "day_of_week IS NULL OR (day_of_week BETWEEN 0 AND 6)",
            name="ck_recurring_rules_day_of_week_range",
        ),
        sa.CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_recurring_rules_day_of_month_range",
        ),
    )
    op.create_index("ix_recurring_rules_due", "recurring_rules", ["is_active", "next_due_date"])
    op.create_index("ix_recurring_rules_user", "recurring_rules", ["user_id"])
    op.create_index("ix_recurring_rules_group", "recurring_rules", ["transaction_group_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("occurrence_date", sa.Date(), nullable=False),
        sa.Column("sub_category_id", sa.Uuid(), nullable=True),
        sa.Column("money_account_id", sa.Uuid(), nullable=True),
        sa.Column("goal_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "is_recurring_instance", sa.Boolean(), nullable=False, server_default=sa.false(),
        ),
        sa.Column(
            "recurring_rule_id",
            sa.Uuid(),
            sa.ForeignKey("recurring_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("transaction_group_id", sa.String(64), nullable=True),
        sa.Column("occurrence_index", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "recurring_rule_id", "occurrence_index", name="uq_transactions_rule_occurrence",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "occurrence_date"])
    op.create_index("ix_transactions_group", "transactions", ["transaction_group_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("table_name", sa.String(100), nullable=False),
        sa.Column("record_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("changed_by", sa.Uuid(), nullable=True),
        sa.Column(
            "new_values",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_action", table_name="audit_logs")
    op.drop_index("ix_audit_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_table_record", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_transactions_group", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurring_rules_group", table_name="recurring_rules")
    op.drop_index("ix_recurring_rules_user", table_name="recurring_rules")
    op.drop_index("ix_recurring_rules_due", table_name="recurring_rules")
    op.drop_table("recurring_rules")

    sa.Enum(name="frequencytype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="ruletype").drop(op.get_bind(), checkfirst=True)
