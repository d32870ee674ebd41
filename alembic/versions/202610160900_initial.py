"""utilities, bills, reminders, budgets, transactions

Revision ID: 202610160900
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610160900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "utilities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("provider", sa.String(length=120), nullable=False),
        sa.Column("account_number", sa.String(length=60)),
        sa.Column("default_day", sa.Integer()),
        sa.Column(
            "default_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "default_day IS NULL OR (default_day >= 1 AND default_day <= 31)",
            name="ck_utility_default_day_range",
        ),
    )
    op.create_index("ix_utilities_user", "utilities", ["user_id"])

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "utility_id", sa.Integer(), sa.ForeignKey("utilities.id"), nullable=False
        ),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("upcoming", "due", "overdue", "paid", name="billstatus"),
            nullable=False,
            server_default="upcoming",
        ),
        sa.Column("paid_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint(
            "(status = 'paid') = (paid_date IS NOT NULL)",
            name="ck_bill_paid_date_matches_status",
        ),
    )
    op.create_index("ix_bills_user_due", "bills", ["user_id", "due_date"])
    op.create_index("ix_bills_utility_due", "bills", ["utility_id", "due_date"])

    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "bill_id",
            sa.Integer(),
            sa.ForeignKey("bills.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "type",
            sa.Enum("before", "on", "upcoming", name="remindertype"),
            nullable=False,
        ),
        sa.Column("trigger_date", sa.Date(), nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "bill_id", "type", "trigger_date", name="uq_reminder_bill_type_date"
        ),
    )
    op.create_index(
        "ix_reminders_sent_trigger", "reminders", ["sent", "trigger_date"]
    )
    op.create_index(
        "ix_reminders_user_trigger", "reminders", ["user_id", "trigger_date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_limit_cents", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_limit_cents >= 0", name="ck_budget_amount_limit_positive"
        ),
        sa.CheckConstraint("start_date < end_date", name="ck_budget_window_order"),
    )
    op.create_index("ix_budgets_user_active", "budgets", ["user_id", "active"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        # no FK: budget deletion orphans the link
        sa.Column("budget_id", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category", "date"],
    )


def downgrade() -> None:
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budgets_user_active", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_reminders_user_trigger", table_name="reminders")
    op.drop_index("ix_reminders_sent_trigger", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_bills_utility_due", table_name="bills")
    op.drop_index("ix_bills_user_due", table_name="bills")
    op.drop_table("bills")
    op.drop_index("ix_utilities_user", table_name="utilities")
    op.drop_table("utilities")
