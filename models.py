from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clock import utcnow
from database import Base


class BillStatus(str, Enum):
    upcoming = "upcoming"
    due = "due"
    overdue = "overdue"
    paid = "paid"


class ReminderType(str, Enum):
    before = "before"
    on = "on"
    # lead window already entered when the plan was computed
    upcoming = "upcoming"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Utility(Base, TimestampMixin):
    __tablename__ = "utilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    provider: Mapped[str] = mapped_column(String(120), nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(60))
    default_day: Mapped[Optional[int]] = mapped_column(Integer)
    default_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bills: Mapped[list["Bill"]] = relationship("Bill", back_populates="utility")

    __table_args__ = (
        CheckConstraint(
            "default_day IS NULL OR (default_day >= 1 AND default_day <= 31)",
            name="ck_utility_default_day_range",
        ),
        Index("ix_utilities_user", "user_id"),
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    utility_id: Mapped[int] = mapped_column(
        ForeignKey("utilities.id"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # cache of the classifier output; only "paid" is authoritative
    status: Mapped[BillStatus] = mapped_column(
        SAEnum(BillStatus), nullable=False, default=BillStatus.upcoming
    )
    paid_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    utility: Mapped["Utility"] = relationship("Utility", back_populates="bills")
    reminders: Mapped[list["Reminder"]] = relationship(
        "Reminder",
        back_populates="bill",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_bill_amount_positive"),
        CheckConstraint(
            "(status = 'paid') = (paid_date IS NOT NULL)",
            name="ck_bill_paid_date_matches_status",
        ),
        Index("ix_bills_user_due", "user_id", "due_date"),
        Index("ix_bills_utility_due", "utility_id", "due_date"),
    )


class Reminder(Base, TimestampMixin):
    __tablename__ = "reminders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[ReminderType] = mapped_column(SAEnum(ReminderType), nullable=False)
    trigger_date: Mapped[date] = mapped_column(Date, nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    bill: Mapped["Bill"] = relationship("Bill", back_populates="reminders")

    __table_args__ = (
        UniqueConstraint(
            "bill_id", "type", "trigger_date", name="uq_reminder_bill_type_date"
        ),
        Index("ix_reminders_sent_trigger", "sent", "trigger_date"),
        Index("ix_reminders_user_trigger", "user_id", "trigger_date"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "amount_limit_cents >= 0", name="ck_budget_amount_limit_positive"
        ),
        CheckConstraint("start_date < end_date", name="ck_budget_window_order"),
        Index("ix_budgets_user_active", "user_id", "active"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # weak reference, no FK: deleting a budget leaves this orphaned
    budget_id: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
