from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from models import Bill, Budget, Reminder, Transaction, TransactionType, Utility

# Every write commits on its own: a bill, its reminders and a transaction
# are separate documents and a failure after one write leaves the earlier
# ones in place.


@contextmanager
def _write(session: Session) -> Iterator[Session]:
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


class ReminderRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, reminder_id: int) -> Optional[Reminder]:
        return self.session.get(Reminder, reminder_id)

    def find_by_bill(self, bill_id: int) -> list[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.bill_id == bill_id)
            .order_by(Reminder.trigger_date, Reminder.id)
        )
        return list(self.session.scalars(stmt).all())

    def count_for_bill(self, bill_id: int) -> int:
        stmt = select(func.count(Reminder.id)).where(Reminder.bill_id == bill_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def delete_by_bill(self, bill_id: int) -> int:
        with _write(self.session):
            result = self.session.execute(
                delete(Reminder).where(Reminder.bill_id == bill_id)
            )
        return result.rowcount or 0

    def insert_many(self, reminders: Sequence[Reminder]) -> list[Reminder]:
        if not reminders:
            return []
        with _write(self.session):
            self.session.add_all(reminders)
        return list(reminders)

    def find_due_unsent(self, today: date) -> list[Reminder]:
        stmt = (
            select(Reminder)
            .where(Reminder.sent.is_(False), Reminder.trigger_date <= today)
            .order_by(Reminder.trigger_date, Reminder.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_user(
        self,
        user_id: int,
        *,
        sent: Optional[bool] = None,
        due_on_or_before: Optional[date] = None,
    ) -> list[Reminder]:
        stmt = (
            select(Reminder)
            .options(joinedload(Reminder.bill).joinedload(Bill.utility))
            .where(Reminder.user_id == user_id)
            .order_by(Reminder.trigger_date, Reminder.id)
        )
        if sent is not None:
            stmt = stmt.where(Reminder.sent.is_(sent))
        if due_on_or_before is not None:
            stmt = stmt.where(Reminder.trigger_date <= due_on_or_before)
        return list(self.session.scalars(stmt).all())

    def mark_sent(self, reminder_ids: Iterable[int], sent_at: datetime) -> int:
        ids = list(reminder_ids)
        if not ids:
            return 0
        with _write(self.session):
            result = self.session.execute(
                update(Reminder)
                .where(Reminder.id.in_(ids), Reminder.sent.is_(False))
                .values(sent=True, sent_at=sent_at)
                .execution_options(synchronize_session="fetch")
            )
        return result.rowcount or 0

    def mark_sent_for_bill(self, bill_id: int, sent_at: datetime) -> int:
        with _write(self.session):
            result = self.session.execute(
                update(Reminder)
                .where(Reminder.bill_id == bill_id, Reminder.sent.is_(False))
                .values(sent=True, sent_at=sent_at)
                .execution_options(synchronize_session="fetch")
            )
        return result.rowcount or 0


class BillRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, bill_id: int) -> Optional[Bill]:
        return self.session.get(Bill, bill_id)

    def get_for_user(self, user_id: int) -> list[Bill]:
        stmt = (
            select(Bill)
            .options(joinedload(Bill.utility))
            .where(Bill.user_id == user_id)
            .order_by(Bill.due_date, Bill.id)
        )
        return list(self.session.scalars(stmt).all())

    def get_for_utility(self, utility_id: int) -> list[Bill]:
        stmt = (
            select(Bill)
            .where(Bill.utility_id == utility_id)
            .order_by(Bill.due_date, Bill.id)
        )
        return list(self.session.scalars(stmt).all())

    def get_earliest_for_utility(self, utility_id: int) -> Optional[Bill]:
        stmt = (
            select(Bill)
            .where(Bill.utility_id == utility_id)
            .order_by(Bill.due_date, Bill.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def add(self, bill: Bill) -> Bill:
        with _write(self.session):
            self.session.add(bill)
        self.session.refresh(bill)
        return bill

    def save(self, bill: Bill) -> Bill:
        with _write(self.session):
            self.session.add(bill)
        self.session.refresh(bill)
        return bill

    def delete(self, bill: Bill) -> None:
        # reminders go with the bill via ON DELETE CASCADE; a stale loaded
        # collection would otherwise be flushed as well
        self.session.expire(bill, ["reminders"])
        with _write(self.session):
            self.session.delete(bill)


class UtilityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, utility_id: int) -> Optional[Utility]:
        return self.session.get(Utility, utility_id)

    def list_for_user(self, user_id: int) -> list[Utility]:
        stmt = (
            select(Utility)
            .where(Utility.user_id == user_id)
            .order_by(func.lower(Utility.provider), Utility.id)
        )
        return list(self.session.scalars(stmt).all())

    def add(self, utility: Utility) -> Utility:
        with _write(self.session):
            self.session.add(utility)
        self.session.refresh(utility)
        return utility

    def save(self, utility: Utility) -> Utility:
        with _write(self.session):
            self.session.add(utility)
        self.session.refresh(utility)
        return utility


class BudgetRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, budget_id: int) -> Optional[Budget]:
        return self.session.get(Budget, budget_id)

    def list_for_user(self, user_id: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.start_date.desc(), Budget.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_active_for_user_category_window(
        self, user_id: int, category: str, on_date: date
    ) -> list[Budget]:
        # ordered by id only so repeated lookups agree; overlapping budgets
        # have no product-defined winner
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == user_id,
                Budget.active.is_(True),
                func.lower(Budget.category) == category.strip().lower(),
                Budget.start_date <= on_date,
                Budget.end_date >= on_date,
            )
            .order_by(Budget.id)
        )
        return list(self.session.scalars(stmt).all())

    def expense_total_in_window(
        self, user_id: int, category: str, start: date, end: date
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.expense,
            func.lower(Transaction.category) == category.strip().lower(),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def add(self, budget: Budget) -> Budget:
        with _write(self.session):
            self.session.add(budget)
        self.session.refresh(budget)
        return budget

    def save(self, budget: Budget) -> Budget:
        with _write(self.session):
            self.session.add(budget)
        self.session.refresh(budget)
        return budget

    def delete(self, budget: Budget) -> None:
        with _write(self.session):
            self.session.delete(budget)

    def rollback(self) -> None:
        self.session.rollback()
