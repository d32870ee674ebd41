from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from bill_status import classify_status, display_status
from budget_link import BudgetLinker
from clock import DateLike, day_in_month, local_now, midnight, shift_days, utcnow
from config import get_settings
from errors import NotFound, ValidationFailed, require_user_id
from models import (
    Bill,
    BillStatus,
    Budget,
    Reminder,
    Transaction,
    Utility,
)
from notifications import GENERIC_UTILITY_NAME
from periods import Period
from reminders import ReminderReconciler
from repositories import (
    BillRepository,
    BudgetRepository,
    ReminderRepository,
    UtilityRepository,
)
from schemas import (
    BillIn,
    BillUpdate,
    BudgetIn,
    ReminderIn,
    TransactionIn,
    UtilityIn,
)


logger = logging.getLogger(__name__)


def _lead_days(value: Optional[int]) -> int:
    if value is None:
        return get_settings().reminder_lead_days
    if value < 0:
        raise ValidationFailed("lead_days must be >= 0")
    return value


class _BillWriter:
    """Shared bill creation for manual bills and a utility's default schedule."""

    def __init__(self, session: Session, user_id: int, lead_days: int) -> None:
        self.session = session
        self.user_id = user_id
        self.lead_days = lead_days
        self.bills = BillRepository(session)
        self.reminders = ReminderRepository(session)
        self.reconciler = ReminderReconciler(self.reminders, self.bills)

    def add_bill(
        self,
        utility: Utility,
        due_date: date,
        amount_cents: int,
        notes: Optional[str],
        now: DateLike,
    ) -> Bill:
        bill = Bill(
            user_id=self.user_id,
            utility_id=utility.id,
            due_date=due_date,
            amount_cents=amount_cents,
            status=classify_status(due_date, None, now),
            paid_date=None,
            notes=notes,
        )
        self.bills.add(bill)
        self.reconcile(bill, now)
        return bill

    def reconcile(self, bill: Bill, now: DateLike) -> None:
        # the bill write is already committed; a reminder failure is left
        # for the next sync to repair
        try:
            self.reconciler.reconcile(self.user_id, bill, self.lead_days, now)
        except Exception:
            logger.exception(f"bill_reminders: reconcile failed bill_id={bill.id}")


class UtilityService:
    def __init__(
        self, session: Session, user_id: int, lead_days: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.utilities = UtilityRepository(session)
        self.writer = _BillWriter(session, self.user_id, _lead_days(lead_days))

    def get(self, utility_id: int) -> Utility:
        utility = self.utilities.get_by_id(utility_id)
        if not utility or utility.user_id != self.user_id:
            raise NotFound("Utility not found")
        return utility

    def list_all(self) -> list[Utility]:
        return self.utilities.list_for_user(self.user_id)

    def create(
        self, data: UtilityIn, now: Optional[DateLike] = None
    ) -> tuple[Utility, Optional[Bill]]:
        """Create a utility and, when it has a default day, this month's bill."""
        now = now or local_now()
        utility = Utility(
            user_id=self.user_id,
            provider=data.provider,
            account_number=data.account_number,
            default_day=data.default_day,
            default_amount_cents=data.default_amount_cents,
            notes=data.notes,
            active=data.active,
        )
        self.utilities.add(utility)

        auto_bill = None
        if utility.default_day:
            today = midnight(now)
            due = day_in_month(today.year, today.month, utility.default_day)
            auto_bill = self.writer.add_bill(
                utility, due, utility.default_amount_cents, None, now
            )
        return utility, auto_bill

    def set_active(self, utility_id: int, active: bool) -> Utility:
        utility = self.get(utility_id)
        utility.active = active
        return self.utilities.save(utility)


@dataclass(frozen=True)
class BillView:
    bill: Bill
    status: BillStatus
    can_delete: bool


class BillService:
    def __init__(
        self, session: Session, user_id: int, lead_days: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.lead_days = _lead_days(lead_days)
        self.bills = BillRepository(session)
        self.reminders = ReminderRepository(session)
        self.utilities = UtilityRepository(session)
        self.writer = _BillWriter(session, self.user_id, self.lead_days)

    def get(self, bill_id: int) -> Bill:
        bill = self.bills.get_by_id(bill_id)
        if not bill or bill.user_id != self.user_id:
            raise NotFound("Bill not found")
        return bill

    def _active_utility(self, utility_id: int) -> Utility:
        utility = self.utilities.get_by_id(utility_id)
        if not utility or utility.user_id != self.user_id:
            raise NotFound("Utility not found")
        if not utility.active:
            raise ValidationFailed("Cannot add a bill to an inactive utility")
        return utility

    def create(self, data: BillIn, now: Optional[DateLike] = None) -> Bill:
        utility = self._active_utility(data.utility_id)
        return self.writer.add_bill(
            utility, data.due_date, data.amount_cents, data.notes, now or local_now()
        )

    def create_from_utility(
        self,
        utility_id: int,
        *,
        amount_cents: Optional[int] = None,
        notes: Optional[str] = None,
        due_date: Optional[date] = None,
        now: Optional[DateLike] = None,
    ) -> Bill:
        now = now or local_now()
        utility = self._active_utility(utility_id)
        if due_date is None:
            if not utility.default_day:
                raise ValidationFailed("Utility has no default day")
            today = midnight(now)
            due_date = day_in_month(today.year, today.month, utility.default_day)
        if amount_cents is None:
            amount_cents = utility.default_amount_cents
        if amount_cents < 0:
            raise ValidationFailed("Amount must be >= 0")
        return self.writer.add_bill(utility, due_date, amount_cents, notes, now)

    def update(
        self, bill_id: int, data: BillUpdate, now: Optional[DateLike] = None
    ) -> Bill:
        now = now or local_now()
        bill = self.get(bill_id)

        if data.paid_date is not None:
            status, paid_date = BillStatus.paid, data.paid_date
        elif data.status == BillStatus.paid:
            status, paid_date = BillStatus.paid, bill.paid_date or midnight(now)
        elif data.status is None and bill.status == BillStatus.paid:
            status, paid_date = BillStatus.paid, bill.paid_date or midnight(now)
        else:
            status, paid_date = classify_status(data.due_date, None, now), None

        bill.due_date = data.due_date
        bill.amount_cents = data.amount_cents
        bill.notes = data.notes
        bill.status = status
        bill.paid_date = paid_date
        self.bills.save(bill)

        self.writer.reconcile(bill, now)
        if bill.status == BillStatus.paid:
            self._silence_reminders(bill)
        return bill

    def mark_paid(self, bill_id: int, now: Optional[DateLike] = None) -> Bill:
        bill = self.get(bill_id)
        bill.status = BillStatus.paid
        bill.paid_date = midnight(now or local_now())
        self.bills.save(bill)
        self._silence_reminders(bill)
        return bill

    def _silence_reminders(self, bill: Bill) -> None:
        try:
            self.reminders.mark_sent_for_bill(bill.id, utcnow())
        except Exception:
            logger.exception(f"bill_reminders: mark sent failed bill_id={bill.id}")

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        earliest = self.bills.get_earliest_for_utility(bill.utility_id)
        if earliest is not None and earliest.id == bill.id:
            raise ValidationFailed("Cannot delete the initial bill for this utility")
        self.reminders.delete_by_bill(bill.id)
        self.bills.delete(bill)

    def list_all(
        self, *, utility_id: Optional[int] = None, now: Optional[DateLike] = None
    ) -> list[BillView]:
        now = now or local_now()
        if utility_id is not None:
            bills = [
                b
                for b in self.bills.get_for_utility(utility_id)
                if b.user_id == self.user_id
            ]
        else:
            bills = self.bills.get_for_user(self.user_id)

        return self._views(bills, now)

    def _views(self, bills: list[Bill], now: DateLike) -> list[BillView]:
        # the earliest bill of a utility is the one delete refuses
        earliest_ids: dict[int, Optional[int]] = {}
        views: list[BillView] = []
        for bill in bills:
            if bill.utility_id not in earliest_ids:
                earliest = self.bills.get_earliest_for_utility(bill.utility_id)
                earliest_ids[bill.utility_id] = earliest.id if earliest else None
            views.append(
                BillView(
                    bill=bill,
                    status=display_status(bill, now),
                    can_delete=earliest_ids[bill.utility_id] != bill.id,
                )
            )
        return views

    def history(
        self,
        *,
        period: Optional[Period] = None,
        status: Optional[BillStatus] = None,
        search: Optional[str] = None,
        now: Optional[DateLike] = None,
    ) -> list[BillView]:
        """Past and current bills, newest due date first."""
        now = now or local_now()
        stmt = (
            select(Bill)
            .join(Utility, Bill.utility_id == Utility.id)
            .options(joinedload(Bill.utility))
            .where(Bill.user_id == self.user_id)
            .order_by(Bill.due_date.desc(), Bill.id.desc())
        )
        if period is not None:
            stmt = stmt.where(
                Bill.due_date >= period.start, Bill.due_date <= period.end
            )
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Utility.provider).like(pattern),
                    func.lower(Utility.account_number).like(pattern),
                    func.lower(Bill.notes).like(pattern),
                )
            )
        views = self._views(list(self.session.scalars(stmt).unique().all()), now)
        if status is not None:
            views = [v for v in views if v.status == BillStatus(status)]
        return views

    def status_summary(self, now: Optional[DateLike] = None) -> dict[str, object]:
        now = now or local_now()
        today = midnight(now)
        window = Period(
            "next_days", shift_days(today, 1), shift_days(today, self.lead_days)
        )
        counts = {status.value: 0 for status in BillStatus}
        overdue: list[Bill] = []
        upcoming: list[Bill] = []
        bills = self.bills.get_for_user(self.user_id)
        for bill in bills:
            current = display_status(bill, now)
            counts[current.value] += 1
            if current == BillStatus.overdue:
                overdue.append(bill)
            elif current == BillStatus.upcoming and window.contains(bill.due_date):
                upcoming.append(bill)
        return {
            **counts,
            "total": len(bills),
            "overdue_bills": sorted(overdue, key=lambda b: b.due_date, reverse=True),
            "upcoming_bills": upcoming,
        }


@dataclass(frozen=True)
class ReminderView:
    reminder: Reminder
    utility_name: str
    amount_cents: int
    due_date: Optional[date]


class ReminderService:
    def __init__(
        self, session: Session, user_id: int, lead_days: Optional[int] = None
    ) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.lead_days = _lead_days(lead_days)
        self.reminders = ReminderRepository(session)
        self.bills = BillRepository(session)
        self.reconciler = ReminderReconciler(self.reminders, self.bills)

    def _view(self, reminder: Reminder) -> ReminderView:
        bill = reminder.bill
        utility = bill.utility if bill else None
        return ReminderView(
            reminder=reminder,
            utility_name=utility.provider if utility else GENERIC_UTILITY_NAME,
            amount_cents=bill.amount_cents if bill else 0,
            due_date=bill.due_date if bill else None,
        )

    def create_manual(
        self, data: ReminderIn, now: Optional[DateLike] = None
    ) -> Reminder:
        bill = self.bills.get_by_id(data.bill_id)
        if not bill or bill.user_id != self.user_id:
            raise NotFound("Bill not found")
        trigger = midnight(data.trigger_date or now or local_now())
        for existing in self.reminders.find_by_bill(bill.id):
            if existing.type == data.type and existing.trigger_date == trigger:
                raise ValidationFailed("Reminder already exists for this bill")
        reminder = Reminder(
            user_id=self.user_id,
            bill_id=bill.id,
            type=data.type,
            trigger_date=trigger,
            sent=False,
        )
        self.reminders.insert_many([reminder])
        return reminder

    def sync(self, now: Optional[DateLike] = None) -> int:
        return self.reconciler.sync_for_user(self.user_id, self.lead_days, now)

    def list_for_user(self, *, sent: Optional[bool] = None) -> list[ReminderView]:
        return [
            self._view(r) for r in self.reminders.find_by_user(self.user_id, sent=sent)
        ]

    def due_for_user(self, now: Optional[DateLike] = None) -> list[ReminderView]:
        """Unsent reminders that have come due, topping up bills without any first."""
        now = now or local_now()
        self.sync(now)
        due = self.reminders.find_by_user(
            self.user_id, sent=False, due_on_or_before=midnight(now)
        )
        return [self._view(r) for r in due]

    def acknowledge(self, reminder_id: int) -> None:
        reminder = self.reminders.get(reminder_id)
        if not reminder or reminder.user_id != self.user_id:
            raise NotFound("Reminder not found")
        self.reminders.mark_sent([reminder.id], utcnow())


@dataclass(frozen=True)
class BudgetSummary:
    budget: Budget
    amount_used_cents: int
    amount_remaining_cents: int
    percentage_used: float


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.budgets = BudgetRepository(session)

    def get(self, budget_id: int) -> Budget:
        budget = self.budgets.get_by_id(budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def list_all(self) -> list[Budget]:
        return self.budgets.list_for_user(self.user_id)

    def create(self, data: BudgetIn) -> Budget:
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            amount_limit_cents=data.amount_limit_cents,
            start_date=data.start_date,
            end_date=data.end_date,
            active=data.active,
        )
        return self.budgets.add(budget)

    def toggle_active(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        budget.active = not budget.active
        return self.budgets.save(budget)

    def delete(self, budget_id: int) -> None:
        # linked transactions keep their budget_id; it is a weak reference
        self.budgets.delete(self.get(budget_id))

    def summary(self, budget: Budget) -> BudgetSummary:
        used = self.budgets.expense_total_in_window(
            self.user_id, budget.category, budget.start_date, budget.end_date
        )
        limit = budget.amount_limit_cents
        percent = (used / limit * 100) if limit > 0 else 0.0
        return BudgetSummary(
            budget=budget,
            amount_used_cents=used,
            amount_remaining_cents=limit - used,
            percentage_used=min(percent, 100.0),
        )

    def summaries(self) -> list[BudgetSummary]:
        return [self.summary(b) for b in self.list_all()]


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = require_user_id(user_id)
        self.linker = BudgetLinker(BudgetRepository(session))

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFound("Transaction not found")
        return txn

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: TransactionIn) -> Transaction:
        budget_id = self.linker.link(self.user_id, data.category, data.date)
        txn = Transaction(
            user_id=self.user_id,
            title=data.title,
            amount_cents=data.amount_cents,
            category=data.category,
            type=data.type,
            date=data.date,
            notes=data.notes,
            budget_id=budget_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        relink = txn.category != data.category or txn.date != data.date
        if relink:
            # a miss clears the link instead of keeping a stale one
            budget_id = self.linker.link(self.user_id, data.category, data.date)
            txn.budget_id = budget_id

        txn.title = data.title
        txn.amount_cents = data.amount_cents
        txn.category = data.category
        txn.type = data.type
        txn.date = data.date
        txn.notes = data.notes
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
