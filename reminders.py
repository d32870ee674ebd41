import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from clock import DateLike, days_between, local_now, midnight, shift_days
from errors import ValidationFailed, require_user_id
from models import Bill, BillStatus, Reminder, ReminderType
from repositories import BillRepository, ReminderRepository


logger = logging.getLogger(__name__)

DEFAULT_LEAD_DAYS = 3


@dataclass(frozen=True)
class ReminderSpec:
    type: ReminderType
    trigger_date: date


def plan_reminders(
    due_date: DateLike, now: DateLike, lead_days: int = DEFAULT_LEAD_DAYS
) -> list[ReminderSpec]:
    """Smallest reminder set for a bill given how close ``now`` is to the due date.

    Always returns one or two specs with distinct ``(type, trigger_date)``.
    Inside the lead window the single ``upcoming`` reminder is dated
    ``due - lead_days``, which is already in the past, so it goes out on
    the next sweep.
    """
    if isinstance(lead_days, bool) or not isinstance(lead_days, int):
        raise ValidationFailed("lead_days must be an integer")
    if lead_days < 0:
        raise ValidationFailed("lead_days must be >= 0")

    due = midnight(due_date)
    today = midnight(now)
    diff_days = days_between(due, today)

    if diff_days < 0:
        specs = [ReminderSpec(ReminderType.before, today)]
    elif diff_days == 0:
        specs = [ReminderSpec(ReminderType.on, today)]
    elif diff_days <= lead_days:
        specs = [ReminderSpec(ReminderType.upcoming, shift_days(due, -lead_days))]
    else:
        specs = [
            ReminderSpec(ReminderType.before, shift_days(due, -lead_days)),
            ReminderSpec(ReminderType.on, due),
        ]

    unique: list[ReminderSpec] = []
    for spec in specs:
        if spec not in unique:
            unique.append(spec)
    return unique


class ReminderReconciler:
    def __init__(self, reminders: ReminderRepository, bills: BillRepository) -> None:
        self.reminders = reminders
        self.bills = bills

    def reconcile(
        self,
        user_id: int,
        bill: Bill,
        lead_days: int = DEFAULT_LEAD_DAYS,
        now: Optional[DateLike] = None,
    ) -> list[Reminder]:
        """Replace every stored reminder of ``bill`` with its current plan.

        Delete and insert are separate writes. If the insert fails the bill
        keeps no reminders and the error propagates; the next
        ``sync_for_user`` fills it back in.
        """
        user_id = require_user_id(user_id)
        if bill is None or bill.id is None:
            raise ValidationFailed("Bill is required")
        if bill.due_date is None:
            raise ValidationFailed("Bill has no due date")
        if bill.user_id != user_id:
            raise ValidationFailed("Bill does not belong to this user")

        now = now or local_now()
        plan = plan_reminders(bill.due_date, now, lead_days)

        removed = self.reminders.delete_by_bill(bill.id)
        created = self.reminders.insert_many(
            [
                Reminder(
                    user_id=user_id,
                    bill_id=bill.id,
                    type=spec.type,
                    trigger_date=spec.trigger_date,
                    sent=False,
                )
                for spec in plan
            ]
        )
        logger.info(
            f"reminder_reconcile: bill_id={bill.id} removed={removed} "
            f"created={len(created)}"
        )
        return created

    def sync_for_user(
        self,
        user_id: int,
        lead_days: int = DEFAULT_LEAD_DAYS,
        now: Optional[DateLike] = None,
    ) -> int:
        """Give reminders to unpaid bills that have none; others are left alone."""
        user_id = require_user_id(user_id)
        now = now or local_now()
        reconciled = 0
        for bill in self.bills.get_for_user(user_id):
            try:
                if bill.status == BillStatus.paid:
                    continue
                if self.reminders.count_for_bill(bill.id) > 0:
                    continue
                self.reconcile(user_id, bill, lead_days, now)
                reconciled += 1
            except Exception:
                logger.exception(f"reminder_sync: failed for bill_id={bill.id}")
                continue
        logger.info(f"reminder_sync: user_id={user_id} reconciled={reconciled}")
        return reconciled
