from datetime import date
from typing import Optional

from clock import DateLike, midnight
from models import Bill, BillStatus


def classify_status(
    due_date: DateLike, paid_date: Optional[date], now: DateLike
) -> BillStatus:
    if paid_date is not None:
        return BillStatus.paid
    due = midnight(due_date)
    today = midnight(now)
    if due < today:
        return BillStatus.overdue
    if due == today:
        return BillStatus.due
    return BillStatus.upcoming


def display_status(bill: Bill, now: DateLike) -> BillStatus:
    # a stored "paid" never reverts, everything else is recomputed
    if bill.status == BillStatus.paid:
        return BillStatus.paid
    return classify_status(bill.due_date, bill.paid_date, now)
