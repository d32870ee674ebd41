from datetime import date, datetime, timezone

from bill_status import classify_status, display_status
from clock import days_between, day_in_month, midnight
from models import Bill, BillStatus


def test_classify_due_today_is_due():
    assert classify_status(date(2025, 6, 15), None, date(2025, 6, 15)) == BillStatus.due


def test_classify_ignores_time_of_day():
    now = datetime(2025, 6, 15, 23, 59)
    assert classify_status(datetime(2025, 6, 15, 0, 1), None, now) == BillStatus.due
    assert classify_status(date(2025, 6, 14), None, now) == BillStatus.overdue
    assert classify_status(date(2025, 6, 16), None, now) == BillStatus.upcoming


def test_classify_paid_date_wins_regardless_of_due_date():
    paid = date(2025, 6, 1)
    for due in (date(2025, 1, 1), date(2025, 6, 15), date(2026, 1, 1)):
        assert classify_status(due, paid, date(2025, 6, 15)) == BillStatus.paid


def test_aware_now_uses_local_calendar_day():
    # 23:30 UTC is already the next day in Berlin (UTC+2 in June)
    now = datetime(2025, 6, 14, 23, 30, tzinfo=timezone.utc)
    assert midnight(now) == date(2025, 6, 15)
    assert classify_status(date(2025, 6, 15), None, now) == BillStatus.due


def test_display_status_keeps_paid_sticky():
    bill = Bill(
        due_date=date(2025, 6, 1),
        status=BillStatus.paid,
        paid_date=date(2025, 5, 30),
    )
    assert display_status(bill, date(2025, 7, 1)) == BillStatus.paid


def test_display_status_recomputes_stale_cache():
    bill = Bill(due_date=date(2025, 6, 1), status=BillStatus.upcoming, paid_date=None)
    assert display_status(bill, date(2025, 6, 2)) == BillStatus.overdue


def test_day_arithmetic_helpers():
    assert days_between(date(2025, 3, 1), date(2025, 2, 27)) == 2
    assert days_between(date(2025, 2, 27), date(2025, 3, 1)) == -2
    assert day_in_month(2025, 2, 31) == date(2025, 2, 28)
    assert day_in_month(2024, 2, 30) == date(2024, 2, 29)
