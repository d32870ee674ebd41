from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from errors import ValidationFailed
from models import Bill, BillStatus, Reminder, ReminderType, Utility
from reminders import ReminderReconciler
from repositories import BillRepository, ReminderRepository

TODAY = date(2025, 6, 1)


def _seed_bill(session, due_date: date, user_id: int = 1) -> Bill:
    utility = Utility(user_id=user_id, provider="City Power", active=True)
    session.add(utility)
    session.flush()
    bill = Bill(
        user_id=user_id,
        utility_id=utility.id,
        due_date=due_date,
        amount_cents=8_000,
        status=BillStatus.upcoming,
    )
    session.add(bill)
    session.commit()
    return bill


def _pairs(reminders) -> set[tuple[ReminderType, date]]:
    return {(r.type, r.trigger_date) for r in reminders}


def _reconciler(session) -> ReminderReconciler:
    return ReminderReconciler(ReminderRepository(session), BillRepository(session))


def test_reconcile_stores_plan_as_unsent_reminders(session):
    bill = _seed_bill(session, TODAY + timedelta(days=10))
    created = _reconciler(session).reconcile(1, bill, 3, now=TODAY)

    stored = ReminderRepository(session).find_by_bill(bill.id)
    assert _pairs(stored) == _pairs(created) == {
        (ReminderType.before, date(2025, 6, 8)),
        (ReminderType.on, date(2025, 6, 11)),
    }
    assert all(not r.sent and r.user_id == 1 for r in stored)


def test_reconcile_twice_is_idempotent(session):
    bill = _seed_bill(session, TODAY + timedelta(days=10))
    reconciler = _reconciler(session)
    reconciler.reconcile(1, bill, 3, now=TODAY)
    first = _pairs(ReminderRepository(session).find_by_bill(bill.id))
    reconciler.reconcile(1, bill, 3, now=TODAY)
    second = ReminderRepository(session).find_by_bill(bill.id)
    assert _pairs(second) == first
    assert len(second) == 2


def test_reconcile_after_manual_wipe_reproduces_plan(session):
    bill = _seed_bill(session, TODAY + timedelta(days=2))
    reconciler = _reconciler(session)
    repo = ReminderRepository(session)
    original = _pairs(reconciler.reconcile(1, bill, 3, now=TODAY))
    repo.delete_by_bill(bill.id)
    assert repo.find_by_bill(bill.id) == []
    reconciler.reconcile(1, bill, 3, now=TODAY)
    assert _pairs(repo.find_by_bill(bill.id)) == original


def test_due_date_change_replaces_sent_reminders_too(session):
    bill = _seed_bill(session, TODAY + timedelta(days=10))
    reconciler = _reconciler(session)
    repo = ReminderRepository(session)
    reconciler.reconcile(1, bill, 3, now=TODAY)
    repo.mark_sent(
        [r.id for r in repo.find_by_bill(bill.id)], datetime(2025, 6, 1, 9, 0)
    )

    bill.due_date = TODAY + timedelta(days=20)
    session.commit()
    reconciler.reconcile(1, bill, 3, now=TODAY)

    stored = repo.find_by_bill(bill.id)
    assert _pairs(stored) == {
        (ReminderType.before, date(2025, 6, 18)),
        (ReminderType.on, date(2025, 6, 21)),
    }
    assert not any(r.sent for r in stored)


def test_insert_failure_leaves_no_reminders_and_propagates(session):
    class FailingInsert(ReminderRepository):
        def insert_many(self, reminders):
            raise SQLAlchemyError("disk full")

    bill = _seed_bill(session, TODAY + timedelta(days=10))
    _reconciler(session).reconcile(1, bill, 3, now=TODAY)

    broken = ReminderReconciler(FailingInsert(session), BillRepository(session))
    with pytest.raises(SQLAlchemyError):
        broken.reconcile(1, bill, 3, now=TODAY)
    assert ReminderRepository(session).find_by_bill(bill.id) == []


@pytest.mark.parametrize("user_id", [0, -4, None, "1", True])
def test_reconcile_rejects_bad_user_id(session, user_id):
    bill = _seed_bill(session, TODAY)
    with pytest.raises(ValidationFailed):
        _reconciler(session).reconcile(user_id, bill, 3, now=TODAY)
    assert ReminderRepository(session).find_by_bill(bill.id) == []


def test_reconcile_rejects_missing_or_foreign_bill(session):
    reconciler = _reconciler(session)
    with pytest.raises(ValidationFailed):
        reconciler.reconcile(1, None, 3, now=TODAY)
    other = _seed_bill(session, TODAY, user_id=2)
    with pytest.raises(ValidationFailed):
        reconciler.reconcile(1, other, 3, now=TODAY)


def test_sync_only_tops_up_bills_without_reminders(session):
    covered = _seed_bill(session, TODAY + timedelta(days=10))
    bare = _seed_bill(session, TODAY - timedelta(days=5))
    repo = ReminderRepository(session)
    session.add(
        Reminder(
            user_id=1,
            bill_id=covered.id,
            type=ReminderType.on,
            trigger_date=covered.due_date,
            sent=True,
        )
    )
    session.commit()

    reconciled = _reconciler(session).sync_for_user(1, 3, now=TODAY)

    assert reconciled == 1
    assert _pairs(repo.find_by_bill(covered.id)) == {
        (ReminderType.on, covered.due_date)
    }
    assert _pairs(repo.find_by_bill(bare.id)) == {(ReminderType.before, TODAY)}


def test_sync_keeps_going_when_one_bill_fails(session, caplog):
    first = _seed_bill(session, TODAY + timedelta(days=10))
    second = _seed_bill(session, TODAY + timedelta(days=10))

    class FlakyReconciler(ReminderReconciler):
        def reconcile(self, user_id, bill, lead_days=3, now=None):
            if bill.id == first.id:
                raise RuntimeError("boom")
            return super().reconcile(user_id, bill, lead_days, now)

    flaky = FlakyReconciler(ReminderRepository(session), BillRepository(session))
    assert flaky.sync_for_user(1, 3, now=TODAY) == 1

    repo = ReminderRepository(session)
    assert repo.find_by_bill(first.id) == []
    assert len(repo.find_by_bill(second.id)) == 2
    assert "reminder_sync: failed" in caplog.text


def test_sync_ignores_other_users_bills(session):
    _seed_bill(session, TODAY, user_id=2)
    assert _reconciler(session).sync_for_user(1, 3, now=TODAY) == 0


def test_sync_leaves_paid_bills_without_reminders(session):
    bill = _seed_bill(session, TODAY + timedelta(days=2))
    bill.status = BillStatus.paid
    bill.paid_date = TODAY
    session.commit()

    assert _reconciler(session).sync_for_user(1, 3, now=TODAY) == 0
    assert ReminderRepository(session).find_by_bill(bill.id) == []
