import threading
from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from models import Bill, BillStatus, Reminder, ReminderType, Utility
from notifications import NotificationMessage, render_reminder_text
from repositories import BillRepository, ReminderRepository, UtilityRepository
from sweeper import DeliveryDispatcher, DeliveryTimeout, ReminderSweeper

TODAY = date(2025, 6, 15)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def deliver(self, message):
        self.messages.append(message)


class FailingNotifier(RecordingNotifier):
    def __init__(self, fail_texts):
        super().__init__()
        self.fail_texts = fail_texts

    def deliver(self, message):
        if any(text in message.text for text in self.fail_texts):
            raise ConnectionError("push gateway unavailable")
        super().deliver(message)


class SlowNotifier:
    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def deliver(self, message):
        self.calls += 1
        self.release.wait(5)


def _seed(session, provider="City Power", due_date=date(2025, 6, 18)):
    utility = Utility(user_id=1, provider=provider, active=True)
    session.add(utility)
    session.flush()
    bill = Bill(
        user_id=1,
        utility_id=utility.id,
        due_date=due_date,
        amount_cents=5_000,
        status=BillStatus.upcoming,
    )
    session.add(bill)
    session.commit()
    return bill


def _reminder(session, bill, trigger_date, reminder_type=ReminderType.before):
    reminder = Reminder(
        user_id=bill.user_id,
        bill_id=bill.id,
        type=reminder_type,
        trigger_date=trigger_date,
        sent=False,
    )
    session.add(reminder)
    session.commit()
    return reminder


def _sweeper(session, notifier, **kwargs):
    return ReminderSweeper(
        ReminderRepository(session),
        BillRepository(session),
        UtilityRepository(session),
        notifier,
        **kwargs,
    )


def test_due_reminder_delivered_once(session):
    bill = _seed(session)
    reminder = _reminder(session, bill, date(2025, 6, 15))
    notifier = RecordingNotifier()

    result = _sweeper(session, notifier).sweep(now=TODAY)
    assert (result.delivered, result.failed) == (1, 0)
    assert [m.recipient_user_id for m in notifier.messages] == [1]
    assert notifier.messages[0].text == (
        "Upcoming bill due soon: City Power due June 18, 2025"
    )
    session.refresh(reminder)
    assert reminder.sent is True
    assert reminder.sent_at is not None

    again = _sweeper(session, notifier).sweep(now=TODAY)
    assert again.delivered == 0
    assert len(notifier.messages) == 1


def test_future_reminders_are_left_alone(session):
    bill = _seed(session)
    future = _reminder(session, bill, date(2025, 6, 16))
    notifier = RecordingNotifier()

    assert _sweeper(session, notifier).sweep(now=TODAY).delivered == 0
    session.refresh(future)
    assert future.sent is False
    assert notifier.messages == []


def test_oldest_trigger_date_goes_first(session):
    water = _seed(session, provider="Water Co")
    power = _seed(session, provider="City Power")
    _reminder(session, water, date(2025, 6, 14))
    _reminder(session, power, date(2025, 6, 10))
    notifier = RecordingNotifier()

    _sweeper(session, notifier).sweep(now=TODAY)
    assert ["City Power" in m.text for m in notifier.messages] == [True, False]


def test_one_failed_delivery_does_not_block_the_rest(session, caplog):
    broken = _seed(session, provider="Broken Gas")
    fine = _seed(session, provider="City Power")
    broken_reminder = _reminder(session, broken, date(2025, 6, 10))
    fine_reminder = _reminder(session, fine, date(2025, 6, 11))
    notifier = FailingNotifier(["Broken Gas"])

    result = _sweeper(session, notifier).sweep(now=TODAY)
    assert (result.delivered, result.failed) == (1, 1)
    session.refresh(broken_reminder)
    session.refresh(fine_reminder)
    assert broken_reminder.sent is False
    assert fine_reminder.sent is True
    assert "delivery failed" in caplog.text


def test_hung_delivery_times_out_and_stays_unsent(session):
    bill = _seed(session)
    reminder = _reminder(session, bill, date(2025, 6, 15))
    notifier = SlowNotifier()
    sweeper = _sweeper(session, notifier, delivery_timeout_secs=0.05)
    try:
        result = sweeper.sweep(now=TODAY)
    finally:
        notifier.release.set()
        sweeper.close()
    assert (result.delivered, result.failed) == (0, 1)
    session.refresh(reminder)
    assert reminder.sent is False


def test_lookup_failure_falls_back_to_generic_name(session):
    class BrokenUtilities(UtilityRepository):
        def get_by_id(self, utility_id):
            raise SQLAlchemyError("utilities unavailable")

    bill = _seed(session)
    _reminder(session, bill, date(2025, 6, 15), ReminderType.on)
    notifier = RecordingNotifier()
    sweeper = ReminderSweeper(
        ReminderRepository(session),
        BillRepository(session),
        BrokenUtilities(session),
        notifier,
    )
    assert sweeper.sweep(now=TODAY).delivered == 1
    assert notifier.messages[0].text == "Bill is due today: Utility due June 18, 2025"


def test_render_reminder_text_without_details():
    assert render_reminder_text(ReminderType.upcoming, None, None) == (
        "Upcoming bill due soon: Utility due unknown"
    )


def test_dispatcher_timeout_keeps_call_in_flight_until_it_finishes():
    notifier = SlowNotifier()
    dispatcher = DeliveryDispatcher(notifier, timeout_secs=0.05, max_workers=1)
    try:
        with pytest.raises(DeliveryTimeout):
            dispatcher.deliver(7, NotificationMessage(recipient_user_id=1, text="x"))
        assert dispatcher.in_flight(7)
        assert dispatcher.settle(7) is False
    finally:
        notifier.release.set()
        dispatcher.shutdown(wait=True)
    assert not dispatcher.in_flight(7)
    assert dispatcher.settle(7) is True
    assert dispatcher.settle(7) is False


def test_hung_delivery_is_not_started_again_by_later_sweeps(session):
    bill = _seed(session)
    reminder = _reminder(session, bill, date(2025, 6, 15))
    notifier = SlowNotifier()
    dispatcher = DeliveryDispatcher(notifier, timeout_secs=0.05, max_workers=2)
    try:
        first = _sweeper(session, notifier, dispatcher=dispatcher).sweep(now=TODAY)
        second = _sweeper(session, notifier, dispatcher=dispatcher).sweep(now=TODAY)
    finally:
        notifier.release.set()
        dispatcher.shutdown(wait=True)

    assert (first.delivered, first.failed, first.skipped) == (0, 1, 0)
    assert (second.delivered, second.failed, second.skipped) == (0, 0, 1)
    assert notifier.calls == 1

    # the late call went through, so the next sweep only records it
    third = _sweeper(session, notifier, dispatcher=dispatcher).sweep(now=TODAY)
    assert third.delivered == 1
    assert notifier.calls == 1
    session.refresh(reminder)
    assert reminder.sent is True
