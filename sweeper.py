import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional

from clock import DateLike, local_now, midnight, utcnow
from models import Reminder
from notifications import NotificationMessage, NotificationSink, render_reminder_text
from repositories import BillRepository, ReminderRepository, UtilityRepository


logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_WORKERS = 4


class DeliveryTimeout(RuntimeError):
    """The sink did not return within the delivery timeout."""


@dataclass(frozen=True)
class SweepResult:
    delivered: int
    failed: int
    skipped: int = 0


class DeliveryDispatcher:
    """Runs notifier calls on a bounded pool, at most one call per reminder.

    A call that outlives its timeout stays registered as in flight until
    it finishes. Later sweeps skip that reminder while it runs and
    collect its outcome afterwards instead of delivering again.
    """

    def __init__(
        self,
        notifier: NotificationSink,
        *,
        timeout_secs: Optional[float] = 10.0,
        max_workers: int = DEFAULT_DELIVERY_WORKERS,
    ) -> None:
        self.notifier = notifier
        self.timeout_secs = timeout_secs
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reminder-delivery"
        )
        self._in_flight: dict[int, Future] = {}
        self._lock = threading.Lock()

    def in_flight(self, reminder_id: int) -> bool:
        with self._lock:
            future = self._in_flight.get(reminder_id)
        return future is not None and not future.done()

    def settle(self, reminder_id: int) -> bool:
        """Collect a finished late delivery; True when it went through."""
        with self._lock:
            future = self._in_flight.get(reminder_id)
            if future is None or not future.done():
                return False
            del self._in_flight[reminder_id]
        return not future.cancelled() and future.exception() is None

    def deliver(self, reminder_id: int, message: NotificationMessage) -> None:
        if not self.timeout_secs:
            self.notifier.deliver(message)
            return
        with self._lock:
            future = self._executor.submit(self.notifier.deliver, message)
            self._in_flight[reminder_id] = future
        try:
            future.result(timeout=self.timeout_secs)
        except FutureTimeout as exc:
            # still queued behind hung calls: drop it and retry next sweep
            if future.cancel():
                self._forget(reminder_id, future)
            raise DeliveryTimeout(
                f"Delivery exceeded {self.timeout_secs}s reminder_id={reminder_id}"
            ) from exc
        except Exception:
            self._forget(reminder_id, future)
            raise
        self._forget(reminder_id, future)

    def _forget(self, reminder_id: int, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(reminder_id) is future:
                del self._in_flight[reminder_id]

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)


class ReminderSweeper:
    """One pass over unsent reminders whose trigger date has been reached.

    Each reminder is delivered and marked sent on its own, so a failing
    delivery only leaves that reminder unsent for the next pass.
    """

    def __init__(
        self,
        reminders: ReminderRepository,
        bills: BillRepository,
        utilities: UtilityRepository,
        notifier: NotificationSink,
        *,
        delivery_timeout_secs: Optional[float] = 10.0,
        dispatcher: Optional[DeliveryDispatcher] = None,
    ) -> None:
        self.reminders = reminders
        self.bills = bills
        self.utilities = utilities
        self.notifier = notifier
        self.dispatcher = dispatcher or DeliveryDispatcher(
            notifier, timeout_secs=delivery_timeout_secs, max_workers=1
        )
        self._owns_dispatcher = dispatcher is None

    def sweep(self, now: Optional[DateLike] = None) -> SweepResult:
        today = midnight(now or local_now())
        due = self.reminders.find_due_unsent(today)
        delivered = 0
        failed = 0
        skipped = 0
        for reminder in due:
            reminder_id = reminder.id
            try:
                if self.dispatcher.in_flight(reminder_id):
                    skipped += 1
                    logger.info(
                        f"reminder_sweep: delivery still running "
                        f"reminder_id={reminder_id}"
                    )
                    continue
                if not self.dispatcher.settle(reminder_id):
                    message = self.build_message(reminder)
                    self.dispatcher.deliver(reminder_id, message)
                self.reminders.mark_sent([reminder_id], utcnow())
                delivered += 1
            except Exception:
                failed += 1
                logger.exception(
                    f"reminder_sweep: delivery failed reminder_id={reminder_id}"
                )
                continue
        return SweepResult(delivered=delivered, failed=failed, skipped=skipped)

    def build_message(self, reminder: Reminder) -> NotificationMessage:
        due_date = None
        utility_name = None
        try:
            bill = self.bills.get_by_id(reminder.bill_id)
            if bill is not None:
                due_date = bill.due_date
                utility = self.utilities.get_by_id(bill.utility_id)
                if utility is not None:
                    utility_name = utility.provider
        except Exception as exc:
            logger.warning(
                f"reminder_sweep: detail lookup failed reminder_id={reminder.id} "
                f"error={exc!r}"
            )
        return NotificationMessage(
            recipient_user_id=reminder.user_id,
            text=render_reminder_text(reminder.type, due_date, utility_name),
        )

    def close(self) -> None:
        if self._owns_dispatcher:
            self.dispatcher.shutdown()
