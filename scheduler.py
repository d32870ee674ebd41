import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from notifications import LoggingNotifier, NotificationSink
from repositories import BillRepository, ReminderRepository, UtilityRepository
from sweeper import DeliveryDispatcher, ReminderSweeper, SweepResult


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        notifier: Optional[NotificationSink] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ) -> None:
        settings = get_settings()
        self.settings = settings
        self.notifier = notifier or LoggingNotifier()
        # one pool for all sweeps; at most one delivery per reminder in flight
        self.dispatcher = DeliveryDispatcher(
            self.notifier,
            timeout_secs=settings.delivery_timeout_secs,
            max_workers=settings.delivery_workers,
        )
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_sweep(self, source: str = "manual") -> SweepResult:
        logger.info(f"reminder_sweep: source={source}")
        with session_scope(self.session_factory) as session:
            sweeper = ReminderSweeper(
                ReminderRepository(session),
                BillRepository(session),
                UtilityRepository(session),
                self.notifier,
                dispatcher=self.dispatcher,
            )
            result = sweeper.sweep()
        logger.info(
            f"reminder_sweep: source={source} delivered={result.delivered} "
            f"failed={result.failed} skipped={result.skipped}"
        )
        return result

    def start(self) -> None:
        self.run_sweep("startup")

        trigger = IntervalTrigger(seconds=self.settings.sweep_interval_secs)
        self.scheduler.add_job(
            self.run_sweep,
            trigger,
            args=["interval"],
            id="reminder_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.settings.sweep_interval_secs,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with reminder sweep every "
            f"{self.settings.sweep_interval_secs}s"
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def stop(self) -> None:
        if self.scheduler.running:
            # waits for a sweep that is already underway
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
        self.dispatcher.shutdown()
