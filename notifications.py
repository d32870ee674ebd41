import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from models import ReminderType


logger = logging.getLogger(__name__)

GENERIC_UTILITY_NAME = "Utility"

_LABELS = {
    ReminderType.on: "Bill is due today",
    ReminderType.before: "Upcoming bill due soon",
    ReminderType.upcoming: "Upcoming bill due soon",
}


@dataclass(frozen=True)
class NotificationMessage:
    recipient_user_id: int
    text: str


class NotificationSink(Protocol):
    def deliver(self, message: NotificationMessage) -> None: ...


class LoggingNotifier:
    """Delivers by writing to the application log."""

    def deliver(self, message: NotificationMessage) -> None:
        logger.info(f"notify: user_id={message.recipient_user_id} {message.text}")


def render_reminder_text(
    reminder_type: ReminderType,
    due_date: Optional[date],
    utility_name: Optional[str],
) -> str:
    label = _LABELS.get(ReminderType(reminder_type), "Bill reminder")
    name = utility_name or GENERIC_UTILITY_NAME
    due = due_date.strftime("%B %d, %Y") if due_date else "unknown"
    return f"{label}: {name} due {due}"
