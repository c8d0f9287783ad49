"""
Notification sinks for registration events.
"""
import logging
from typing import List

from .schemas import Notification, Severity

# Set up logging
logger = logging.getLogger(__name__)

LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.WARNING,
}


class LoggingNotifier:
    """Writes notifications to the log only."""

    def __call__(self, notification: Notification) -> None:
        logger.log(
            LOG_LEVELS[notification.severity],
            f"{notification.title}: {notification.description}"
        )


class NotificationCollector(LoggingNotifier):
    """Keeps notifications until the API hands them to the front end."""

    def __init__(self):
        self.pending: List[Notification] = []

    def __call__(self, notification: Notification) -> None:
        super().__call__(notification)
        self.pending.append(notification)

    def drain(self) -> List[Notification]:
        notifications, self.pending = self.pending, []
        return notifications
