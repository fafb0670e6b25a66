"""Transient, dismissable user notifications ("toasts").

The list view and bulk importer never raise network failures at the user;
they hand a short message to a Notifier instead.
"""

import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum

import click
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    dismissed: bool = False


_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


class Notifier:
    """Collects notifications in memory.

    Usage::

        notifier = Notifier()
        notifier.error("Could not load letters")
        for n in notifier.active():
            print(n.message)
    """

    def __init__(self) -> None:
        self.history: list[Notification] = []

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self.history.append(notification)
        logger.log(_LOG_LEVELS[level], "Notification [%s]: %s", level.value, message)
        self._deliver(notification)
        return notification

    def info(self, message: str) -> Notification:
        return self.notify(NotificationLevel.INFO, message)

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def warning(self, message: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, message)

    def dismiss(self, notification_id: str) -> bool:
        """Dismiss a notification. Returns False if it was unknown."""
        for n in self.history:
            if n.id == notification_id:
                n.dismissed = True
                return True
        return False

    def active(self) -> list[Notification]:
        return [n for n in self.history if not n.dismissed]

    def _deliver(self, notification: Notification) -> None:
        """Hook for subclasses that show notifications somewhere."""


class EchoNotifier(Notifier):
    """Notifier that prints each notification to the terminal."""

    def _deliver(self, notification: Notification) -> None:
        is_problem = notification.level in (NotificationLevel.WARNING, NotificationLevel.ERROR)
        prefix = "" if notification.level == NotificationLevel.INFO else f"{notification.level.value.upper()}: "
        click.echo(f"{prefix}{notification.message}", err=is_problem)
