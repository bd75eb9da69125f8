"""Publish/subscribe channel for ephemeral operator alerts."""

import itertools
import logging
from collections import deque
from typing import Callable

from ..core.config import get_settings
from ..core.types import Notification, Severity

logger = logging.getLogger(__name__)

Subscriber = Callable[[Notification], None]


class NotificationBus:
    """
    Bounded FIFO of notifications.

    Publishing past capacity evicts the oldest entry. Notifications are never
    merged: the same warning published twice shows up twice.
    """

    def __init__(self, capacity: int | None = None):
        self.capacity = capacity or get_settings().notification_capacity
        self._queue: deque[Notification] = deque(maxlen=self.capacity)
        self._ids = itertools.count(1)
        self._subscribers: list[Subscriber] = []

    def publish(
        self,
        title: str,
        message: str,
        severity: Severity = Severity.INFO,
        auto_hide_ms: int | None = None,
    ) -> Notification:
        notification = Notification(
            id=next(self._ids),
            title=title,
            message=message,
            severity=severity,
            auto_hide_ms=auto_hide_ms or 0,
        )
        self._queue.append(notification)
        logger.debug(f"Notification #{notification.id} [{severity.value}] {title}: {message}")

        for subscriber in list(self._subscribers):
            try:
                subscriber(notification)
            except Exception:
                logger.exception(f"Notification subscriber {subscriber!r} failed")
        return notification

    def error(self, title: str, message: str) -> Notification:
        return self.publish(title, message, Severity.DANGER)

    def dismiss(self, notification_id: int) -> bool:
        """Remove a notification. Returns False if it was already gone."""
        for notification in self._queue:
            if notification.id == notification_id:
                self._queue.remove(notification)
                return True
        return False

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a callback for new notifications; returns an unsubscribe function."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def notifications(self) -> list[Notification]:
        """Outstanding notifications, oldest first."""
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)
