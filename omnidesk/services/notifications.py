from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class ClientNotification:
    id: str
    title: str
    body: str
    is_read: bool = False
    created_at: datetime | None = None


class NotificationStore:
    """Newest-first list of in-app notifications pushed over the realtime bridge."""

    def __init__(self) -> None:
        self._notifications: tuple[ClientNotification, ...] = ()
        self._listeners: list[Callable[[tuple[ClientNotification, ...]], None]] = []

    @property
    def notifications(self) -> tuple[ClientNotification, ...]:
        return self._notifications

    @property
    def unread_count(self) -> int:
        return sum(1 for notification in self._notifications if not notification.is_read)

    def _set(self, notifications: tuple[ClientNotification, ...]) -> None:
        self._notifications = notifications
        for listener in list(self._listeners):
            listener(notifications)

    def add(self, notification: ClientNotification) -> None:
        """Prepend a notification. Redelivered ids are ignored so read state survives."""
        if any(existing.id == notification.id for existing in self._notifications):
            return
        if notification.created_at is None:
            notification = replace(notification, created_at=datetime.now(UTC))
        self._set((notification, *self._notifications))

    def mark_read(self, notification_id: str) -> None:
        self._set(
            tuple(
                replace(notification, is_read=True) if notification.id == notification_id else notification
                for notification in self._notifications
            )
        )

    def mark_all_read(self) -> None:
        self._set(tuple(replace(notification, is_read=True) for notification in self._notifications))

    def clear(self) -> None:
        self._set(())

    def subscribe(self, listener: Callable[[tuple[ClientNotification, ...]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
