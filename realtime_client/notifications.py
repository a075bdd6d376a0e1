"""
Client notification center.

Holds the user-visible notifications, newest first. A notification carrying
a tag replaces the still-pending one with the same tag (within the
suppression window) instead of stacking, so bursts like repeated
connection-count updates show a single, latest notification.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from typing import Callable

from shared.config.settings import settings
from shared.infrastructure.events.event_types import NotificationKind
from .callbacks import CallbackRegistry


@dataclass(frozen=True, slots=True)
class Notification:
    id: int
    kind: NotificationKind
    message: str
    link: str | None
    tag: str | None
    created_at: float


class NotificationCenter:
    """
    Args:
        duration: Seconds a notification stays visible.
        suppression_window: Seconds during which a same-tag notification
            replaces the previous one.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        duration: float = settings.notification_duration,
        suppression_window: float = settings.notification_suppression_window,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._duration = duration
        self._window = suppression_window
        self._clock = clock
        self._ids = itertools.count(1)
        self._items: list[Notification] = []
        self._listeners = CallbackRegistry("notifications")

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        """Call `listener` for every new notification. Returns an unsubscribe function."""
        return self._listeners.add(listener)

    def push(
        self,
        kind: NotificationKind,
        message: str,
        link: str | None = None,
        tag: str | None = None,
    ) -> Notification:
        now = self._clock()
        self._expire(now)

        if tag is not None:
            self._items = [
                n for n in self._items
                if not (n.tag == tag and now - n.created_at < self._window)
            ]

        notification = Notification(
            id=next(self._ids),
            kind=NotificationKind(kind),
            message=message,
            link=link,
            tag=tag,
            created_at=now,
        )
        self._items.insert(0, notification)
        self._listeners.fire_sync(notification)
        return notification

    def visible(self) -> list[Notification]:
        """Current notifications, newest first."""
        self._expire(self._clock())
        return list(self._items)

    def dismiss(self, notification_id: int) -> None:
        self._items = [n for n in self._items if n.id != notification_id]

    def clear(self) -> None:
        self._items.clear()

    def _expire(self, now: float) -> None:
        self._items = [n for n in self._items if now - n.created_at < self._duration]
