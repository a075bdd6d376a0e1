"""
Client Reconciliation Engine.

Turns delivered events into local state changes:

- invalidates the cached queries listed for the event type in
  INVALIDATION_TABLE (idempotent, so duplicate deliveries are harmless)
- surfaces a notification unless the event is silent
- plays the new-order alert for live orders when the user enabled sound

After a reconnect the subscription manager calls `sweep()`, which marks every
cached query stale: events missed while disconnected are never replayed, the
refetch brings the client to the same end state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.events.event_schema import EventEnvelope
from shared.infrastructure.events.event_types import EventType, NotificationKind
from shared.utils.exceptions import UndeclaredEventTypeError
from .cache import QueryCache
from .invalidation import keys_for
from .notifications import Notification, NotificationCenter

logger = get_logger(__name__)

LIVE_ALERT_EVENTS = frozenset({EventType.ORDER_ADD, EventType.POS_ADD})
CONNECTION_TAG = "connection"


@dataclass
class Preferences:
    """User preferences that gate client side effects."""

    sound_enabled: bool = False


class ReconciliationEngine:
    """
    Args:
        cache: Query cache to invalidate.
        notifications: Where user-visible notifications go.
        preferences: Current user preferences (read on every event).
        alert_player: Plays the new-order sound; may raise when audio is
            unavailable.
        live_link_prefixes: Link prefixes that identify live orders.
    """

    def __init__(
        self,
        cache: QueryCache,
        notifications: NotificationCenter,
        preferences: Preferences | None = None,
        alert_player: Callable[[], Any] | None = None,
        live_link_prefixes: tuple[str, ...] = settings.live_link_prefix_list,
    ) -> None:
        self.cache = cache
        self.notifications = notifications
        self.preferences = preferences or Preferences()
        self._alert_player = alert_player
        self._live_link_prefixes = live_link_prefixes
        self.sweep_count = 0

    def on_event(self, payload: dict[str, Any] | EventEnvelope) -> EventEnvelope | None:
        """
        Apply one delivered event.

        Returns:
            The decoded envelope, or None when the payload was ignored.
        """
        try:
            envelope = (
                payload if isinstance(payload, EventEnvelope)
                else EventEnvelope.from_wire(payload)
            )
        except UndeclaredEventTypeError as e:
            # Servers may add types before clients know them
            logger.warning("Ignoring unknown event type", event_type=str(e.event_type))
            return None
        except ValueError as e:
            logger.warning("Ignoring malformed event", error=str(e))
            return None

        self.cache.invalidate_many(keys_for(envelope.type))

        if not envelope.skip_notify:
            self.notifications.push(
                envelope.effective_notification_kind,
                envelope.effective_message,
                link=envelope.link,
                tag=envelope.dedup_tag,
            )

        if self._is_live_order(envelope):
            self._play_alert()

        logger.debug(
            "Event reconciled",
            event_type=envelope.type.value,
            skip_notify=envelope.skip_notify,
        )
        return envelope

    def sweep(self) -> None:
        """Invalidate every cached query."""
        self.sweep_count += 1
        self.cache.invalidate_all()
        logger.info("Cache sweep after reconnect", sweep=self.sweep_count)

    # -------------------------------------------------------------------------
    # Connection notices
    # -------------------------------------------------------------------------

    def connection_lost(self) -> Notification:
        return self.notifications.push(
            NotificationKind.INFO, "Connection lost", tag=CONNECTION_TAG,
        )

    def connection_restored(self) -> Notification:
        return self.notifications.push(
            NotificationKind.SUCCESS, "Connection restored", tag=CONNECTION_TAG,
        )

    def report_error(self, message: str) -> Notification:
        """Surface a fatal condition (authentication failure, denied channel)."""
        return self.notifications.push(NotificationKind.ERROR, message, tag=CONNECTION_TAG)

    # -------------------------------------------------------------------------
    # Live-order alert
    # -------------------------------------------------------------------------

    def _is_live_order(self, envelope: EventEnvelope) -> bool:
        if envelope.type not in LIVE_ALERT_EVENTS or not envelope.link:
            return False
        return any(envelope.link.startswith(prefix) for prefix in self._live_link_prefixes)

    def _play_alert(self) -> None:
        if not self.preferences.sound_enabled or self._alert_player is None:
            return
        try:
            self._alert_player()
        except Exception as e:
            # Audio may be unavailable in this environment
            logger.debug("Alert playback failed", error=str(e))
