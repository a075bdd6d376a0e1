"""
Realtime client SDK.

Connects to the gateway, keeps channel subscriptions alive across
reconnects, and reconciles delivered events into the local query cache and
notification list.

Modules:
- transport.py: WebSocket client transport
- subscription.py: Client Subscription Manager (connection state machine)
- reconciliation.py: Reconciliation Engine
- invalidation.py: Event type -> cached queries table
- cache.py: Query cache with refetch scheduling
- notifications.py: Notification center
- callbacks.py: Ordered callback registry
- client.py: RealtimeClient facade
"""

from .cache import CacheEntry, CacheKey, QueryCache
from .callbacks import CallbackRegistry
from .client import RealtimeClient, default_interests
from .invalidation import INVALIDATION_TABLE, keys_for
from .notifications import Notification, NotificationCenter
from .reconciliation import (
    CONNECTION_TAG,
    LIVE_ALERT_EVENTS,
    Preferences,
    ReconciliationEngine,
)
from .subscription import ClientSubscriptionManager, ConnectionState
from .transport import ClientTransport, GatewayClientTransport, is_fatal_close

__all__ = [
    "CacheEntry",
    "CacheKey",
    "QueryCache",
    "CallbackRegistry",
    "RealtimeClient",
    "default_interests",
    "INVALIDATION_TABLE",
    "keys_for",
    "Notification",
    "NotificationCenter",
    "CONNECTION_TAG",
    "LIVE_ALERT_EVENTS",
    "Preferences",
    "ReconciliationEngine",
    "ClientSubscriptionManager",
    "ConnectionState",
    "ClientTransport",
    "GatewayClientTransport",
    "is_fatal_close",
]
