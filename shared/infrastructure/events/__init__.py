"""
Event System for Real-time Notifications.

This package provides:
- Event taxonomy and envelope schema
- Channel naming, routing and subscription authorization
- Event publishing with circuit breaker and a push side channel
- Pluggable transports (Redis pub/sub, in-process)
- Connected-user counter
- Domain-specific event publishers

Modules:
- event_types.py: Closed EventType taxonomy and per-type defaults
- event_schema.py: EventEnvelope and MutationContext
- channels.py: Logical channels and wire names
- routing.py: Channel resolution and subscription authorization
- circuit_breaker.py: Circuit breaker guarding transport writes
- publisher.py: Publisher (best effort, push side channel)
- push.py: Push notification providers
- transport/: Transport adapters
- counter.py: Connected-user counter
- frames.py: Gateway frame protocol
- domain_publishers.py: High-level domain event publishers
- services.py: Per-process service container
"""

# =============================================================================
# Event Types
# =============================================================================

from .event_types import (
    Audience,
    EventSpec,
    EventType,
    EVENT_SPECS,
    MAX_EVENT_SIZE,
    NotificationKind,
    event_types_for,
    get_event_spec,
)

# =============================================================================
# Event Schema
# =============================================================================

from .event_schema import EventEnvelope, MutationContext, coerce_event_type

# =============================================================================
# Channels and Routing
# =============================================================================

from .channels import (
    ADMIN_CHANNEL_NAME,
    ChannelKind,
    LogicalChannel,
    PUBLIC_CHANNEL_NAME,
    STAFF_CHANNEL_NAME,
    USER_CHANNEL_PREFIX,
    channel_user,
)
from .routing import (
    CHANNEL_MIN_ROLE,
    ChannelRouter,
    authorize_subscription,
    require_subscription,
    resolve_channels_for_event,
)

# =============================================================================
# Publishing
# =============================================================================

from .circuit_breaker import CircuitState, EventCircuitBreaker
from .push import BeamsPushNotifier, LoggingPushNotifier, PushNotifier, create_push_notifier
from .publisher import Publisher

# =============================================================================
# Transports and Counter
# =============================================================================

from .transport import (
    InProcessTransport,
    RedisTransport,
    TransportAdapter,
    create_transport,
)
from .counter import ConnectionCounter, InMemoryConnectionCounter, RedisConnectionCounter

# =============================================================================
# Domain Publishers
# =============================================================================

from .domain_publishers import (
    DepositStatus,
    publish_catalog_event,
    publish_connection_count,
    publish_deposit_event,
    publish_menu_reservation_opened,
    publish_order_event,
    publish_pos_event,
    publish_user_authority_update,
    publish_user_event,
)

from .services import RealtimeServices

__all__ = [
    # Event types
    "Audience",
    "EventSpec",
    "EventType",
    "EVENT_SPECS",
    "MAX_EVENT_SIZE",
    "NotificationKind",
    "event_types_for",
    "get_event_spec",
    # Schema
    "EventEnvelope",
    "MutationContext",
    "coerce_event_type",
    # Channels
    "ADMIN_CHANNEL_NAME",
    "ChannelKind",
    "LogicalChannel",
    "PUBLIC_CHANNEL_NAME",
    "STAFF_CHANNEL_NAME",
    "USER_CHANNEL_PREFIX",
    "channel_user",
    # Routing
    "CHANNEL_MIN_ROLE",
    "ChannelRouter",
    "authorize_subscription",
    "require_subscription",
    "resolve_channels_for_event",
    # Publishing
    "CircuitState",
    "EventCircuitBreaker",
    "BeamsPushNotifier",
    "LoggingPushNotifier",
    "PushNotifier",
    "create_push_notifier",
    "Publisher",
    # Transports
    "InProcessTransport",
    "RedisTransport",
    "TransportAdapter",
    "create_transport",
    # Counter
    "ConnectionCounter",
    "InMemoryConnectionCounter",
    "RedisConnectionCounter",
    # Domain publishers
    "DepositStatus",
    "publish_catalog_event",
    "publish_connection_count",
    "publish_deposit_event",
    "publish_menu_reservation_opened",
    "publish_order_event",
    "publish_pos_event",
    "publish_user_authority_update",
    "publish_user_event",
    # Services
    "RealtimeServices",
]
