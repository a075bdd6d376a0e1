"""
Transport adapters.

Usage:
    from shared.infrastructure.events.transport import create_transport

    transport = create_transport(settings)
    await transport.connect()
"""

from __future__ import annotations

from shared.config.settings import Settings, settings as default_settings
from shared.utils.retry import create_redis_retry_config
from .base import EventHandler, LifecycleCallback, TransportAdapter
from .memory import InProcessTransport
from .redis import RedisTransport


def create_transport(config: Settings | None = None) -> TransportAdapter:
    """Build the transport selected by `realtime_transport`."""
    config = config or default_settings
    if config.realtime_transport == "redis":
        return RedisTransport(
            redis_url=config.redis_url,
            max_connections=config.redis_pool_max_connections,
            socket_timeout=config.redis_socket_timeout,
            retry_config=create_redis_retry_config(
                initial_delay=config.redis_initial_reconnect_delay,
                max_delay=config.redis_max_reconnect_delay,
            ),
            cleanup_timeout=config.redis_pubsub_cleanup_timeout,
        )
    return InProcessTransport()


__all__ = [
    "EventHandler",
    "LifecycleCallback",
    "TransportAdapter",
    "InProcessTransport",
    "RedisTransport",
    "create_transport",
]
