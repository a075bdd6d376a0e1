"""
Realtime service container.

Holds the transport, router, publisher and connection counter of one process.
Built and started at application startup (FastAPI lifespan, CLI command) and
closed at shutdown, instead of module-level singletons.

Usage:
    services = RealtimeServices.build(settings)
    await services.start()
    ...
    await services.close()
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.logging import get_logger
from shared.config.settings import Settings, settings as default_settings
from .circuit_breaker import EventCircuitBreaker
from .counter import ConnectionCounter, InMemoryConnectionCounter, RedisConnectionCounter
from .publisher import Publisher
from .push import PushNotifier, create_push_notifier
from .routing import ChannelRouter
from .transport import RedisTransport, TransportAdapter, create_transport

logger = get_logger(__name__)


@dataclass
class RealtimeServices:
    config: Settings
    transport: TransportAdapter
    router: ChannelRouter
    publisher: Publisher
    counter: ConnectionCounter

    @classmethod
    def build(
        cls,
        config: Settings | None = None,
        transport: TransportAdapter | None = None,
        push_notifier: PushNotifier | None = None,
    ) -> "RealtimeServices":
        config = config or default_settings
        transport = transport or create_transport(config)
        router = ChannelRouter()
        publisher = Publisher(
            transport=transport,
            router=router,
            push_notifier=push_notifier or create_push_notifier(config),
            circuit_breaker=EventCircuitBreaker(
                failure_threshold=config.publish_failure_threshold,
                recovery_timeout=config.publish_recovery_timeout,
            ),
            max_event_size=config.max_event_size,
        )
        # The Redis counter needs the connected client, it is swapped in by start()
        return cls(
            config=config,
            transport=transport,
            router=router,
            publisher=publisher,
            counter=InMemoryConnectionCounter(),
        )

    async def start(self) -> None:
        await self.transport.connect()
        if isinstance(self.transport, RedisTransport):
            self.counter = RedisConnectionCounter(
                self.transport.client,
                key=self.config.redis_connection_set_key,
            )
        logger.info(
            "Realtime services started",
            transport=type(self.transport).__name__,
            counter=type(self.counter).__name__,
        )

    async def close(self) -> None:
        await self.publisher.close()
        await self.transport.close()
        logger.info("Realtime services closed")
