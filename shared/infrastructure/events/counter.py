"""
Connected-User Counter.

Counts live gateway connections. Increments and decrements are keyed by
connection id, so a duplicate connect or a disconnect without a matching
connect never skews the count, and the count never goes negative.

- InMemoryConnectionCounter: one process, mutations serialized by the loop
- RedisConnectionCounter: a Redis set of connection ids, shared by every
  gateway instance (SADD/SREM/SCARD are atomic on the server)
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config.logging import get_logger
from shared.utils.exceptions import TransportError

logger = get_logger(__name__)


class ConnectionCounter(ABC):
    """Count of live connections."""

    @abstractmethod
    async def increment(self, connection_id: str) -> int:
        """Record a connection. Returns the new count."""

    @abstractmethod
    async def decrement(self, connection_id: str) -> int:
        """Forget a connection. Returns the new count."""

    @abstractmethod
    async def value(self) -> int:
        ...


class InMemoryConnectionCounter(ConnectionCounter):
    def __init__(self) -> None:
        self._connections: set[str] = set()

    async def increment(self, connection_id: str) -> int:
        self._connections.add(connection_id)
        return len(self._connections)

    async def decrement(self, connection_id: str) -> int:
        self._connections.discard(connection_id)
        return len(self._connections)

    async def value(self) -> int:
        return len(self._connections)


class RedisConnectionCounter(ConnectionCounter):
    """
    Counter backed by a Redis set.

    Connection ids must be unique across instances (the gateway prefixes
    them with a per-process id).
    """

    def __init__(self, client: redis.Redis, key: str = "realtime:connections") -> None:
        self._client = client
        self._key = key

    async def increment(self, connection_id: str) -> int:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.sadd(self._key, connection_id)
            pipe.scard(self._key)
            _, count = await pipe.execute()
        except RedisError as e:
            raise TransportError(f"connection counter increment failed: {e}") from e
        return int(count)

    async def decrement(self, connection_id: str) -> int:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.srem(self._key, connection_id)
            pipe.scard(self._key)
            _, count = await pipe.execute()
        except RedisError as e:
            raise TransportError(f"connection counter decrement failed: {e}") from e
        return int(count)

    async def value(self) -> int:
        try:
            return int(await self._client.scard(self._key))
        except RedisError as e:
            raise TransportError(f"connection counter read failed: {e}") from e

