"""
Redis pub/sub transport.

Multi-instance transport: every gateway instance subscribes to the channels
its local sockets need, and any process can publish. Publishing goes through
a pooled redis.asyncio client; receiving runs in one reader task over a
dedicated pub/sub connection.

The reader only decodes and enqueues. Each subscribed channel owns a queue
drained by its own task, so a slow handler on one channel never holds back
another channel, and each channel stays FIFO.

On a pub/sub error the reader fires on_close, reconnects with exponential
backoff and jitter until it succeeds or the transport is closed,
re-subscribes every channel and fires on_open. Events published while the
connection was down are lost; clients recover through their reconnect sweep.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.config.logging import get_logger
from shared.utils.exceptions import TransportClosedError, TransportError
from shared.utils.retry import RetryConfig, calculate_delay_with_jitter, create_redis_retry_config
from ..event_schema import EventEnvelope
from .base import EventHandler, TransportAdapter

logger = get_logger(__name__)

# Reader poll interval; bounds how fast close() is noticed
_READ_TIMEOUT = 1.0

# Errors that mean the pub/sub connection is gone
_CONNECTION_ERRORS = (RedisError, OSError)


class RedisTransport(TransportAdapter):
    """Transport over Redis pub/sub."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        max_connections: int = 50,
        socket_timeout: float = 5.0,
        retry_config: RetryConfig | None = None,
        cleanup_timeout: float = 5.0,
        client: redis.Redis | None = None,
        max_queue_size: int = 1000,
    ) -> None:
        super().__init__()
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._retry_config = retry_config or create_redis_retry_config()
        self._cleanup_timeout = cleanup_timeout
        self._client = client
        self._owns_client = client is None
        self._max_queue_size = max_queue_size
        self._pubsub: Any = None
        self._reader_task: asyncio.Task | None = None
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = {}
        self._drainers: dict[str, asyncio.Task] = {}
        self._connected = False
        self._closing = False
        self._reconnect_count = 0
        self._dropped = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def client(self) -> redis.Redis:
        """The pooled client, also used by the Redis connection counter."""
        if self._client is None:
            raise TransportClosedError("redis transport is not connected", transient=True)
        return self._client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        if self._connected:
            return
        self._closing = False
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                max_connections=self._max_connections,
                decode_responses=True,
                socket_connect_timeout=self._socket_timeout,
                socket_timeout=self._socket_timeout,
                health_check_interval=30,
            )
        try:
            await self._client.ping()
            await self._open_pubsub()
        except _CONNECTION_ERRORS as e:
            raise TransportClosedError(f"redis connect failed: {e}") from e

        self._connected = True
        self._reader_task = asyncio.create_task(self._reader_loop(), name="redis-transport-reader")
        logger.info(
            "Redis transport connected",
            max_connections=self._max_connections,
            timeout=self._socket_timeout,
        )
        await self._fire(self._on_open, "open")

    async def close(self) -> None:
        self._closing = True
        was_connected = self._connected
        self._connected = False

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        for channel in list(self._drainers):
            await self._stop_drainer(channel)

        await self._close_pubsub()

        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("Error closing redis client", error=str(e))
            self._client = None

        logger.info(
            "Redis transport closed",
            reconnects=self._reconnect_count,
            dropped=self._dropped,
        )
        if was_connected:
            await self._fire(self._on_close, "close")

    # -------------------------------------------------------------------------
    # Pub/sub
    # -------------------------------------------------------------------------

    async def subscribe(self, channel: str, on_event: EventHandler) -> None:
        is_new = channel not in self._handlers
        self._handlers[channel] = on_event
        if channel not in self._queues:
            queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue_size)
            self._queues[channel] = queue
            self._drainers[channel] = asyncio.create_task(
                self._drain(channel, queue), name=f"redis-drain:{channel}"
            )
        if is_new and self._pubsub is not None and self._connected:
            try:
                await self._pubsub.subscribe(channel)
            except _CONNECTION_ERRORS as e:
                # The reader re-subscribes every handler after reconnecting
                logger.warning("Redis subscribe deferred", channel=channel, error=str(e))
        logger.debug("Redis subscribe", channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        if self._handlers.pop(channel, None) is None:
            return
        await self._stop_drainer(channel)
        if self._pubsub is not None and self._connected:
            try:
                await self._pubsub.unsubscribe(channel)
            except _CONNECTION_ERRORS as e:
                logger.warning("Redis unsubscribe failed", channel=channel, error=str(e))
        logger.debug("Redis unsubscribe", channel=channel)

    async def publish(self, channel: str, envelope: EventEnvelope) -> int:
        """Single PUBLISH, no retry."""
        if self._client is None:
            raise TransportClosedError("redis transport is not connected")
        try:
            return int(await self._client.publish(channel, envelope.to_json()))
        except RedisError as e:
            raise TransportError(f"redis publish to {channel} failed: {e}") from e

    async def wait_idle(self) -> None:
        """Wait until every received envelope has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()

    # -------------------------------------------------------------------------
    # Reader
    # -------------------------------------------------------------------------

    async def _open_pubsub(self) -> None:
        self._pubsub = self.client.pubsub()
        if self._handlers:
            await self._pubsub.subscribe(*self._handlers)

    async def _close_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await asyncio.wait_for(pubsub.aclose(), timeout=self._cleanup_timeout)
        except asyncio.TimeoutError:
            logger.warning("Pubsub close timed out", timeout=self._cleanup_timeout)
        except _CONNECTION_ERRORS as e:
            logger.warning("Error during pubsub cleanup", error=str(e))

    async def _reader_loop(self) -> None:
        while not self._closing:
            try:
                if not self._handlers:
                    await asyncio.sleep(_READ_TIMEOUT / 10)
                    continue

                msg = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=_READ_TIMEOUT
                )
                if msg is None or msg.get("type") != "message":
                    continue
                self._handle_message(msg)

            except RedisTimeoutError:
                continue

            except _CONNECTION_ERRORS as e:
                logger.warning(
                    "Redis pubsub connection lost",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._connected = False
                await self._fire(self._on_close, "close")
                await self._reconnect()

    def _handle_message(self, msg: dict[str, Any]) -> None:
        channel = msg.get("channel")
        raw = msg.get("data")
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning("Dropping malformed redis message", channel=channel, error=str(e))
            return
        if not isinstance(data, dict):
            logger.warning("Dropping non-object redis message", channel=channel)
            return
        queue = self._queues.get(channel)
        if queue is None:
            return
        try:
            queue.put_nowait(data)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "Channel queue full, dropping event",
                channel=channel,
                event_type=data.get("type"),
                maxsize=self._max_queue_size,
            )

    async def _drain(self, channel: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            data = await queue.get()
            try:
                await self._dispatch(channel, data)
            finally:
                queue.task_done()

    async def _stop_drainer(self, channel: str) -> None:
        self._queues.pop(channel, None)
        task = self._drainers.pop(channel, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reconnect(self) -> None:
        attempt = 0
        while not self._closing:
            delay = calculate_delay_with_jitter(attempt, self._retry_config)
            logger.info(
                "Reconnecting redis pubsub",
                attempt=attempt + 1,
                delay_with_jitter=round(delay, 2),
            )
            await asyncio.sleep(delay)
            await self._close_pubsub()
            try:
                await self._open_pubsub()
            except _CONNECTION_ERRORS as e:
                attempt += 1
                logger.warning(
                    "Redis reconnect failed",
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            self._connected = True
            self._reconnect_count += 1
            logger.info(
                "Redis pubsub reconnected",
                attempts=attempt + 1,
                channels=len(self._handlers),
            )
            await self._fire(self._on_open, "open")
            return
