"""
In-process transport.

Single-node emitter for development and tests. Each subscribed channel owns
an asyncio.Queue drained by its own task, so one channel's slow handler never
delays another channel and each channel stays FIFO.
"""

from __future__ import annotations

import asyncio
from typing import Any

from shared.config.logging import get_logger
from shared.utils.exceptions import TransportClosedError
from ..event_schema import EventEnvelope
from .base import EventHandler, TransportAdapter

logger = get_logger(__name__)


class InProcessTransport(TransportAdapter):
    """Transport whose publishers and subscribers share one event loop."""

    def __init__(self, max_queue_size: int = 0) -> None:
        super().__init__()
        self._max_queue_size = max_queue_size
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = {}
        self._drainers: dict[str, asyncio.Task] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        logger.info("In-process transport connected")
        await self._fire(self._on_open, "open")

    async def close(self) -> None:
        if not self._connected:
            return
        self._connected = False
        for channel in list(self._handlers):
            await self.unsubscribe(channel)
        logger.info("In-process transport closed")
        await self._fire(self._on_close, "close")

    async def subscribe(self, channel: str, on_event: EventHandler) -> None:
        self._handlers[channel] = on_event
        if channel not in self._queues:
            queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue_size)
            self._queues[channel] = queue
            self._drainers[channel] = asyncio.create_task(
                self._drain(channel, queue), name=f"inproc-drain:{channel}"
            )
        logger.debug("In-process subscribe", channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        self._handlers.pop(channel, None)
        self._queues.pop(channel, None)
        task = self._drainers.pop(channel, None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug("In-process unsubscribe", channel=channel)

    async def publish(self, channel: str, envelope: EventEnvelope) -> int:
        if not self._connected:
            raise TransportClosedError("in-process transport is not connected")
        queue = self._queues.get(channel)
        if queue is None:
            return 0
        await queue.put(envelope.to_wire())
        return 1

    async def wait_idle(self) -> None:
        """Wait until every queued envelope has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def _drain(self, channel: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            data = await queue.get()
            try:
                await self._dispatch(channel, data)
            finally:
                queue.task_done()
