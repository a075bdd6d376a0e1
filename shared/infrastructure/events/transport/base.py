"""
Transport Adapter interface.

A transport carries wire envelopes between publishers and subscribers. The
layers above (publisher, gateway) only see this interface; which concrete
transport runs is a deployment decision made by `create_transport`.

Delivery contract:
- at most one handler per channel per adapter instance
- per-channel FIFO for a single subscriber; no cross-channel ordering
- at-least-once while connected, nothing is buffered while disconnected
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

from shared.config.logging import get_logger
from ..event_schema import EventEnvelope

logger = get_logger(__name__)

EventHandler = Callable[[str, dict[str, Any]], Union[Awaitable[None], None]]
"""Called with (channel wire name, envelope wire dict)."""

LifecycleCallback = Callable[[], Union[Awaitable[None], None]]


class TransportAdapter(ABC):
    """Abstract pub/sub transport."""

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}
        self._on_open: dict[int, LifecycleCallback] = {}
        self._on_close: dict[int, LifecycleCallback] = {}
        self._next_handle = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport. Fires on_open callbacks once connected."""

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and stop every background task."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    # -------------------------------------------------------------------------
    # Pub/sub
    # -------------------------------------------------------------------------

    @abstractmethod
    async def subscribe(self, channel: str, on_event: EventHandler) -> None:
        """
        Register the handler for a channel (wire name).

        Subscribing an already subscribed channel replaces its handler.
        """

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        """Remove the channel's handler. Unknown channels are ignored."""

    @abstractmethod
    async def publish(self, channel: str, envelope: EventEnvelope) -> int:
        """
        Write one envelope to a channel.

        Returns:
            Number of subscribers that received it (as reported by the backend).

        Raises:
            TransportError: If the write failed.
        """

    @property
    def subscribed_channels(self) -> frozenset[str]:
        return frozenset(self._handlers)

    # -------------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------------

    def on_open(self, callback: LifecycleCallback) -> Callable[[], None]:
        """Register a callback fired after each (re)connect. Returns an unsubscribe function."""
        return self._register(self._on_open, callback)

    def on_close(self, callback: LifecycleCallback) -> Callable[[], None]:
        """Register a callback fired when the connection drops. Returns an unsubscribe function."""
        return self._register(self._on_close, callback)

    def _register(
        self,
        registry: dict[int, LifecycleCallback],
        callback: LifecycleCallback,
    ) -> Callable[[], None]:
        handle = self._next_handle
        self._next_handle += 1
        registry[handle] = callback

        def unsubscribe() -> None:
            registry.pop(handle, None)

        return unsubscribe

    async def _fire(self, registry: dict[int, LifecycleCallback], hook: str) -> None:
        for callback in list(registry.values()):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Transport lifecycle callback failed",
                    hook=hook,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _dispatch(self, channel: str, data: dict[str, Any]) -> None:
        """Run the channel's handler; handler errors are logged, never raised."""
        handler = self._handlers.get(channel)
        if handler is None:
            return
        try:
            result = handler(channel, data)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Event handler failed",
                channel=channel,
                event_type=data.get("type") if isinstance(data, dict) else None,
                error=str(e),
                error_type=type(e).__name__,
            )
