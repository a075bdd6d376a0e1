"""
Client Subscription Manager.

Keeps one gateway connection alive for the lifetime of a session and keeps
the declared channel interests subscribed on it.

States:

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED -> CONNECTING ...
    any state -> CLOSING (close() only)

- CONNECTING: open the socket, re-subscribe every declared interest and wait
  for the acknowledgements (bounded by `subscribe_timeout`)
- CONNECTED: on-open callbacks fire in registration order; after a
  re-connect, exactly one full cache sweep runs because events sent during
  the gap are lost
- DISCONNECTED: on-close callbacks fire; transient closures only produce a
  "Connection lost" notice, fatal ones (authentication failure) go to the
  error handler
- there is no terminal state: after every failure the manager backs off
  (exponential with jitter) and reconnects until `close()` is called
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable

from shared.config.logging import realtime_client_logger as logger
from shared.config.settings import settings
from shared.infrastructure.events.channels import LogicalChannel
from shared.infrastructure.events.frames import (
    FrameKind,
    ping_frame,
    subscribe_frame,
    unsubscribe_frame,
)
from shared.utils.exceptions import SubscriptionDeniedError, TransportClosedError
from shared.utils.retry import RetryConfig, calculate_delay_with_jitter, create_client_retry_config
from .callbacks import CallbackRegistry
from .reconciliation import ReconciliationEngine
from .transport import ClientTransport

ErrorHandler = Callable[[Exception], Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class ClientSubscriptionManager:
    """
    Args:
        transport: Frame-level gateway connection.
        engine: Receives events and runs the reconnect sweep.
        retry_config: Reconnect backoff.
        subscribe_timeout: Seconds to wait for all subscribe acknowledgements.
        ping_interval: Seconds between keepalive pings while connected.
        error_handler: Receives fatal errors; defaults to an error notification.
    """

    def __init__(
        self,
        transport: ClientTransport,
        engine: ReconciliationEngine,
        retry_config: RetryConfig | None = None,
        subscribe_timeout: float = settings.ws_subscribe_timeout,
        ping_interval: float = 30.0,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._retry_config = retry_config or create_client_retry_config(
            initial_delay=settings.client_reconnect_initial_delay,
            max_delay=settings.client_reconnect_max_delay,
        )
        self._subscribe_timeout = subscribe_timeout
        self._ping_interval = ping_interval
        self._error_handler = error_handler

        self._state = ConnectionState.DISCONNECTED
        self._interests: set[str] = set()
        self._pending: dict[str, asyncio.Future] = {}
        self._on_open = CallbackRegistry("on_socket_open")
        self._on_close = CallbackRegistry("on_socket_close")

        self._run_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._drop_task: asyncio.Task | None = None
        self._wake = asyncio.Event()
        self._connected_event = asyncio.Event()
        self._has_connected = False
        self._closing = False
        self.connect_count = 0

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def interests(self) -> frozenset[str]:
        return frozenset(self._interests)

    def add_on_open_callback(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Fires after every successful (re)connect. Returns an unsubscribe function."""
        return self._on_open.add(callback)

    def add_on_close_callback(
        self, callback: Callable[[TransportClosedError], Any]
    ) -> Callable[[], None]:
        """Fires with the closure error whenever the socket closes. Returns an unsubscribe function."""
        return self._on_close.add(callback)

    def start(self) -> None:
        """Begin connecting (DISCONNECTED -> CONNECTING)."""
        if self._run_task is not None and not self._run_task.done():
            return
        self._closing = False
        self._run_task = asyncio.create_task(self._run(), name="realtime-client")

    def request_reconnect(self) -> None:
        """Drop the current socket (if any) and reconnect without waiting out the backoff."""
        self._wake.set()
        if self._state is ConnectionState.CONNECTED:
            self._drop_task = asyncio.create_task(
                self._transport.close(), name="realtime-client-reconnect"
            )

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)

    async def close(self) -> None:
        """Tear down for good; no further reconnects."""
        self._closing = True
        self._set_state(ConnectionState.CLOSING)
        self._wake.set()
        await self._transport.close()
        for task in (self._ping_task, self._reader_task, self._run_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._connected_event.clear()
        logger.info("Realtime client closed")

    async def declare_interest(self, channel: str) -> bool:
        """
        Add a channel to the interest set and subscribe it if connected.

        Returns:
            True if the gateway acknowledged the subscription now, False if it
            will be subscribed on the next connect.

        Raises:
            MalformedChannelError: If the channel name is invalid.
            SubscriptionDeniedError: If the gateway denied it (the interest
                is removed again).
        """
        wire = LogicalChannel.parse(channel).wire_name
        self._interests.add(wire)
        if self._state is not ConnectionState.CONNECTED:
            return False
        try:
            await asyncio.wait_for(self._subscribe(wire), timeout=self._subscribe_timeout)
        except asyncio.TimeoutError:
            logger.warning("Subscribe timed out, reconnecting", channel=wire)
            self.request_reconnect()
            return False
        except TransportClosedError:
            return False
        return True

    async def drop_interest(self, channel: str) -> None:
        wire = LogicalChannel.parse(channel).wire_name
        if wire not in self._interests:
            return
        self._interests.discard(wire)
        if self._state is ConnectionState.CONNECTED:
            try:
                await self._transport.send(unsubscribe_frame(wire))
            except TransportClosedError:
                pass

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            error = await self._connect_once()

            if error is None:
                attempt = 0
                error = await self._serve()

            if self._closing:
                break
            self._set_state(ConnectionState.DISCONNECTED)
            await self._on_close.fire(error)
            await self._report_closure(error)

            delay = calculate_delay_with_jitter(attempt, self._retry_config)
            attempt += 1
            logger.info(
                "Reconnecting to gateway",
                attempt=attempt,
                delay_with_jitter=round(delay, 2),
                transient=error.transient,
            )
            await self._backoff(delay)

    async def _connect_once(self) -> TransportClosedError | None:
        """Open the socket and re-subscribe every interest. Returns the failure, if any."""
        # Acknowledgements still pending belong to the previous socket
        for future in self._pending.values():
            future.cancel()
        self._pending.clear()

        try:
            await self._transport.open()
        except TransportClosedError as e:
            return e
        except Exception as e:
            logger.error(
                "Opening the gateway socket failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return TransportClosedError(f"open failed: {e}", transient=True)

        self._reader_task = asyncio.create_task(self._receive_loop(), name="realtime-client-reader")
        try:
            await asyncio.wait_for(self._resubscribe_all(), timeout=self._subscribe_timeout)
        except asyncio.TimeoutError:
            logger.warning("Subscribing timed out", channels=len(self._interests))
            await self._abort_socket()
            return TransportClosedError("subscribe timed out", transient=True)
        except TransportClosedError as e:
            await self._abort_socket()
            return e
        return None

    async def _serve(self) -> TransportClosedError:
        """CONNECTED until the socket closes. Returns the closure error."""
        self._set_state(ConnectionState.CONNECTED)
        self.connect_count += 1
        reconnected = self._has_connected
        self._has_connected = True
        self._connected_event.set()

        await self._on_open.fire()
        if reconnected:
            self._engine.sweep()
            self._engine.connection_restored()

        self._ping_task = asyncio.create_task(self._ping_loop(), name="realtime-client-ping")
        try:
            return await self._reader_task
        finally:
            self._connected_event.clear()
            self._ping_task.cancel()
            self._ping_task = None
            self._reader_task = None

    async def _abort_socket(self) -> None:
        await self._transport.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

    async def _backoff(self, delay: float) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _report_closure(self, error: TransportClosedError) -> None:
        if error.transient:
            logger.info("Gateway connection lost", reason=str(error), code=error.code)
            if self._has_connected:
                self._engine.connection_lost()
            return
        logger.error("Gateway connection failed", reason=str(error), code=error.code)
        await self._report_error(error)

    async def _report_error(self, error: Exception) -> None:
        if self._error_handler is None:
            self._engine.report_error(str(error))
            return
        try:
            result = self._error_handler(error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Error handler failed", error=str(e))

    # =========================================================================
    # Frames
    # =========================================================================

    async def _resubscribe_all(self) -> None:
        channels = sorted(self._interests)
        if not channels:
            return
        results = await asyncio.gather(
            *(self._subscribe(channel) for channel in channels),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, TransportClosedError):
                raise result
        logger.info(
            "Channels subscribed",
            subscribed=sum(1 for r in results if r is None),
            requested=len(channels),
        )

    async def _subscribe(self, wire: str) -> None:
        """Send a subscribe frame and wait for its acknowledgement."""
        future = self._pending.get(wire)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._pending[wire] = future
            await self._transport.send(subscribe_frame(wire))
        try:
            await asyncio.shield(future)
        except SubscriptionDeniedError:
            # Already surfaced by the frame handler; the caller decides to raise
            raise
        finally:
            if self._pending.get(wire) is future and future.done():
                del self._pending[wire]

    async def _receive_loop(self) -> TransportClosedError:
        try:
            while True:
                frame = await self._transport.receive()
                await self._handle_frame(frame)
        except TransportClosedError as e:
            self._fail_pending(e)
            return e

    async def _handle_frame(self, frame: dict[str, Any]) -> None:
        kind = frame["kind"]
        if kind is FrameKind.EVENT:
            if frame["channel"] in self._interests:
                # Runs to completion before the next frame is read
                self._engine.on_event(frame["payload"])
        elif kind is FrameKind.SUBSCRIBED:
            self._resolve(frame["channel"], None)
        elif kind is FrameKind.DENIED:
            channel, reason = frame["channel"], frame.get("reason", "forbidden")
            self._interests.discard(channel)
            error = SubscriptionDeniedError(channel, reason=reason)
            logger.warning("Subscription denied", channel=channel, reason=reason)
            self._resolve(channel, error)
            await self._report_error(error)

    def _resolve(self, channel: str, error: Exception | None) -> None:
        future = self._pending.get(channel)
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def _fail_pending(self, error: TransportClosedError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
                # Mark retrieved so an unawaited future does not log
                future.exception()
        self._pending.clear()

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await self._transport.send(ping_frame())
            except TransportClosedError:
                return

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Client state", previous=self._state.value, state=state.value)
            self._state = state
