"""
WebSocket Connection Manager.

Tracks live gateway connections and the channels each one subscribed to, and
bridges them to the transport:

- the transport is subscribed to a channel when its first local socket
  subscribes, and unsubscribed when the last one leaves
- every event the transport delivers is fanned out to the channel's sockets,
  each send bounded by `ws_send_timeout`; a socket that cannot keep up is
  closed and must reconnect (its reconnect sweep recovers what it missed)
- connects and disconnects update the connected-user counter, and each new
  count is published to admins as CONNECTION_COUNT_UPDATE
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from starlette.websockets import WebSocketState

from shared.config.logging import get_logger, mask_user_id
from shared.config.settings import settings
from shared.infrastructure.events import (
    LogicalChannel,
    RealtimeServices,
    publish_connection_count,
)
from shared.infrastructure.events.frames import encode_frame, event_frame
from shared.security.roles import Principal
from ws_gateway.constants import WSCloseCode

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


def is_ws_connected(ws: "WebSocket") -> bool:
    """True while both sides of a Starlette WebSocket are connected."""
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


@dataclass(eq=False)
class Connection:
    """One accepted gateway socket."""

    connection_id: str
    websocket: "WebSocket"
    principal: Principal
    channels: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    async def send(self, frame: dict[str, Any], timeout: float) -> bool:
        """Send one frame, serialized with other sends on this socket."""
        if self.closed or not is_ws_connected(self.websocket):
            return False
        text = encode_frame(frame)
        async with self.send_lock:
            await asyncio.wait_for(self.websocket.send_text(text), timeout=timeout)
        return True


class ConnectionManager:
    """
    Channel index of local sockets plus transport bridging.

    Configuration from settings:
    - ws_send_timeout: seconds before a send is abandoned and the socket dropped
    - ws_max_total_connections: global connection limit for this instance
    """

    def __init__(
        self,
        services: RealtimeServices | None = None,
        send_timeout: float = settings.ws_send_timeout,
        max_connections: int = settings.ws_max_total_connections,
    ) -> None:
        self._services = services
        self._send_timeout = send_timeout
        self._max_connections = max_connections
        # Prefix keeps connection ids unique across gateway instances
        self._instance_id = uuid.uuid4().hex[:8]
        self._connections: dict[str, Connection] = {}
        self._by_channel: dict[str, set[Connection]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_tasks: set[asyncio.Task] = set()
        self._events_delivered = 0
        self._sends_dropped = 0

    @property
    def services(self) -> RealtimeServices:
        if self._services is None:
            raise RuntimeError("ConnectionManager is not bound to realtime services")
        return self._services

    def bind(self, services: RealtimeServices) -> None:
        """Attach the services built at startup."""
        self._services = services
        # Bound to the running loop at startup
        self._lock = asyncio.Lock()

    @property
    def is_full(self) -> bool:
        return len(self._connections) >= self._max_connections

    # =========================================================================
    # Connect / disconnect
    # =========================================================================

    async def connect(self, websocket: "WebSocket", principal: Principal) -> Connection:
        """Register an accepted socket and publish the new connection count."""
        conn = Connection(
            connection_id=f"{self._instance_id}:{uuid.uuid4().hex}",
            websocket=websocket,
            principal=principal,
        )
        self._connections[conn.connection_id] = conn
        logger.info(
            "WebSocket connected",
            connection_id=conn.connection_id,
            user_id=mask_user_id(principal.principal_id),
            role=principal.role.value,
        )
        await self._count_changed(self.services.counter.increment, conn.connection_id)
        return conn

    async def disconnect(self, conn: Connection) -> None:
        """Forget a socket and its subscriptions. Safe to call twice."""
        if self._connections.pop(conn.connection_id, None) is None:
            return
        conn.closed = True

        async with self._lock:
            for channel in list(conn.channels):
                await self._remove_from_channel(conn, channel)
            conn.channels.clear()

        logger.info(
            "WebSocket disconnected",
            connection_id=conn.connection_id,
            user_id=mask_user_id(conn.principal.principal_id),
            duration_seconds=round(time.time() - conn.connected_at, 1),
        )
        await self._count_changed(self.services.counter.decrement, conn.connection_id)

    async def _count_changed(self, update, connection_id: str) -> None:
        try:
            count = await update(connection_id)
        except Exception as e:
            logger.error("Connection counter update failed", error=str(e))
            return
        await publish_connection_count(self.services.publisher, count)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def subscribe(self, conn: Connection, channel_name: str) -> LogicalChannel:
        """
        Authorize and add a subscription.

        Raises:
            MalformedChannelError: If the channel name is invalid.
            SubscriptionDeniedError: If the principal may not subscribe.
        """
        channel = self.services.router.require_subscription(conn.principal, channel_name)
        wire = channel.wire_name

        async with self._lock:
            if conn.closed or wire in conn.channels:
                return channel
            sockets = self._by_channel.get(wire)
            if sockets is None:
                sockets = self._by_channel[wire] = set()
                await self.services.transport.subscribe(wire, self._on_transport_event)
                logger.debug("Transport subscribed", channel=wire)
            sockets.add(conn)
            conn.channels.add(wire)
        return channel

    async def unsubscribe(self, conn: Connection, channel_name: str) -> None:
        """Remove a subscription. Unknown or malformed names are ignored."""
        try:
            wire = LogicalChannel.parse(channel_name).wire_name
        except ValueError:
            return
        async with self._lock:
            if wire in conn.channels:
                conn.channels.discard(wire)
                await self._remove_from_channel(conn, wire)

    async def _remove_from_channel(self, conn: Connection, wire: str) -> None:
        sockets = self._by_channel.get(wire)
        if sockets is None:
            return
        sockets.discard(conn)
        if not sockets:
            del self._by_channel[wire]
            await self.services.transport.unsubscribe(wire)
            logger.debug("Transport unsubscribed", channel=wire)

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def _on_transport_event(self, channel: str, payload: dict[str, Any]) -> None:
        sockets = list(self._by_channel.get(channel, ()))
        if not sockets:
            return
        frame = event_frame(channel, payload)
        results = await asyncio.gather(
            *(self._send_or_drop(conn, frame) for conn in sockets)
        )
        sent = sum(1 for ok in results if ok)
        self._events_delivered += sent
        logger.debug(
            "Event fanned out",
            channel=channel,
            event_type=payload.get("type"),
            sent=sent,
            total=len(sockets),
        )

    async def _send_or_drop(self, conn: Connection, frame: dict[str, Any]) -> bool:
        try:
            return await conn.send(frame, self._send_timeout)
        except asyncio.TimeoutError:
            reason = "send_timeout"
        except Exception as e:
            reason = type(e).__name__
        self._sends_dropped += 1
        logger.warning(
            "Dropping slow or broken socket",
            connection_id=conn.connection_id,
            reason=reason,
        )
        # Closing runs outside the fan-out so one socket cannot stall the channel
        task = asyncio.create_task(self._drop(conn), name=f"drop:{conn.connection_id}")
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)
        return False

    async def _drop(self, conn: Connection) -> None:
        await self.disconnect(conn)
        try:
            await conn.websocket.close(code=WSCloseCode.SLOW_CONSUMER)
        except Exception as e:
            logger.debug("Close after drop failed", error=str(e))

    async def send(self, conn: Connection, frame: dict[str, Any]) -> bool:
        """Send a protocol reply (subscribed, denied, pong) to one socket."""
        return await self._send_or_drop(conn, frame)

    # =========================================================================
    # Shutdown and stats
    # =========================================================================

    async def close_all(self, code: int = WSCloseCode.GOING_AWAY) -> None:
        for conn in list(self._connections.values()):
            try:
                await conn.websocket.close(code=code)
            except Exception as e:
                logger.debug("Close on shutdown failed", error=str(e))
            await self.disconnect(conn)
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks), return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_connections": len(self._connections),
            "channels": len(self._by_channel),
            "subscriptions": sum(len(s) for s in self._by_channel.values()),
            "events_delivered": self._events_delivered,
            "sends_dropped": self._sends_dropped,
        }

    def connection_count(self) -> int:
        return len(self._connections)
