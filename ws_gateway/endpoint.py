"""
Gateway WebSocket Endpoint.

Runs one client connection through its lifecycle:

1. Validate origin and JWT (close 4003 / 4001 on failure)
2. Register with the ConnectionManager
3. Message loop: subscribe / unsubscribe / ping frames
4. Unregister on disconnect

Every subscription is authorized here, before any event for that channel
can reach the socket. A denied subscription is answered with an explicit
`denied` frame.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import audit_ws_connection, get_logger
from shared.config.settings import settings
from shared.infrastructure.events.frames import (
    CLIENT_FRAME_KINDS,
    FrameError,
    FrameKind,
    decode_frame,
    denied_frame,
    pong_frame,
    subscribed_frame,
)
from shared.security.auth import principal_from_token
from shared.security.roles import Principal
from shared.utils.exceptions import (
    MalformedChannelError,
    SubscriptionDeniedError,
    UnauthorizedError,
)
from ws_gateway.constants import WSCloseCode, WSConstants, validate_websocket_origin

if TYPE_CHECKING:
    from ws_gateway.connection_manager import Connection, ConnectionManager

logger = get_logger(__name__)


class GatewayEndpoint:
    """
    Handler for one gateway socket.

    Usage:
        endpoint = GatewayEndpoint(websocket, manager, token)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        token: str,
        receive_timeout: float = WSConstants.WS_RECEIVE_TIMEOUT,
        max_message_size: int = settings.ws_max_message_size,
    ):
        self.websocket = websocket
        self.manager = manager
        self.token = token
        self.endpoint_name = WSConstants.ENDPOINT_PATH
        self.receive_timeout = receive_timeout
        self.max_message_size = max_message_size
        self.connection: "Connection | None" = None

    async def validate_auth(self) -> Principal | None:
        """
        Authenticate the socket. Accepts first so the close code reaches
        the client, then closes on failure.
        """
        origin = self.websocket.headers.get("origin")
        await self.websocket.accept()

        if not validate_websocket_origin(origin, settings):
            audit_ws_connection("ORIGIN_REJECTED", self.endpoint_name, reason=origin)
            await self.websocket.close(code=WSCloseCode.FORBIDDEN, reason="Origin not allowed")
            return None

        try:
            principal = principal_from_token(self.token)
        except UnauthorizedError as e:
            audit_ws_connection("AUTH_FAILED", self.endpoint_name, reason=e.detail)
            await self.websocket.close(code=WSCloseCode.AUTH_FAILED, reason=e.detail)
            return None

        if self.manager.is_full:
            logger.warning(
                "Connection limit reached",
                limit=self.manager.connection_count(),
            )
            await self.websocket.close(
                code=WSCloseCode.SERVER_OVERLOADED,
                reason="Too many connections",
            )
            return None

        return principal

    async def run(self) -> None:
        principal = await self.validate_auth()
        if principal is None:
            return

        self.connection = await self.manager.connect(self.websocket, principal)
        audit_ws_connection("CONNECT", self.endpoint_name, user_id=principal.principal_id)

        try:
            await self._message_loop()
        except WebSocketDisconnect:
            pass
        finally:
            await self.manager.disconnect(self.connection)
            audit_ws_connection(
                "DISCONNECT", self.endpoint_name, user_id=principal.principal_id,
            )

    async def _message_loop(self) -> None:
        while True:
            try:
                data = await asyncio.wait_for(
                    self.websocket.receive_text(),
                    timeout=self.receive_timeout,
                )
            except asyncio.TimeoutError:
                logger.info(
                    "Connection timed out (no messages)",
                    connection_id=self.connection.connection_id,
                    timeout=self.receive_timeout,
                )
                await self.websocket.close(code=WSCloseCode.NORMAL, reason="Connection timeout")
                return

            if len(data.encode("utf-8")) > self.max_message_size:
                logger.warning(
                    "Message too large",
                    connection_id=self.connection.connection_id,
                    size=len(data),
                )
                await self.websocket.close(code=WSCloseCode.MESSAGE_TOO_BIG)
                return

            await self.handle_message(data)

    async def handle_message(self, data: str) -> None:
        try:
            frame = decode_frame(data, allowed=CLIENT_FRAME_KINDS)
        except FrameError as e:
            logger.debug(
                "Ignoring invalid frame",
                connection_id=self.connection.connection_id,
                error=str(e),
            )
            return

        kind = frame["kind"]
        if kind is FrameKind.PING:
            await self.manager.send(self.connection, pong_frame())
        elif kind is FrameKind.SUBSCRIBE:
            await self._handle_subscribe(frame["channel"])
        elif kind is FrameKind.UNSUBSCRIBE:
            await self.manager.unsubscribe(self.connection, frame["channel"])

    async def _handle_subscribe(self, channel_name: str) -> None:
        principal = self.connection.principal
        try:
            channel = await self.manager.subscribe(self.connection, channel_name)
        except SubscriptionDeniedError as e:
            audit_ws_connection(
                "SUBSCRIBE_DENIED",
                self.endpoint_name,
                user_id=principal.principal_id,
                channel=e.channel,
                reason=e.reason,
            )
            await self.manager.send(self.connection, denied_frame(channel_name, e.reason))
            return
        except MalformedChannelError:
            await self.manager.send(
                self.connection, denied_frame(channel_name, "malformed_channel"),
            )
            return

        await self.manager.send(self.connection, subscribed_frame(channel.wire_name))
