"""
Client transport.

The subscription manager talks to the gateway through a ClientTransport:
open a socket, send frames, receive frames, close. GatewayClientTransport is
the WebSocket implementation built on `websockets`.

Closures surface as TransportClosedError. `transient` tells the manager
whether to reconnect quietly (network loss, "closed prematurely") or to
report a fatal error (authentication failure, forbidden origin).
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException

from shared.config.logging import get_logger
from shared.infrastructure.events.frames import SERVER_FRAME_KINDS, decode_frame, encode_frame
from shared.utils.exceptions import TransportClosedError

logger = get_logger(__name__)

# Close codes the gateway uses for unrecoverable conditions
FATAL_CLOSE_CODES = frozenset({4001, 4003})


def is_fatal_close(code: int | None) -> bool:
    return code in FATAL_CLOSE_CODES


class ClientTransport(Protocol):
    """Frame-level connection to the gateway."""

    async def open(self) -> None:
        """Raises TransportClosedError if the connection cannot be opened."""
        ...

    async def send(self, frame: dict[str, Any]) -> None:
        ...

    async def receive(self) -> dict[str, Any]:
        """Next server frame. Raises TransportClosedError when the socket closes."""
        ...

    async def close(self) -> None:
        ...


class GatewayClientTransport:
    """
    WebSocket connection to the gateway's /ws endpoint.

    Args:
        url: Gateway URL, e.g. ws://localhost:8001/ws.
        token_provider: Returns the current JWT; called on every open so a
            refreshed token is used after reconnecting.
        open_timeout: Handshake timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        token_provider: Callable[[], str],
        open_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._token_provider = token_provider
        self._open_timeout = open_timeout
        self._ws: Any = None

    def _connect_url(self) -> str:
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}{urlencode({'token': self._token_provider()})}"

    async def open(self) -> None:
        try:
            url = self._connect_url()
        except Exception as e:
            raise TransportClosedError(f"no token for the gateway: {e}", transient=True) from e
        try:
            self._ws = await websockets.connect(
                url,
                open_timeout=self._open_timeout,
                close_timeout=5,
            )
        except InvalidHandshake as e:
            raise TransportClosedError(f"gateway handshake failed: {e}", transient=True) from e
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportClosedError(f"gateway unreachable: {e}", transient=True) from e
        except WebSocketException as e:
            raise TransportClosedError(f"gateway connection failed: {e}", transient=True) from e
        logger.debug("Gateway socket opened", url=self._url)

    async def send(self, frame: dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportClosedError("socket is not open")
        try:
            await self._ws.send(encode_frame(frame))
        except ConnectionClosed as e:
            raise self._closed_error(e) from e

    async def receive(self) -> dict[str, Any]:
        if self._ws is None:
            raise TransportClosedError("socket is not open")
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed as e:
                raise self._closed_error(e) from e
            try:
                return decode_frame(raw, allowed=SERVER_FRAME_KINDS)
            except ValueError as e:
                logger.warning("Ignoring invalid gateway frame", error=str(e))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    @staticmethod
    def _closed_error(exc: ConnectionClosed) -> TransportClosedError:
        code = exc.rcvd.code if exc.rcvd is not None else None
        reason = exc.rcvd.reason if exc.rcvd is not None else "closed prematurely"
        return TransportClosedError(
            f"gateway closed the socket: {reason or code}",
            transient=not is_fatal_close(code),
            code=code,
        )
