"""
Gateway frame protocol.

JSON frames exchanged between the WebSocket gateway and its clients.

Client -> server:
    {"kind": "subscribe", "channel": "user-message-42"}
    {"kind": "unsubscribe", "channel": "user-message-42"}
    {"kind": "ping"}

Server -> client:
    {"kind": "subscribed", "channel": "user-message-42"}
    {"kind": "denied", "channel": "staff-message", "reason": "role_too_low"}
    {"kind": "event", "channel": "public-message", "payload": {...envelope...}}
    {"kind": "pong"}
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class FrameKind(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    PING = "ping"
    SUBSCRIBED = "subscribed"
    DENIED = "denied"
    EVENT = "event"
    PONG = "pong"


CLIENT_FRAME_KINDS = frozenset({FrameKind.SUBSCRIBE, FrameKind.UNSUBSCRIBE, FrameKind.PING})
SERVER_FRAME_KINDS = frozenset({
    FrameKind.SUBSCRIBED, FrameKind.DENIED, FrameKind.EVENT, FrameKind.PONG,
})


class FrameError(ValueError):
    """A frame is not valid JSON or does not follow the protocol."""


def subscribe_frame(channel: str) -> dict[str, Any]:
    return {"kind": FrameKind.SUBSCRIBE.value, "channel": channel}


def unsubscribe_frame(channel: str) -> dict[str, Any]:
    return {"kind": FrameKind.UNSUBSCRIBE.value, "channel": channel}


def ping_frame() -> dict[str, Any]:
    return {"kind": FrameKind.PING.value}


def subscribed_frame(channel: str) -> dict[str, Any]:
    return {"kind": FrameKind.SUBSCRIBED.value, "channel": channel}


def denied_frame(channel: str, reason: str) -> dict[str, Any]:
    return {"kind": FrameKind.DENIED.value, "channel": channel, "reason": reason}


def event_frame(channel: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"kind": FrameKind.EVENT.value, "channel": channel, "payload": payload}


def pong_frame() -> dict[str, Any]:
    return {"kind": FrameKind.PONG.value}


def encode_frame(frame: dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False)


def decode_frame(raw: str | bytes, allowed: frozenset[FrameKind] | None = None) -> dict[str, Any]:
    """
    Parse and validate one frame.

    Args:
        raw: Text received from the socket.
        allowed: Kinds accepted from this side of the connection.

    Returns:
        The frame dict with "kind" normalized to a FrameKind.

    Raises:
        FrameError: On invalid JSON, unknown kind or missing fields.
    """
    try:
        frame = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise FrameError(f"Invalid JSON frame: {e}") from None

    if not isinstance(frame, dict):
        raise FrameError("Frame must be a JSON object")

    try:
        kind = FrameKind(frame.get("kind"))
    except ValueError:
        raise FrameError(f"Unknown frame kind: {frame.get('kind')!r}") from None

    if allowed is not None and kind not in allowed:
        raise FrameError(f"Frame kind not allowed here: {kind.value}")

    if kind not in (FrameKind.PING, FrameKind.PONG):
        channel = frame.get("channel")
        if not isinstance(channel, str) or not channel:
            raise FrameError(f"{kind.value} frame requires a channel")
    if kind is FrameKind.EVENT and not isinstance(frame.get("payload"), dict):
        raise FrameError("event frame requires an object payload")

    frame["kind"] = kind
    return frame
