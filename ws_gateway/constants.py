"""
WebSocket Gateway Constants.

Close codes, operational timeouts and origin validation shared by the
gateway endpoint and its clients.
"""

from enum import IntEnum
from typing import Final

from shared.config.logging import get_logger

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
]

logger = get_logger(__name__)


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    SERVER_ERROR = 1011
    SERVER_OVERLOADED = 1013

    # Custom application codes
    AUTH_FAILED = 4001  # token missing, invalid or expired
    FORBIDDEN = 4003  # origin not allowed
    SLOW_CONSUMER = 4008  # send timed out, client must reconnect


class WSConstants:
    """Gateway operational constants (settings override the configurable ones)."""

    # Must exceed the client ping interval so idle but healthy sockets survive
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0

    ENDPOINT_PATH: Final[str] = "/ws"


# Default development origins
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "https://localhost:3000",
)


def validate_websocket_origin(origin: str | None, settings: object) -> bool:
    """
    Validate the Origin header against allowed origins.

    A missing Origin (non-browser clients such as the CLI) is accepted in
    development only.

    Args:
        origin: The Origin header value, or None if not present.
        settings: Settings object with environment and allowed_origins attributes.
    """
    allowed_origins_str = getattr(settings, "allowed_origins", None)
    if allowed_origins_str:
        allowed = [o.strip() for o in allowed_origins_str.split(",") if o.strip()]
    else:
        allowed = list(DEFAULT_ALLOWED_ORIGINS)

    if not origin:
        if getattr(settings, "environment", "production") == "development":
            return True
        logger.warning("WebSocket connection rejected: missing Origin header in production")
        return False

    if origin in allowed:
        return True

    logger.warning(
        "WebSocket connection rejected: origin not in allowed list",
        origin=origin,
        allowed_count=len(allowed),
    )
    return False
