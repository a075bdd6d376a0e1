"""
Centralized exceptions for the realtime layer.

Two families:
- Realtime errors raised inside the event bus, gateway and client SDK.
- HTTP exceptions (AppException subclasses) for the gateway's HTTP endpoints,
  which log on construction for a consistent audit trail.

Usage:
    from shared.utils.exceptions import SubscriptionDeniedError, ForbiddenError

    raise SubscriptionDeniedError("staff-message", reason="role_too_low")
    raise ForbiddenError("view connection counts")
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Realtime errors
# =============================================================================


class RealtimeError(Exception):
    """Base class for realtime layer errors."""


class UndeclaredEventTypeError(RealtimeError, ValueError):
    """An event type outside the closed taxonomy was used."""

    def __init__(self, event_type: Any):
        self.event_type = event_type
        super().__init__(f"Undeclared event type: {event_type!r}")


class MalformedChannelError(RealtimeError, ValueError):
    """A channel name does not follow the naming convention."""

    def __init__(self, channel: Any):
        self.channel = channel
        super().__init__(f"Malformed channel name: {channel!r}")


class SubscriptionDeniedError(RealtimeError):
    """
    The principal may not subscribe to the requested channel.

    Attributes:
        channel: Channel name that was requested.
        reason: Short reason code sent back to the client.
    """

    def __init__(self, channel: str, reason: str = "forbidden"):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Subscription to {channel} denied: {reason}")


class TransportError(RealtimeError):
    """A transport operation failed."""


class TransportClosedError(TransportError):
    """
    The transport connection closed.

    transient=True for abrupt closures that recover by reconnecting
    ("closed prematurely", network errors). transient=False for fatal
    closures such as authentication failure.
    """

    def __init__(self, message: str = "connection closed", transient: bool = True, code: int | None = None):
        self.transient = transient
        self.code = code
        super().__init__(message)


# =============================================================================
# HTTP errors
# =============================================================================


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    All HTTP exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, status_code=status_code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


class UnauthorizedError(AppException):
    """
    Missing or invalid credentials (401).

    Usage:
        raise UnauthorizedError("Token expired")
    """

    def __init__(self, detail: str = "Not authenticated", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
            **log_context,
        )


class ForbiddenError(AppException):
    """
    Valid credentials but insufficient role (403).

    Usage:
        raise ForbiddenError("view connection counts", user_id=principal.principal_id)
    """

    def __init__(self, action: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Not allowed to {action}",
            action=action,
            **log_context,
        )
