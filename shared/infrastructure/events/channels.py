"""
Channel Naming.

Logical channels identify an audience; wire names are what the transports
and the gateway protocol carry:

    public      <-> public-message
    staff       <-> staff-message
    admin       <-> admin-message
    user:<id>   <-> user-message-<id>

Channels are computed identifiers, never stored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from shared.utils.exceptions import MalformedChannelError

PUBLIC_CHANNEL_NAME = "public-message"
STAFF_CHANNEL_NAME = "staff-message"
ADMIN_CHANNEL_NAME = "admin-message"
USER_CHANNEL_PREFIX = "user-message-"

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ChannelKind(str, Enum):
    PUBLIC = "public"
    STAFF = "staff"
    ADMIN = "admin"
    USER = "user"


_GROUP_WIRE_NAMES = {
    ChannelKind.PUBLIC: PUBLIC_CHANNEL_NAME,
    ChannelKind.STAFF: STAFF_CHANNEL_NAME,
    ChannelKind.ADMIN: ADMIN_CHANNEL_NAME,
}
_WIRE_TO_GROUP = {name: kind for kind, name in _GROUP_WIRE_NAMES.items()}


def _validate_user_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not _USER_ID_PATTERN.match(user_id):
        raise MalformedChannelError(f"user:{user_id}")
    return user_id


@dataclass(frozen=True, slots=True, order=True)
class LogicalChannel:
    """
    Audience identifier.

    Attributes:
        kind: public, staff, admin or user.
        user_id: Owner of a user channel, None for group channels.
    """

    kind: ChannelKind
    user_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind is ChannelKind.USER:
            _validate_user_id(self.user_id)  # type: ignore[arg-type]
        elif self.user_id is not None:
            raise MalformedChannelError(f"{self.kind.value}:{self.user_id}")

    @classmethod
    def public(cls) -> "LogicalChannel":
        return cls(ChannelKind.PUBLIC)

    @classmethod
    def staff(cls) -> "LogicalChannel":
        return cls(ChannelKind.STAFF)

    @classmethod
    def admin(cls) -> "LogicalChannel":
        return cls(ChannelKind.ADMIN)

    @classmethod
    def user(cls, user_id: str | int) -> "LogicalChannel":
        return cls(ChannelKind.USER, str(user_id))

    @property
    def wire_name(self) -> str:
        """Name used by transports and the gateway protocol."""
        if self.kind is ChannelKind.USER:
            return f"{USER_CHANNEL_PREFIX}{self.user_id}"
        return _GROUP_WIRE_NAMES[self.kind]

    @property
    def logical_name(self) -> str:
        if self.kind is ChannelKind.USER:
            return f"user:{self.user_id}"
        return self.kind.value

    def __str__(self) -> str:
        return self.logical_name

    @classmethod
    def parse(cls, name: str) -> "LogicalChannel":
        """
        Parse a logical (`user:42`) or wire (`user-message-42`) channel name.

        Raises:
            MalformedChannelError: If the name follows neither convention.
        """
        if not isinstance(name, str) or not name:
            raise MalformedChannelError(name)

        if name in _WIRE_TO_GROUP:
            return cls(_WIRE_TO_GROUP[name])
        if name.startswith(USER_CHANNEL_PREFIX):
            return cls(ChannelKind.USER, _validate_user_id(name[len(USER_CHANNEL_PREFIX):]))

        if name.startswith("user:"):
            return cls(ChannelKind.USER, _validate_user_id(name[len("user:"):]))
        try:
            kind = ChannelKind(name)
        except ValueError:
            raise MalformedChannelError(name) from None
        if kind is ChannelKind.USER:
            raise MalformedChannelError(name)
        return cls(kind)


def channel_user(user_id: str | int) -> str:
    """Wire name of a user's direct channel."""
    return LogicalChannel.user(user_id).wire_name
