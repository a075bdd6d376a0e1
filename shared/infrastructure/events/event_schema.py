"""
Event Schema.

Defines the immutable EventEnvelope carried by every transport, and the
MutationContext a domain mutation passes alongside it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from shared.utils.exceptions import UndeclaredEventTypeError
from .event_types import EventType, NotificationKind, get_event_spec


def coerce_event_type(value: Any) -> EventType:
    """
    Resolve a value to a declared EventType.

    Raises:
        UndeclaredEventTypeError: If the value is not part of the taxonomy.
    """
    if isinstance(value, EventType):
        return value
    try:
        return EventType(value)
    except ValueError:
        raise UndeclaredEventTypeError(value) from None


@dataclass(frozen=True, slots=True)
class EventEnvelope:
    """
    Immutable record describing one state-change notification.

    Constructed when a domain mutation commits and discarded after delivery.
    The wire form is camelCase JSON with unset optional keys omitted:

        {"type": "ORDER_ADD", "message": "...", "skipNotify": false,
         "link": "/order/id/42", "notificationKind": "success"}
    """

    type: EventType
    message: str | None = None
    skip_notify: bool = False
    link: str | None = None
    notification_kind: NotificationKind | None = None

    def __post_init__(self) -> None:
        # Undeclared types are programming errors: fail at construction
        object.__setattr__(self, "type", coerce_event_type(self.type))

        if self.notification_kind is not None and not isinstance(
            self.notification_kind, NotificationKind
        ):
            try:
                object.__setattr__(
                    self, "notification_kind", NotificationKind(self.notification_kind)
                )
            except ValueError:
                raise ValueError(
                    f"Invalid notification kind: {self.notification_kind!r}"
                ) from None

        if not isinstance(self.skip_notify, bool):
            raise ValueError("skip_notify must be a bool")

        if self.message is not None and not isinstance(self.message, str):
            raise ValueError("message must be a string or None")

        if self.link is not None and not isinstance(self.link, str):
            raise ValueError("link must be a string or None")

    @classmethod
    def create(cls, event_type: EventType | str, **overrides: Any) -> "EventEnvelope":
        """
        Build an envelope pre-filled with the taxonomy defaults for its type.

        Usage:
            EventEnvelope.create(EventType.ORDER_ADD, link=f"/order/id/{order_id}")
        """
        event_type = coerce_event_type(event_type)
        spec = get_event_spec(event_type)
        values: dict[str, Any] = {
            "message": spec.message,
            "skip_notify": spec.skip_notify,
            "notification_kind": spec.notification_kind,
        }
        values.update(overrides)
        return cls(type=event_type, **values)

    @property
    def effective_notification_kind(self) -> NotificationKind:
        """The envelope's kind, or the taxonomy default for its type."""
        return self.notification_kind or get_event_spec(self.type).notification_kind

    @property
    def effective_message(self) -> str:
        return self.message or get_event_spec(self.type).message

    @property
    def dedup_tag(self) -> str | None:
        return get_event_spec(self.type).dedup_tag

    def to_wire(self) -> dict[str, Any]:
        """Transport-agnostic dict form."""
        data: dict[str, Any] = {"type": self.type.value}
        if self.message is not None:
            data["message"] = self.message
        if self.skip_notify:
            data["skipNotify"] = True
        if self.link is not None:
            data["link"] = self.link
        if self.notification_kind is not None:
            data["notificationKind"] = self.notification_kind.value
        return data

    def to_json(self) -> str:
        """Serialize envelope to JSON string."""
        return json.dumps(self.to_wire(), ensure_ascii=False)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "EventEnvelope":
        """
        Build an envelope from its wire dict.

        Raises:
            UndeclaredEventTypeError: If the type is missing or undeclared.
            ValueError: If another field is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("Event payload must be an object")
        return cls(
            type=coerce_event_type(data.get("type")),
            message=data.get("message"),
            skip_notify=data.get("skipNotify", False),
            link=data.get("link"),
            notification_kind=data.get("notificationKind"),
        )

    @classmethod
    def from_json(cls, json_str: str | bytes) -> "EventEnvelope":
        """Deserialize envelope from JSON string."""
        return cls.from_wire(json.loads(json_str))


@dataclass(frozen=True, slots=True)
class MutationContext:
    """
    Minimal set of ids a domain mutation passes for channel resolution.

    Attributes:
        affected_user_ids: Users the mutation concerns (e.g. the order owner).
            Also the recipients of the push side channel.
    """

    affected_user_ids: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        ids = tuple(str(uid) for uid in self.affected_user_ids)
        object.__setattr__(self, "affected_user_ids", ids)

    @classmethod
    def for_users(cls, *user_ids: str | int) -> "MutationContext":
        return cls(affected_user_ids=tuple(str(uid) for uid in user_ids))
