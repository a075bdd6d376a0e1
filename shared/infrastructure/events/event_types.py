"""
Event Types.

Closed taxonomy of every event the realtime layer can carry, with the
defaults each type is published with (audience, notification kind, message,
whether the client toast is suppressed, dedup tag).

Adding a member to EventType without an EVENT_SPECS entry fails at import.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Final

from shared.config.settings import settings


class EventType(str, Enum):
    """Every event type known to the platform."""

    # Orders (user-facing)
    ORDER_ADD = "ORDER_ADD"
    ORDER_UPDATE = "ORDER_UPDATE"
    ORDER_CANCEL = "ORDER_CANCEL"

    # Bonus (user-facing)
    BONUS_REDEEMED = "BONUS_REDEEMED"
    BONUS_APPLY = "BONUS_APPLY"

    # Deposits (user-facing)
    DEPOSIT_RECHARGE = "DEPOSIT_RECHARGE"
    DEPOSIT_REFUND = "DEPOSIT_REFUND"
    DEPOSIT_FAILED = "DEPOSIT_FAILED"

    # Menu publishing (user-facing, one event per opted-in user)
    MENU_RESERVATION_UPDATE = "MENU_RESERVATION_UPDATE"

    # User settings (user-facing)
    USER_TEST_PUSH_NOTIFICATION = "USER_TEST_PUSH_NOTIFICATION"
    USER_TOKEN_UPDATE = "USER_TOKEN_UPDATE"

    # Catalog (public)
    CATEGORY_ADD = "CATEGORY_ADD"
    CATEGORY_UPDATE = "CATEGORY_UPDATE"
    CATEGORY_DELETE = "CATEGORY_DELETE"
    OPTION_SETS_ADD = "OPTION_SETS_ADD"
    OPTION_SETS_UPDATE = "OPTION_SETS_UPDATE"
    OPTION_SETS_DELETE = "OPTION_SETS_DELETE"
    COMMODITY_ADD = "COMMODITY_ADD"
    COMMODITY_UPDATE = "COMMODITY_UPDATE"
    COMMODITY_DELETE = "COMMODITY_DELETE"
    MENU_ADD = "MENU_ADD"
    MENU_UPDATE = "MENU_UPDATE"
    MENU_DELETE = "MENU_DELETE"
    MENU_LIVE_UPDATE = "MENU_LIVE_UPDATE"

    # Operations (staff-facing)
    POS_ADD = "POS_ADD"
    POS_UPDATE = "POS_UPDATE"
    DEPOSIT_UPDATE = "DEPOSIT_UPDATE"
    SUPPLIER_ADD = "SUPPLIER_ADD"
    SUPPLIER_UPDATE = "SUPPLIER_UPDATE"
    SUPPLIER_DELETE = "SUPPLIER_DELETE"

    # Administration (admin-facing)
    USER_AUTHORITY_UPDATE = "USER_AUTHORITY_UPDATE"
    BONUS_ADD = "BONUS_ADD"
    BONUS_UPDATE = "BONUS_UPDATE"
    BONUS_DELETE = "BONUS_DELETE"
    CONNECTION_COUNT_UPDATE = "CONNECTION_COUNT_UPDATE"


class Audience(str, Enum):
    """Who an event type is addressed to."""

    USER = "user"
    PUBLIC = "public"
    STAFF = "staff"
    ADMIN = "admin"


class NotificationKind(str, Enum):
    """Visual kind of the client notification."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class EventSpec:
    """
    Publishing defaults of one event type.

    Attributes:
        audience: Audience the router resolves channels for.
        notification_kind: Kind used when the envelope sets none.
        message: Message used when the envelope sets none.
        skip_notify: Default for silent, invalidation-only events.
        dedup_tag: Notifications sharing a tag replace each other on the client.
    """

    audience: Audience
    notification_kind: NotificationKind
    message: str
    skip_notify: bool = False
    dedup_tag: str | None = None


_S = NotificationKind.SUCCESS
_E = NotificationKind.ERROR
_I = NotificationKind.INFO

EVENT_SPECS: Final = MappingProxyType({
    # Orders
    EventType.ORDER_ADD: EventSpec(Audience.USER, _S, "Order placed"),
    EventType.ORDER_UPDATE: EventSpec(Audience.USER, _I, "Order status updated"),
    EventType.ORDER_CANCEL: EventSpec(Audience.USER, _I, "Order canceled"),
    # Bonus
    EventType.BONUS_REDEEMED: EventSpec(Audience.USER, _S, "Bonus points received"),
    EventType.BONUS_APPLY: EventSpec(Audience.USER, _S, "Bonus granted"),
    # Deposits
    EventType.DEPOSIT_RECHARGE: EventSpec(Audience.USER, _S, "Deposit succeeded"),
    EventType.DEPOSIT_REFUND: EventSpec(Audience.USER, _S, "Refund succeeded"),
    EventType.DEPOSIT_FAILED: EventSpec(Audience.USER, _E, "Deposit failed"),
    # Menu publishing
    EventType.MENU_RESERVATION_UPDATE: EventSpec(
        Audience.USER, _I, "Reservation menu opened", skip_notify=True,
    ),
    # User settings
    EventType.USER_TEST_PUSH_NOTIFICATION: EventSpec(Audience.USER, _I, "Test push notification"),
    EventType.USER_TOKEN_UPDATE: EventSpec(
        Audience.USER, _I, "Device settings changed", skip_notify=True,
    ),
    # Catalog
    EventType.CATEGORY_ADD: EventSpec(Audience.PUBLIC, _S, "Category added", skip_notify=True),
    EventType.CATEGORY_UPDATE: EventSpec(Audience.PUBLIC, _S, "Category updated", skip_notify=True),
    EventType.CATEGORY_DELETE: EventSpec(Audience.PUBLIC, _S, "Category deleted", skip_notify=True),
    EventType.OPTION_SETS_ADD: EventSpec(Audience.PUBLIC, _S, "Option set added", skip_notify=True),
    EventType.OPTION_SETS_UPDATE: EventSpec(Audience.PUBLIC, _S, "Option set updated", skip_notify=True),
    EventType.OPTION_SETS_DELETE: EventSpec(Audience.PUBLIC, _S, "Option set deleted", skip_notify=True),
    EventType.COMMODITY_ADD: EventSpec(Audience.PUBLIC, _S, "Item added", skip_notify=True),
    EventType.COMMODITY_UPDATE: EventSpec(Audience.PUBLIC, _S, "Item updated", skip_notify=True),
    EventType.COMMODITY_DELETE: EventSpec(Audience.PUBLIC, _S, "Item deleted", skip_notify=True),
    EventType.MENU_ADD: EventSpec(Audience.PUBLIC, _S, "Menu added", skip_notify=True),
    EventType.MENU_UPDATE: EventSpec(Audience.PUBLIC, _S, "Menu updated", skip_notify=True),
    EventType.MENU_DELETE: EventSpec(Audience.PUBLIC, _S, "Menu deleted", skip_notify=True),
    EventType.MENU_LIVE_UPDATE: EventSpec(Audience.PUBLIC, _I, "Live menu changed", skip_notify=True),
    # Operations
    EventType.POS_ADD: EventSpec(Audience.STAFF, _S, "New order to process"),
    EventType.POS_UPDATE: EventSpec(Audience.STAFF, _I, "Pending order updated", skip_notify=True),
    EventType.DEPOSIT_UPDATE: EventSpec(Audience.STAFF, _I, "Deposit status updated", skip_notify=True),
    EventType.SUPPLIER_ADD: EventSpec(Audience.STAFF, _S, "Supplier added", skip_notify=True),
    EventType.SUPPLIER_UPDATE: EventSpec(Audience.STAFF, _S, "Supplier updated", skip_notify=True),
    EventType.SUPPLIER_DELETE: EventSpec(Audience.STAFF, _S, "Supplier deleted", skip_notify=True),
    # Administration
    EventType.USER_AUTHORITY_UPDATE: EventSpec(Audience.ADMIN, _I, "User permissions changed"),
    EventType.BONUS_ADD: EventSpec(Audience.ADMIN, _S, "Bonus added", skip_notify=True),
    EventType.BONUS_UPDATE: EventSpec(Audience.ADMIN, _S, "Bonus updated", skip_notify=True),
    EventType.BONUS_DELETE: EventSpec(Audience.ADMIN, _S, "Bonus deleted", skip_notify=True),
    EventType.CONNECTION_COUNT_UPDATE: EventSpec(
        Audience.ADMIN, _I, "Connected users changed", dedup_tag="connection-count",
    ),
})

# Maximum serialized envelope size (same as the WebSocket frame limit)
MAX_EVENT_SIZE: Final[int] = settings.max_event_size


def get_event_spec(event_type: EventType) -> EventSpec:
    return EVENT_SPECS[event_type]


def event_types_for(audience: Audience) -> frozenset[EventType]:
    """All event types addressed to an audience."""
    return frozenset(t for t, spec in EVENT_SPECS.items() if spec.audience is audience)


def _validate_specs() -> None:
    missing = set(EventType) - set(EVENT_SPECS)
    if missing:
        raise RuntimeError(
            f"EVENT_SPECS is missing event types: {sorted(t.value for t in missing)}"
        )


_validate_specs()
