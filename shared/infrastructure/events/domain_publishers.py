"""
Domain-Specific Event Publishing Functions.

High-level functions the domain mutation layer calls after a commit (orders,
POS queue, catalog, deposits, user settings, reservation menus, connection
counts). Each builds the envelope with the taxonomy defaults and the deep link
the client expects, then hands it to the Publisher.
"""

from __future__ import annotations

from typing import Iterable

from shared.config.logging import get_logger
from .channels import LogicalChannel
from .event_schema import EventEnvelope, MutationContext
from .event_types import Audience, EventType, NotificationKind, event_types_for
from .publisher import Publisher

logger = get_logger(__name__)

ORDER_EVENTS = frozenset({EventType.ORDER_ADD, EventType.ORDER_UPDATE, EventType.ORDER_CANCEL})
POS_EVENTS = frozenset({EventType.POS_ADD, EventType.POS_UPDATE})
CATALOG_EVENTS = event_types_for(Audience.PUBLIC)
SUPPLIER_EVENTS = frozenset({
    EventType.SUPPLIER_ADD, EventType.SUPPLIER_UPDATE, EventType.SUPPLIER_DELETE,
})
BONUS_ADMIN_EVENTS = frozenset({
    EventType.BONUS_ADD, EventType.BONUS_UPDATE, EventType.BONUS_DELETE,
})
USER_SETTING_EVENTS = frozenset({
    EventType.USER_TEST_PUSH_NOTIFICATION,
    EventType.USER_TOKEN_UPDATE,
    EventType.BONUS_REDEEMED,
    EventType.BONUS_APPLY,
})

LIVE_POS_LINK = "/pos/live"
RESERVATION_POS_LINK = "/pos/reservation"


class DepositStatus:
    """Settlement results reported by the payment gateway callback."""

    SUCCESS = "SUCCESS"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"
    PENDING = "PENDING"


def _require(event_type: EventType, allowed: frozenset[EventType], family: str) -> None:
    if event_type not in allowed:
        raise ValueError(f"{event_type.value} is not a {family} event")


async def publish_order_event(
    publisher: Publisher,
    event_type: EventType,
    user_id: str | int,
    order_id: int | str,
    message: str | None = None,
) -> bool:
    """
    Notify the order's owner.

    Cancellations go to the owner only; staff see the queue change through
    `publish_pos_event`.
    """
    _require(event_type, ORDER_EVENTS, "order")
    overrides = {"link": f"/order/id/{order_id}"}
    if message is not None:
        overrides["message"] = message
    envelope = EventEnvelope.create(event_type, **overrides)
    return await publisher.publish_event(envelope, MutationContext.for_users(user_id))


async def publish_pos_event(
    publisher: Publisher,
    event_type: EventType,
    live: bool = True,
) -> bool:
    """
    Notify staff that the pending-order queue changed.

    A live (walk-in) order links under /pos/live, which makes staff clients
    with sound enabled play the new-order alert.
    """
    _require(event_type, POS_EVENTS, "POS")
    envelope = EventEnvelope.create(
        event_type,
        link=LIVE_POS_LINK if live else RESERVATION_POS_LINK,
    )
    return await publisher.publish_event(envelope)


async def publish_catalog_event(
    publisher: Publisher,
    event_type: EventType,
) -> bool:
    """Catalog, supplier and bonus-definition changes are silent invalidations."""
    _require(
        event_type,
        CATALOG_EVENTS | SUPPLIER_EVENTS | BONUS_ADMIN_EVENTS,
        "catalog",
    )
    return await publisher.publish_event(EventEnvelope.create(event_type))


async def publish_deposit_event(
    publisher: Publisher,
    user_id: str | int,
    status: str,
    status_changed: bool = True,
    transaction_id: int | str | None = None,
    notify_user: bool = True,
) -> bool:
    """
    Publish the outcome of a settled payment.

    Staff get DEPOSIT_UPDATE whenever the deposit status changed. The user
    gets DEPOSIT_RECHARGE, DEPOSIT_REFUND or DEPOSIT_FAILED when
    `notify_user` is set; a pending deposit produces no user event.

    Returns:
        True if every publish that was attempted succeeded.
    """
    results: list[bool] = []

    if status_changed:
        results.append(
            await publisher.publish_event(EventEnvelope.create(EventType.DEPOSIT_UPDATE))
        )

    if notify_user:
        link = f"/transaction?t={transaction_id}" if transaction_id is not None else None
        envelope: EventEnvelope | None = None
        if status == DepositStatus.SUCCESS:
            envelope = EventEnvelope.create(EventType.DEPOSIT_RECHARGE, link=link)
        elif status == DepositStatus.REFUNDED:
            envelope = EventEnvelope.create(EventType.DEPOSIT_REFUND, link=link)
        elif status == DepositStatus.FAILED:
            envelope = EventEnvelope.create(
                EventType.DEPOSIT_FAILED,
                notification_kind=NotificationKind.ERROR,
            )
        if envelope is not None:
            results.append(
                await publisher.publish_event(envelope, MutationContext.for_users(user_id))
            )

    return all(results)


async def publish_user_event(
    publisher: Publisher,
    event_type: EventType,
    user_id: str | int,
    message: str | None = None,
    link: str | None = None,
) -> bool:
    """User settings and bonus grants addressed to one user."""
    _require(event_type, USER_SETTING_EVENTS, "user")
    overrides: dict = {}
    if message is not None:
        overrides["message"] = message
    if link is not None:
        overrides["link"] = link
    envelope = EventEnvelope.create(event_type, **overrides)
    return await publisher.publish_event(envelope, MutationContext.for_users(user_id))


async def publish_user_authority_update(
    publisher: Publisher,
    user_id: str | int,
) -> bool:
    """
    Admins see the member list change; the user's own session refreshes
    through a silent USER_TOKEN_UPDATE.
    """
    admin_ok = await publisher.publish_event(
        EventEnvelope.create(EventType.USER_AUTHORITY_UPDATE)
    )
    user_ok = await publisher.publish_event(
        EventEnvelope.create(EventType.USER_TOKEN_UPDATE),
        MutationContext.for_users(user_id),
    )
    return admin_ok and user_ok


async def publish_menu_reservation_opened(
    publisher: Publisher,
    user_ids: Iterable[str | int],
    menu_id: int | str,
    menu_name: str,
) -> int:
    """
    Tell every opted-in user a reservation menu opened.

    The in-app event is silent (it only refreshes the reservation page); the
    device push carries the visible notification.

    Returns:
        Number of users the event was published to successfully.
    """
    recipients = sorted({str(uid) for uid in user_ids})
    if not recipients:
        return 0

    link = f"/reserve?m={menu_id}"
    message = f"{menu_name} is open for reservations"
    envelope = EventEnvelope.create(
        EventType.MENU_RESERVATION_UPDATE,
        message=message,
        link=link,
        skip_notify=True,
    )

    delivered = 0
    for user_id in recipients:
        if await publisher.publish(LogicalChannel.user(user_id), envelope):
            delivered += 1

    publisher.notify_devices(recipients, title=message, body="Tap to open the menu", link=link)
    logger.info(
        "Reservation menu notifications sent",
        menu_id=menu_id,
        recipients=len(recipients),
        delivered=delivered,
    )
    return delivered


async def publish_connection_count(publisher: Publisher, count: int) -> bool:
    """Publish the live connection count to admins."""
    envelope = EventEnvelope.create(
        EventType.CONNECTION_COUNT_UPDATE,
        message=f"{count} connected",
    )
    return await publisher.publish_event(envelope)
