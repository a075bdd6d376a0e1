"""
Tests for the domain event publishers.
"""

import pytest

from shared.infrastructure.events import (
    DepositStatus,
    EventType,
    publish_catalog_event,
    publish_connection_count,
    publish_deposit_event,
    publish_menu_reservation_opened,
    publish_order_event,
    publish_pos_event,
    publish_user_authority_update,
    publish_user_event,
)


def _types(transport):
    return [(channel, data["type"]) for channel, data in transport.published]


class TestOrderAndPos:
    @pytest.mark.asyncio
    async def test_order_event_links_to_order(self, publisher, transport):
        await publish_order_event(publisher, EventType.ORDER_ADD, user_id=42, order_id=1001)

        channel, data = transport.published[0]
        assert channel == "user-message-42"
        assert data["link"] == "/order/id/1001"

    @pytest.mark.asyncio
    async def test_order_event_rejects_other_families(self, publisher):
        with pytest.raises(ValueError):
            await publish_order_event(publisher, EventType.POS_ADD, user_id=1, order_id=1)

    @pytest.mark.asyncio
    async def test_live_pos_event(self, publisher, transport):
        await publish_pos_event(publisher, EventType.POS_ADD, live=True)
        assert transport.published == [
            ("staff-message", {
                "type": "POS_ADD",
                "message": "New order to process",
                "link": "/pos/live",
                "notificationKind": "success",
            }),
        ]

    @pytest.mark.asyncio
    async def test_reservation_pos_event(self, publisher, transport):
        await publish_pos_event(publisher, EventType.POS_UPDATE, live=False)
        assert transport.published[0][1]["link"] == "/pos/reservation"

    @pytest.mark.asyncio
    async def test_catalog_event_is_silent_and_public(self, publisher, transport, push_notifier):
        await publish_catalog_event(publisher, EventType.MENU_UPDATE)
        await publisher.drain()

        channel, data = transport.published[0]
        assert channel == "public-message"
        assert data["skipNotify"] is True
        assert push_notifier.calls == []

    @pytest.mark.asyncio
    async def test_supplier_event_goes_to_staff(self, publisher, transport):
        await publish_catalog_event(publisher, EventType.SUPPLIER_ADD)
        assert _types(transport) == [("staff-message", "SUPPLIER_ADD")]


class TestDeposits:
    @pytest.mark.asyncio
    async def test_success_notifies_staff_and_user(self, publisher, transport):
        ok = await publish_deposit_event(
            publisher, user_id=42, status=DepositStatus.SUCCESS, transaction_id="tx9",
        )

        assert ok is True
        assert _types(transport) == [
            ("staff-message", "DEPOSIT_UPDATE"),
            ("user-message-42", "DEPOSIT_RECHARGE"),
        ]
        assert transport.published[1][1]["link"] == "/transaction?t=tx9"

    @pytest.mark.asyncio
    async def test_failure_is_error_kind(self, publisher, transport):
        await publish_deposit_event(publisher, user_id=42, status=DepositStatus.FAILED)

        channel, data = transport.published[-1]
        assert data["type"] == "DEPOSIT_FAILED"
        assert data["notificationKind"] == "error"

    @pytest.mark.asyncio
    async def test_pending_produces_no_user_event(self, publisher, transport):
        await publish_deposit_event(publisher, user_id=42, status=DepositStatus.PENDING)
        assert _types(transport) == [("staff-message", "DEPOSIT_UPDATE")]

    @pytest.mark.asyncio
    async def test_unchanged_status_skips_staff(self, publisher, transport):
        await publish_deposit_event(
            publisher, user_id=42, status=DepositStatus.REFUNDED, status_changed=False,
        )
        assert _types(transport) == [("user-message-42", "DEPOSIT_REFUND")]


class TestUsers:
    @pytest.mark.asyncio
    async def test_authority_update(self, publisher, transport):
        await publish_user_authority_update(publisher, user_id=42)
        assert _types(transport) == [
            ("admin-message", "USER_AUTHORITY_UPDATE"),
            ("user-message-42", "USER_TOKEN_UPDATE"),
        ]

    @pytest.mark.asyncio
    async def test_user_event_with_message(self, publisher, transport):
        await publish_user_event(
            publisher, EventType.BONUS_APPLY, user_id=5, message="10 points granted",
        )
        assert transport.published[0] == ("user-message-5", {
            "type": "BONUS_APPLY",
            "message": "10 points granted",
            "notificationKind": "success",
        })

    @pytest.mark.asyncio
    async def test_user_event_rejects_order_types(self, publisher):
        with pytest.raises(ValueError):
            await publish_user_event(publisher, EventType.ORDER_ADD, user_id=5)


class TestReservationMenu:
    @pytest.mark.asyncio
    async def test_silent_event_per_user_plus_device_push(self, publisher, transport, push_notifier):
        delivered = await publish_menu_reservation_opened(
            publisher, user_ids=[3, 1, 3], menu_id=8, menu_name="Friday lunch",
        )
        await publisher.drain()

        assert delivered == 2
        assert [c for c, _ in transport.published] == ["user-message-1", "user-message-3"]
        assert all(d["skipNotify"] for _, d in transport.published)
        assert push_notifier.calls == [
            (["1", "3"], "Friday lunch is open for reservations", "Tap to open the menu", "/reserve?m=8"),
        ]

    @pytest.mark.asyncio
    async def test_no_recipients(self, publisher, transport):
        assert await publish_menu_reservation_opened(publisher, [], 1, "Menu") == 0
        assert transport.published == []


class TestConnectionCount:
    @pytest.mark.asyncio
    async def test_count_goes_to_admins(self, publisher, transport):
        await publish_connection_count(publisher, 12)
        channel, data = transport.published[0]
        assert channel == "admin-message"
        assert data["message"] == "12 connected"
