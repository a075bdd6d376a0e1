"""
Tests for the Client Subscription Manager state machine.

Runs against FakeGatewayTransport, which acknowledges subscribe frames the
way the gateway does and can drop the socket on demand.
"""

import asyncio

import pytest

from realtime_client import ClientSubscriptionManager, ConnectionState, GatewayClientTransport
from shared.infrastructure.events import EventEnvelope, EventType
from shared.infrastructure.events.frames import FrameKind
from shared.utils.exceptions import (
    MalformedChannelError,
    SubscriptionDeniedError,
    TransportClosedError,
)
from tests.conftest import FAST_RETRY, FakeGatewayTransport, wait_until


def _manager(transport, engine, **kwargs):
    kwargs.setdefault("retry_config", FAST_RETRY)
    kwargs.setdefault("subscribe_timeout", 0.5)
    return ClientSubscriptionManager(transport, engine, **kwargs)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connects_and_subscribes_interests(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        await manager.declare_interest("user:42")
        await manager.declare_interest("public-message")
        assert manager.state is ConnectionState.DISCONNECTED

        manager.start()
        await manager.wait_connected(timeout=2)

        assert manager.state is ConnectionState.CONNECTED
        assert gateway_transport.subscribed == {"user-message-42", "public-message"}
        assert engine.sweep_count == 0
        await manager.close()
        assert manager.state is ConnectionState.CLOSING

    @pytest.mark.asyncio
    async def test_interests_are_normalized_to_wire_names(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        await manager.declare_interest("user:42")
        await manager.declare_interest("user-message-42")
        assert manager.interests == {"user-message-42"}

    @pytest.mark.asyncio
    async def test_malformed_interest_raises(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        with pytest.raises(MalformedChannelError):
            await manager.declare_interest("everyone")

    @pytest.mark.asyncio
    async def test_declare_while_connected_subscribes_now(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        manager.start()
        await manager.wait_connected(timeout=2)

        assert await manager.declare_interest("staff-message") is True
        assert "staff-message" in gateway_transport.subscribed

        await manager.drop_interest("staff-message")
        assert "staff-message" not in gateway_transport.subscribed
        await manager.close()

    @pytest.mark.asyncio
    async def test_open_callbacks_fire_in_order(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        calls = []
        manager.add_on_open_callback(lambda: calls.append("first"))
        remove = manager.add_on_open_callback(lambda: calls.append("removed"))
        manager.add_on_open_callback(lambda: calls.append("second"))
        remove()

        manager.start()
        await manager.wait_connected(timeout=2)
        await wait_until(lambda: len(calls) == 2)

        assert calls == ["first", "second"]
        await manager.close()


class TestEvents:
    @pytest.mark.asyncio
    async def test_events_reach_engine(self, gateway_transport, engine, cache, notifications):
        manager = _manager(gateway_transport, engine)
        await manager.declare_interest("user:42")
        manager.start()
        await manager.wait_connected(timeout=2)

        envelope = EventEnvelope.create(EventType.ORDER_ADD, link="/order/id/1")
        gateway_transport.emit("user-message-42", envelope.to_wire())
        await wait_until(lambda: notifications.visible())

        assert notifications.visible()[0].message == "Order placed"
        await manager.close()

    @pytest.mark.asyncio
    async def test_events_for_dropped_interest_are_ignored(self, gateway_transport, engine, notifications):
        manager = _manager(gateway_transport, engine)
        await manager.declare_interest("public-message")
        manager.start()
        await manager.wait_connected(timeout=2)

        manager._interests.discard("public-message")
        gateway_transport.emit("public-message", EventEnvelope.create(EventType.ORDER_ADD).to_wire())
        await asyncio.sleep(0.05)

        assert notifications.visible() == []
        await manager.close()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnect_resubscribes_and_sweeps_once(self, gateway_transport, engine, notifications):
        manager = _manager(gateway_transport, engine)
        await manager.declare_interest("user:42")
        await manager.declare_interest("staff-message")
        closes = []
        manager.add_on_close_callback(closes.append)

        manager.start()
        await manager.wait_connected(timeout=2)
        assert engine.sweep_count == 0

        gateway_transport.drop()
        await wait_until(lambda: manager.connect_count == 2)

        assert gateway_transport.subscribed == {"user-message-42", "staff-message"}
        assert engine.sweep_count == 1
        assert len(closes) == 1 and closes[0].transient

        [notice] = notifications.visible()
        assert notice.message == "Connection restored"
        await manager.close()

    @pytest.mark.asyncio
    async def test_backs_off_until_gateway_is_reachable(self, gateway_transport, engine):
        gateway_transport.fail_opens = 3
        manager = _manager(gateway_transport, engine)
        manager.start()

        await manager.wait_connected(timeout=2)
        assert gateway_transport.open_count == 4
        # First successful connect: no sweep
        assert engine.sweep_count == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_fatal_closure_reports_error_and_keeps_retrying(self, engine):
        transport = FakeGatewayTransport()
        transport.fail_opens = 1
        transport.fail_open_error = TransportClosedError("auth failed", transient=False, code=4001)
        errors = []
        manager = _manager(transport, engine, error_handler=errors.append)

        manager.start()
        await manager.wait_connected(timeout=2)

        assert len(errors) == 1
        assert errors[0].code == 4001
        await manager.close()

    @pytest.mark.asyncio
    async def test_unexpected_open_error_backs_off_and_retries(self, engine):
        transport = FakeGatewayTransport()
        transport.fail_opens = 2
        transport.fail_open_error = RuntimeError("token refresh failed")
        errors = []
        manager = _manager(transport, engine, error_handler=errors.append)

        manager.start()
        await manager.wait_connected(timeout=2)

        assert transport.open_count == 3
        assert errors == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_transient_closure_is_not_an_error(self, gateway_transport, engine):
        errors = []
        manager = _manager(gateway_transport, engine, error_handler=errors.append)
        manager.start()
        await manager.wait_connected(timeout=2)

        gateway_transport.drop()
        await wait_until(lambda: manager.connect_count == 2)

        assert errors == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_subscribe_timeout_triggers_reconnect(self, engine):
        transport = FakeGatewayTransport(ack=False)
        manager = _manager(transport, engine, subscribe_timeout=0.05)
        await manager.declare_interest("public-message")
        manager.start()

        await wait_until(lambda: transport.open_count >= 2)
        assert manager.state is not ConnectionState.CONNECTED

        transport.ack = True
        await manager.wait_connected(timeout=2)
        await manager.close()

    @pytest.mark.asyncio
    async def test_request_reconnect(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        manager.start()
        await manager.wait_connected(timeout=2)

        manager.request_reconnect()
        await wait_until(lambda: manager.connect_count == 2)
        assert engine.sweep_count == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine)
        manager.start()
        await manager.wait_connected(timeout=2)
        await manager.close()

        opens = gateway_transport.open_count
        await asyncio.sleep(0.1)
        assert gateway_transport.open_count == opens


class TestDenied:
    @pytest.mark.asyncio
    async def test_denied_channel_is_removed_and_reported(self, engine):
        transport = FakeGatewayTransport(deny={"staff-message": "role_too_low"})
        errors = []
        manager = _manager(transport, engine, error_handler=errors.append)
        await manager.declare_interest("user:42")
        await manager.declare_interest("staff-message")

        manager.start()
        await manager.wait_connected(timeout=2)

        assert manager.interests == {"user-message-42"}
        assert isinstance(errors[0], SubscriptionDeniedError)
        assert errors[0].reason == "role_too_low"
        await manager.close()

    @pytest.mark.asyncio
    async def test_denied_while_connected_raises(self, engine, notifications):
        transport = FakeGatewayTransport(deny={"admin-message": "role_too_low"})
        manager = _manager(transport, engine)
        manager.start()
        await manager.wait_connected(timeout=2)

        with pytest.raises(SubscriptionDeniedError):
            await manager.declare_interest("admin-message")
        assert "admin-message" not in manager.interests
        # Default handler surfaces an error notification
        assert notifications.visible()[0].kind.value == "error"
        await manager.close()

    @pytest.mark.asyncio
    async def test_keepalive_pings(self, gateway_transport, engine):
        manager = _manager(gateway_transport, engine, ping_interval=0.02)
        manager.start()
        await manager.wait_connected(timeout=2)

        await wait_until(lambda: len(gateway_transport.sent_kinds(FrameKind.PING)) >= 2)
        await manager.close()


class TestGatewayClientTransport:
    @pytest.mark.asyncio
    async def test_token_failure_is_transient(self):
        def token():
            raise RuntimeError("token refresh failed")

        transport = GatewayClientTransport("ws://localhost:8001/ws", token_provider=token)
        with pytest.raises(TransportClosedError) as exc_info:
            await transport.open()
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_invalid_url_is_transient(self):
        transport = GatewayClientTransport("not a websocket url", token_provider=lambda: "t")
        with pytest.raises(TransportClosedError) as exc_info:
            await transport.open()
        assert exc_info.value.transient
