"""
Tests for the Publisher.

Publishing is best effort: transport failures are reported as False, the
push side channel never affects in-app delivery.
"""

import asyncio

import pytest

from shared.infrastructure.events import (
    EventCircuitBreaker,
    EventEnvelope,
    EventType,
    LogicalChannel,
    MutationContext,
    Publisher,
)
from shared.infrastructure.events.circuit_breaker import CircuitState
from shared.utils.exceptions import MalformedChannelError
from tests.conftest import RecordingPushNotifier, RecordingTransport


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_writes_wire_name(self, publisher, transport):
        envelope = EventEnvelope.create(EventType.POS_ADD, link="/pos/live")

        assert await publisher.publish(LogicalChannel.staff(), envelope) is True
        assert transport.published == [("staff-message", envelope.to_wire())]

    @pytest.mark.asyncio
    async def test_publish_accepts_channel_names(self, publisher, transport):
        envelope = EventEnvelope.create(EventType.ORDER_ADD)
        await publisher.publish("user:42", envelope)
        await publisher.publish("user-message-43", envelope)

        assert [c for c, _ in transport.published] == ["user-message-42", "user-message-43"]

    @pytest.mark.asyncio
    async def test_malformed_channel_raises(self, publisher):
        with pytest.raises(MalformedChannelError):
            await publisher.publish("nobody", EventEnvelope.create(EventType.ORDER_ADD))

    @pytest.mark.asyncio
    async def test_oversized_event_raises(self, transport):
        publisher = Publisher(transport=transport, max_event_size=64)
        envelope = EventEnvelope.create(EventType.ORDER_ADD, message="x" * 200)

        with pytest.raises(ValueError):
            await publisher.publish(LogicalChannel.user("1"), envelope)
        assert transport.published == []

    @pytest.mark.asyncio
    async def test_transport_failure_returns_false(self, push_notifier):
        transport = RecordingTransport(fail=True)
        await transport.connect()
        publisher = Publisher(transport=transport, push_notifier=push_notifier)

        result = await publisher.publish(
            LogicalChannel.user("1"), EventEnvelope.create(EventType.ORDER_ADD),
        )
        assert result is False
        await publisher.drain()
        await transport.close()

    @pytest.mark.asyncio
    async def test_open_circuit_skips_transport(self, push_notifier):
        transport = RecordingTransport(fail=True)
        await transport.connect()
        breaker = EventCircuitBreaker(failure_threshold=2, recovery_timeout=60)
        publisher = Publisher(transport=transport, circuit_breaker=breaker)
        envelope = EventEnvelope.create(EventType.POS_ADD)

        for _ in range(2):
            await publisher.publish(LogicalChannel.staff(), envelope)
        assert breaker.state is CircuitState.OPEN

        transport.fail = False
        assert await publisher.publish(LogicalChannel.staff(), envelope) is False
        assert transport.published == []
        await transport.close()

    @pytest.mark.asyncio
    async def test_transport_reconnect_closes_circuit(self):
        transport = RecordingTransport(fail=True)
        await transport.connect()
        breaker = EventCircuitBreaker(failure_threshold=1, recovery_timeout=60)
        publisher = Publisher(transport=transport, circuit_breaker=breaker)
        envelope = EventEnvelope.create(EventType.POS_ADD)

        await publisher.publish(LogicalChannel.staff(), envelope)
        assert breaker.state is CircuitState.OPEN

        transport.fail = False
        await transport.close()
        await transport.connect()

        assert breaker.state is CircuitState.CLOSED
        assert await publisher.publish(LogicalChannel.staff(), envelope) is True
        assert [c for c, _ in transport.published] == ["staff-message"]
        await transport.close()

    @pytest.mark.asyncio
    async def test_user_channel_pushes_to_its_owner(self, publisher, push_notifier):
        envelope = EventEnvelope.create(EventType.ORDER_ADD, link="/order/id/7")

        await publisher.publish(LogicalChannel.user("42"), envelope)
        await publisher.drain()

        assert push_notifier.calls == [(["42"], "Cafeteria", "Order placed", "/order/id/7")]

    @pytest.mark.asyncio
    async def test_explicit_recipients_override_channel_owner(self, publisher, push_notifier):
        envelope = EventEnvelope.create(EventType.ORDER_ADD)

        await publisher.publish(LogicalChannel.user("42"), envelope, push_user_ids=["42", "43"])
        await publisher.drain()

        assert push_notifier.calls[0][0] == ["42", "43"]

    @pytest.mark.asyncio
    async def test_shared_channels_push_nobody_by_default(self, publisher, push_notifier):
        await publisher.publish(LogicalChannel.staff(), EventEnvelope.create(EventType.POS_ADD))
        await publisher.drain()
        assert push_notifier.calls == []

    @pytest.mark.asyncio
    async def test_silent_user_event_is_not_pushed(self, publisher, push_notifier):
        await publisher.publish(
            LogicalChannel.user("42"), EventEnvelope.create(EventType.USER_TOKEN_UPDATE),
        )
        await publisher.drain()
        assert push_notifier.calls == []


class TestPublishEvent:
    @pytest.mark.asyncio
    async def test_resolves_channels_and_pushes(self, publisher, transport, push_notifier):
        envelope = EventEnvelope.create(EventType.ORDER_ADD, link="/order/id/5")

        assert await publisher.publish_event(envelope, MutationContext.for_users(42)) is True
        await publisher.drain()

        assert transport.published == [("user-message-42", envelope.to_wire())]
        assert push_notifier.calls == [(["42"], "Cafeteria", "Order placed", "/order/id/5")]

    @pytest.mark.asyncio
    async def test_silent_event_is_not_pushed(self, publisher, push_notifier):
        envelope = EventEnvelope.create(EventType.USER_TOKEN_UPDATE)

        await publisher.publish_event(envelope, MutationContext.for_users(42))
        await publisher.drain()

        assert push_notifier.calls == []

    @pytest.mark.asyncio
    async def test_push_failure_does_not_affect_delivery(self, transport):
        push = RecordingPushNotifier(fail=True)
        publisher = Publisher(transport=transport, push_notifier=push)

        result = await publisher.publish_event(
            EventEnvelope.create(EventType.DEPOSIT_RECHARGE), MutationContext.for_users(42),
        )
        await publisher.drain()

        assert result is True
        assert len(push.calls) == 1
        assert len(transport.published) == 1

    @pytest.mark.asyncio
    async def test_slow_push_does_not_delay_publish(self, transport):
        push = RecordingPushNotifier(delay=5.0)
        publisher = Publisher(transport=transport, push_notifier=push)

        await asyncio.wait_for(
            publisher.publish_event(
                EventEnvelope.create(EventType.ORDER_ADD), MutationContext.for_users(1),
            ),
            timeout=1.0,
        )
        assert len(transport.published) == 1
        pending = list(publisher._background)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_user_event_without_users_raises(self, publisher):
        with pytest.raises(ValueError):
            await publisher.publish_event(EventEnvelope.create(EventType.ORDER_ADD))

    @pytest.mark.asyncio
    async def test_schedule_logs_routing_errors(self, publisher, transport):
        task = publisher.schedule(EventEnvelope.create(EventType.ORDER_ADD))
        await asyncio.gather(task, return_exceptions=True)

        assert isinstance(task.exception(), ValueError)
        assert transport.published == []

    @pytest.mark.asyncio
    async def test_notify_devices_ignores_skip_flag(self, publisher, push_notifier):
        task = publisher.notify_devices(["2", "1", "2"], "Cafeteria", "Menu open", "/reserve?m=3")
        await task

        assert push_notifier.calls == [(["1", "2"], "Cafeteria", "Menu open", "/reserve?m=3")]

    @pytest.mark.asyncio
    async def test_close_closes_push_notifier(self, publisher, push_notifier):
        await publisher.close()
        assert push_notifier.closed
