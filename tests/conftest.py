"""
Pytest configuration and fixtures for the realtime tests.
"""

import asyncio

import pytest
import pytest_asyncio

from realtime_client import NotificationCenter, QueryCache, ReconciliationEngine
from realtime_client.reconciliation import Preferences
from shared.infrastructure.events import (
    EventCircuitBreaker,
    InProcessTransport,
    Publisher,
    RealtimeServices,
)
from shared.infrastructure.events.frames import (
    FrameKind,
    decode_frame,
    denied_frame,
    encode_frame,
    event_frame,
    pong_frame,
    subscribed_frame,
)
from shared.security.auth import sign_jwt
from shared.security.roles import Role
from shared.utils.exceptions import TransportClosedError
from shared.utils.retry import RetryConfig


# Fast, deterministic backoff for client tests
FAST_RETRY = RetryConfig(initial_delay=0.01, max_delay=0.05, jitter_factor=0.0)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll until predicate() is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(interval)


def _server_frame(frame: dict) -> dict:
    return decode_frame(encode_frame(frame))


class FakeGatewayTransport:
    """
    ClientTransport that plays the gateway's side of the frame protocol.

    - subscribe frames are acknowledged (or denied for channels in `deny`)
    - `emit` delivers an event to subscribed channels
    - `drop` closes the socket from the server side
    """

    def __init__(self, deny: dict[str, str] | None = None, ack: bool = True):
        self.deny = deny or {}
        self.ack = ack
        self.open_count = 0
        self.fail_opens = 0
        self.fail_open_error: TransportClosedError | None = None
        self.sent: list[dict] = []
        self.subscribed: set[str] = set()
        self.is_open = False
        self._incoming: asyncio.Queue | None = None

    async def open(self) -> None:
        self.open_count += 1
        if self.fail_opens:
            self.fail_opens -= 1
            raise self.fail_open_error or TransportClosedError("connection refused", transient=True)
        self._incoming = asyncio.Queue()
        self.subscribed = set()
        self.is_open = True

    async def send(self, frame: dict) -> None:
        if not self.is_open:
            raise TransportClosedError("socket is not open")
        self.sent.append(frame)
        kind = frame["kind"]
        channel = frame.get("channel")
        if kind == FrameKind.SUBSCRIBE.value:
            if channel in self.deny:
                self._incoming.put_nowait(_server_frame(denied_frame(channel, self.deny[channel])))
            elif self.ack:
                self.subscribed.add(channel)
                self._incoming.put_nowait(_server_frame(subscribed_frame(channel)))
        elif kind == FrameKind.UNSUBSCRIBE.value:
            self.subscribed.discard(channel)
        elif kind == FrameKind.PING.value:
            self._incoming.put_nowait(_server_frame(pong_frame()))

    async def receive(self) -> dict:
        if self._incoming is None:
            raise TransportClosedError("socket is not open")
        item = await self._incoming.get()
        if isinstance(item, TransportClosedError):
            self.is_open = False
            raise item
        return item

    async def close(self) -> None:
        if self.is_open:
            self.is_open = False
            self._incoming.put_nowait(TransportClosedError("closed by client", transient=True))

    def emit(self, channel: str, payload: dict) -> None:
        if self.is_open and channel in self.subscribed:
            self._incoming.put_nowait(_server_frame(event_frame(channel, payload)))

    def drop(self, transient: bool = True, code: int | None = None) -> None:
        if self.is_open:
            self._incoming.put_nowait(
                TransportClosedError("closed prematurely", transient=transient, code=code)
            )

    def sent_kinds(self, kind: FrameKind) -> list[str]:
        return [f.get("channel") for f in self.sent if f["kind"] == kind.value]


class RecordingPushNotifier:
    """PushNotifier that records calls, optionally failing."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.calls: list[tuple] = []
        self.closed = False

    async def push_to_users(self, user_ids, title, body, link=None) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((list(user_ids), title, body, link))
        if self.fail:
            raise RuntimeError("push provider unavailable")

    async def close(self) -> None:
        self.closed = True


class RecordingTransport(InProcessTransport):
    """In-process transport that records every publish."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel, envelope) -> int:
        if self.fail:
            raise ConnectionError("transport down")
        self.published.append((channel, envelope.to_wire()))
        return await super().publish(channel, envelope)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def push_notifier():
    return RecordingPushNotifier()


@pytest_asyncio.fixture
async def transport():
    transport = RecordingTransport()
    await transport.connect()
    yield transport
    await transport.close()


@pytest_asyncio.fixture
async def publisher(transport, push_notifier):
    publisher = Publisher(
        transport=transport,
        push_notifier=push_notifier,
        circuit_breaker=EventCircuitBreaker(failure_threshold=3, recovery_timeout=60),
    )
    yield publisher
    await publisher.drain()


@pytest_asyncio.fixture
async def services(push_notifier):
    services = RealtimeServices.build(
        transport=RecordingTransport(),
        push_notifier=push_notifier,
    )
    await services.start()
    yield services
    await services.close()


@pytest.fixture
def cache():
    return QueryCache()


@pytest.fixture
def notifications():
    return NotificationCenter(duration=60, suppression_window=3)


@pytest.fixture
def alert_calls():
    return []


@pytest.fixture
def engine(cache, notifications, alert_calls):
    return ReconciliationEngine(
        cache,
        notifications,
        preferences=Preferences(sound_enabled=True),
        alert_player=lambda: alert_calls.append(True),
        live_link_prefixes=("/pos/live", "/live"),
    )


@pytest.fixture
def gateway_transport():
    return FakeGatewayTransport()


@pytest.fixture
def user_token():
    return sign_jwt("42", Role.USER)


@pytest.fixture
def staff_token():
    return sign_jwt("7", Role.STAFF)


@pytest.fixture
def admin_token():
    return sign_jwt("1", Role.ADMIN)
