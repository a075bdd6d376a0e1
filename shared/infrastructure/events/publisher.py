"""
Event Publisher.

Writes envelopes to channels through the configured transport. Publishing is
best effort: a failed write is logged and reported as False, never raised,
and never retried (the next mutation supersedes it; clients recover missed
events through their reconnect sweep).

The push side channel runs as a background task so a slow or failing push
provider never delays or fails in-app delivery.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

from shared.config.logging import get_logger
from shared.config.settings import settings
from .channels import ChannelKind, LogicalChannel
from .circuit_breaker import EventCircuitBreaker
from .event_schema import EventEnvelope, MutationContext
from .event_types import MAX_EVENT_SIZE
from .push import LoggingPushNotifier, PushNotifier
from .routing import ChannelRouter
from .transport.base import TransportAdapter

logger = get_logger(__name__)

DEFAULT_PUSH_TITLE = "Cafeteria"


def _validate_event_size(event_json: str, event_type: str, max_size: int) -> None:
    """Raises ValueError when the serialized envelope exceeds the limit."""
    size = len(event_json.encode("utf-8"))
    if size > max_size:
        raise ValueError(
            f"Event {event_type} exceeds max size: {size} > {max_size} bytes"
        )


def _task_error_callback(task: asyncio.Task) -> None:
    """Log errors from fire-and-forget tasks instead of losing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background publish task failed",
            task_name=task.get_name(),
            error=str(exc),
            error_type=type(exc).__name__,
        )


class Publisher:
    """
    Publishes envelopes to logical channels.

    Args:
        transport: Connected transport adapter.
        router: Resolves channels for `publish_event`.
        push_notifier: Device push provider (logging provider by default).
        circuit_breaker: Guards the transport write.
        max_event_size: Serialized size limit in bytes.
    """

    def __init__(
        self,
        transport: TransportAdapter,
        router: ChannelRouter | None = None,
        push_notifier: PushNotifier | None = None,
        circuit_breaker: EventCircuitBreaker | None = None,
        max_event_size: int = MAX_EVENT_SIZE,
        push_title: str = DEFAULT_PUSH_TITLE,
    ):
        self._transport = transport
        self._router = router or ChannelRouter()
        self._push = push_notifier or LoggingPushNotifier()
        self._breaker = circuit_breaker or EventCircuitBreaker(
            failure_threshold=settings.publish_failure_threshold,
            recovery_timeout=settings.publish_recovery_timeout,
        )
        self._max_event_size = max_event_size
        self._push_title = push_title
        self._background: set[asyncio.Task] = set()
        # A fresh transport connection closes the circuit without waiting
        self._transport.on_open(self._breaker.reset)

    @property
    def circuit_breaker(self) -> EventCircuitBreaker:
        return self._breaker

    @property
    def router(self) -> ChannelRouter:
        return self._router

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(
        self,
        channel: LogicalChannel | str,
        envelope: EventEnvelope,
        push_user_ids: Iterable[str] | None = None,
    ) -> bool:
        """
        Publish one envelope to one channel.

        Args:
            channel: Logical channel, or its logical/wire name.
            envelope: Envelope to deliver.
            push_user_ids: Device push recipients; ignored for silent envelopes.
                Defaults to the owner of a user channel.

        Returns:
            True if the transport accepted the write.

        Raises:
            ValueError: If the envelope exceeds the size limit.
            MalformedChannelError: If a channel name cannot be parsed.
        """
        if not isinstance(channel, LogicalChannel):
            channel = LogicalChannel.parse(channel)

        event_json = envelope.to_json()
        _validate_event_size(event_json, envelope.type.value, self._max_event_size)

        delivered = await self._write(channel, envelope)
        if push_user_ids is None and channel.kind is ChannelKind.USER:
            push_user_ids = (channel.user_id,)
        if push_user_ids:
            self._schedule_push(envelope, push_user_ids)
        return delivered

    async def publish_event(
        self,
        envelope: EventEnvelope,
        context: MutationContext | None = None,
    ) -> bool:
        """
        Resolve the envelope's channels and publish to each.

        Push recipients are the context's affected users.

        Returns:
            True if every channel write succeeded.
        """
        channels = self._router.resolve_channels_for_event(envelope, context)
        _validate_event_size(envelope.to_json(), envelope.type.value, self._max_event_size)

        results = [await self._write(channel, envelope) for channel in channels]
        if context and context.affected_user_ids:
            self._schedule_push(envelope, context.affected_user_ids)
        return all(results)

    def schedule(
        self,
        envelope: EventEnvelope,
        context: MutationContext | None = None,
    ) -> asyncio.Task:
        """
        Fire-and-forget `publish_event` for mutation code that must not wait.

        Errors (including routing errors) are logged by the task callback.
        """
        return self._spawn(
            self.publish_event(envelope, context),
            name=f"publish:{envelope.type.value}",
        )

    async def _write(self, channel: LogicalChannel, envelope: EventEnvelope) -> bool:
        if not self._breaker.can_execute():
            logger.warning(
                "Event publish skipped, circuit breaker open",
                channel=channel.wire_name,
                event_type=envelope.type.value,
                retry_after=round(self._breaker.retry_after, 1),
            )
            return False

        try:
            receivers = await self._transport.publish(channel.wire_name, envelope)
        except Exception as e:
            self._breaker.record_failure()
            logger.error(
                "Event publish failed",
                channel=channel.wire_name,
                event_type=envelope.type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self._breaker.record_success()
        logger.debug(
            "Event published",
            channel=channel.wire_name,
            event_type=envelope.type.value,
            receivers=receivers,
        )
        return True

    # -------------------------------------------------------------------------
    # Push side channel
    # -------------------------------------------------------------------------

    def _schedule_push(self, envelope: EventEnvelope, user_ids: Iterable[str]) -> None:
        if envelope.skip_notify:
            return
        self.notify_devices(
            user_ids,
            title=self._push_title,
            body=envelope.effective_message,
            link=envelope.link,
        )

    def notify_devices(
        self,
        user_ids: Iterable[str],
        title: str,
        body: str,
        link: str | None = None,
    ) -> asyncio.Task | None:
        """
        Schedule a device push regardless of the in-app skip flag.

        Used where the in-app event is silent but the user still gets a
        device notification (reservation menu opened).
        """
        recipients = sorted({str(uid) for uid in user_ids})
        if not recipients:
            return None
        return self._spawn(
            self._push_safely(recipients, title, body, link),
            name="push",
        )

    async def _push_safely(
        self,
        recipients: list[str],
        title: str,
        body: str,
        link: str | None,
    ) -> None:
        try:
            await self._push.push_to_users(recipients, title, body, link)
        except Exception as e:
            logger.warning(
                "Push notification failed",
                title=title,
                recipients=len(recipients),
                error=str(e),
                error_type=type(e).__name__,
            )

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_task_error_callback)
        return task

    async def drain(self) -> None:
        """Wait for scheduled publishes and pushes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self._push.close()
