"""
Channel Router.

Maps an event to the logical channels that should receive it, and decides
whether a principal may subscribe to a channel. Both operations are pure
functions of their inputs with no shared state, so they are safe to call
concurrently.

Routing rules:
- user audience (your order, your deposit): user:<id> for each affected user
- public audience (catalog changes): public
- staff audience (POS queue, deposit status, suppliers): staff
- admin audience (authority changes, bonus management, connection counts): admin

Subscription rules:
- user:<id> requires principal_id == id
- public/staff/admin require the principal's role to dominate the channel's
  minimum role (SERVER > ADMIN > STAFF > USER)
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Final

from shared.config.logging import get_logger, mask_user_id
from shared.security.roles import Principal, Role, role_dominates
from shared.utils.exceptions import SubscriptionDeniedError
from .channels import ChannelKind, LogicalChannel
from .event_schema import EventEnvelope, MutationContext
from .event_types import Audience, EventType, get_event_spec

logger = get_logger(__name__)


CHANNEL_MIN_ROLE: Final = MappingProxyType({
    ChannelKind.PUBLIC: Role.USER,
    ChannelKind.STAFF: Role.STAFF,
    ChannelKind.ADMIN: Role.ADMIN,
})

_GROUP_CHANNELS: Final = MappingProxyType({
    Audience.PUBLIC: LogicalChannel.public(),
    Audience.STAFF: LogicalChannel.staff(),
    Audience.ADMIN: LogicalChannel.admin(),
})


def resolve_channels_for_event(
    event: EventEnvelope | EventType,
    context: MutationContext | None = None,
) -> tuple[LogicalChannel, ...]:
    """
    Resolve the channels an event must be published to.

    Args:
        event: Envelope (or bare type) being published.
        context: Ids of the users the mutation affected.

    Returns:
        Non-empty tuple of channels in a deterministic order.

    Raises:
        ValueError: If a user-scoped event has no affected users.
    """
    event_type = event.type if isinstance(event, EventEnvelope) else event
    audience = get_event_spec(event_type).audience

    if audience is Audience.USER:
        user_ids = sorted(set(context.affected_user_ids)) if context else []
        if not user_ids:
            raise ValueError(
                f"{event_type.value} is user-scoped and needs at least one affected user id"
            )
        return tuple(LogicalChannel.user(uid) for uid in user_ids)

    return (_GROUP_CHANNELS[audience],)


def authorize_subscription(
    principal_role: Role | str,
    principal_id: str,
    channel: LogicalChannel,
) -> bool:
    """Pure predicate: may this principal subscribe to this channel?"""
    if channel.kind is ChannelKind.USER:
        return principal_id is not None and str(principal_id) == channel.user_id
    return role_dominates(principal_role, CHANNEL_MIN_ROLE[channel.kind])


def require_subscription(principal: Principal, channel_name: str) -> LogicalChannel:
    """
    Parse and authorize a subscription request.

    Returns:
        The parsed channel.

    Raises:
        MalformedChannelError: If the name is not a valid channel.
        SubscriptionDeniedError: If the principal may not subscribe.
    """
    channel = LogicalChannel.parse(channel_name)
    if not authorize_subscription(principal.role, principal.principal_id, channel):
        reason = "not_owner" if channel.kind is ChannelKind.USER else "role_too_low"
        logger.warning(
            "Subscription denied",
            channel=channel.wire_name,
            role=principal.role.value,
            user_id=mask_user_id(principal.principal_id),
            reason=reason,
        )
        raise SubscriptionDeniedError(channel.wire_name, reason=reason)
    return channel


class ChannelRouter:
    """
    Object facade over the routing functions, for injection into the
    publisher and the gateway.
    """

    def resolve_channels_for_event(
        self,
        event: EventEnvelope | EventType,
        context: MutationContext | None = None,
    ) -> tuple[LogicalChannel, ...]:
        return resolve_channels_for_event(event, context)

    def authorize_subscription(
        self,
        principal_role: Role | str,
        principal_id: str,
        channel: LogicalChannel,
    ) -> bool:
        return authorize_subscription(principal_role, principal_id, channel)

    def require_subscription(self, principal: Principal, channel_name: str) -> LogicalChannel:
        return require_subscription(principal, channel_name)
