"""
RealtimeClient: wires the client pieces together for one session.

    client = RealtimeClient.connect_to_gateway(url, token_provider=lambda: token)
    await client.start(user_id="42", role=Role.STAFF)
    ...
    await client.close()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from shared.config.settings import settings
from shared.infrastructure.events.channels import LogicalChannel
from shared.security.roles import Role, parse_role, role_dominates
from .cache import QueryCache
from .notifications import NotificationCenter
from .reconciliation import Preferences, ReconciliationEngine
from .subscription import ClientSubscriptionManager
from .transport import ClientTransport, GatewayClientTransport


def default_interests(user_id: str, role: Role | str) -> list[str]:
    """Channels a signed-in user listens on: their own, public, and the group channels their role reaches."""
    role = parse_role(role)
    channels = [LogicalChannel.user(user_id), LogicalChannel.public()]
    if role_dominates(role, Role.STAFF):
        channels.append(LogicalChannel.staff())
    if role_dominates(role, Role.ADMIN):
        channels.append(LogicalChannel.admin())
    return [channel.wire_name for channel in channels]


@dataclass
class RealtimeClient:
    transport: ClientTransport
    cache: QueryCache = field(default_factory=QueryCache)
    notifications: NotificationCenter = field(default_factory=NotificationCenter)
    preferences: Preferences = field(default_factory=Preferences)
    alert_player: Callable[[], Any] | None = None
    engine: ReconciliationEngine = field(init=False)
    manager: ClientSubscriptionManager = field(init=False)

    def __post_init__(self) -> None:
        self.engine = ReconciliationEngine(
            self.cache,
            self.notifications,
            preferences=self.preferences,
            alert_player=self.alert_player,
        )
        self.manager = ClientSubscriptionManager(self.transport, self.engine)

    @classmethod
    def connect_to_gateway(
        cls,
        url: str | None = None,
        *,
        token_provider: Callable[[], str],
        **kwargs: Any,
    ) -> "RealtimeClient":
        transport = GatewayClientTransport(url or settings.ws_gateway_url, token_provider)
        return cls(transport=transport, **kwargs)

    async def start(self, user_id: str, role: Role | str) -> None:
        for channel in default_interests(user_id, role):
            await self.manager.declare_interest(channel)
        self.manager.start()

    async def close(self) -> None:
        await self.manager.close()
