"""
Push Notification Side Channel.

The publisher hands user-facing, non-silent events to a PushNotifier so users
whose app is closed still get a device notification. Push is best effort:
failures are logged by the caller and never affect in-app delivery.

Providers:
- LoggingPushNotifier: default, only logs (dev, tests, push disabled)
- BeamsPushNotifier: Pusher Beams "publish to users" HTTP API via httpx
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

import httpx

from shared.config.logging import get_logger, mask_user_id
from shared.config.settings import Settings, settings as default_settings

logger = get_logger(__name__)

# Pusher Beams accepts at most 1000 user ids per publish request
BEAMS_MAX_USERS_PER_REQUEST = 1000


@runtime_checkable
class PushNotifier(Protocol):
    """Device push interface consumed by the publisher."""

    async def push_to_users(
        self,
        user_ids: Sequence[str],
        title: str,
        body: str,
        link: str | None = None,
    ) -> None:
        ...

    async def close(self) -> None:
        ...


class LoggingPushNotifier:
    """Push provider that only records what would have been sent."""

    async def push_to_users(
        self,
        user_ids: Sequence[str],
        title: str,
        body: str,
        link: str | None = None,
    ) -> None:
        logger.debug(
            "Push notification (logging provider)",
            recipients=len(user_ids),
            title=title,
            link=link,
        )

    async def close(self) -> None:
        return None


class BeamsPushNotifier:
    """
    Pusher Beams provider.

    Sends one web-push publish request per batch of users. The deep link is
    made absolute against the website URL so the browser can open it.
    """

    def __init__(
        self,
        instance_id: str,
        secret_key: str,
        website_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not instance_id or not secret_key:
            raise ValueError("Beams instance id and secret key are required")
        self._instance_id = instance_id
        self._secret_key = secret_key
        self._website_url = website_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def publish_url(self) -> str:
        return (
            f"https://{self._instance_id}.pushnotifications.pusher.com"
            f"/publish_api/v1/instances/{self._instance_id}/publishes/users"
        )

    def _build_payload(
        self,
        user_ids: Sequence[str],
        title: str,
        body: str,
        link: str | None,
    ) -> dict[str, Any]:
        notification: dict[str, Any] = {"title": title, "body": body}
        if link:
            notification["deep_link"] = (
                link if link.startswith("http") else f"{self._website_url}{link}"
            )
        return {
            "users": list(user_ids),
            "web": {"notification": notification},
        }

    async def push_to_users(
        self,
        user_ids: Sequence[str],
        title: str,
        body: str,
        link: str | None = None,
    ) -> None:
        """
        Publish a web push to the given users.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.
        """
        ids = [str(uid) for uid in user_ids]
        for start in range(0, len(ids), BEAMS_MAX_USERS_PER_REQUEST):
            batch = ids[start:start + BEAMS_MAX_USERS_PER_REQUEST]
            response = await self._client.post(
                self.publish_url,
                json=self._build_payload(batch, title, body, link),
                headers={"Authorization": f"Bearer {self._secret_key}"},
            )
            response.raise_for_status()
            logger.debug(
                "Beams push published",
                recipients=len(batch),
                first_user=mask_user_id(batch[0]) if batch else None,
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def create_push_notifier(config: Settings | None = None) -> PushNotifier:
    """Build the push provider selected by `push_provider`."""
    config = config or default_settings
    if config.push_provider == "beams":
        return BeamsPushNotifier(
            instance_id=config.beams_instance_id,
            secret_key=config.beams_secret_key,
            website_url=config.website_url,
            timeout=config.push_timeout,
        )
    return LoggingPushNotifier()
