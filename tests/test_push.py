"""
Tests for the push notification providers.
"""

import json

import httpx
import pytest

from shared.config.settings import Settings
from shared.infrastructure.events import (
    BeamsPushNotifier,
    LoggingPushNotifier,
    create_push_notifier,
)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestBeamsPushNotifier:
    @pytest.mark.asyncio
    async def test_publishes_web_notification(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"publishId": "pub-1"})

        async with _client(handler) as client:
            notifier = BeamsPushNotifier(
                "inst", "secret", "https://cafeteria.example/", client=client,
            )
            await notifier.push_to_users(["1", "2"], "Cafeteria", "Order placed", "/order/id/5")

        assert len(requests) == 1
        request = requests[0]
        assert request.url.path == "/publish_api/v1/instances/inst/publishes/users"
        assert request.headers["authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "users": ["1", "2"],
            "web": {"notification": {
                "title": "Cafeteria",
                "body": "Order placed",
                "deep_link": "https://cafeteria.example/order/id/5",
            }},
        }

    @pytest.mark.asyncio
    async def test_batches_large_recipient_lists(self):
        batches = []

        def handler(request: httpx.Request) -> httpx.Response:
            batches.append(len(json.loads(request.content)["users"]))
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            notifier = BeamsPushNotifier("inst", "secret", "https://x", client=client)
            await notifier.push_to_users([str(i) for i in range(2500)], "t", "b")

        assert batches == [1000, 1000, 500]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with _client(lambda request: httpx.Response(401)) as client:
            notifier = BeamsPushNotifier("inst", "secret", "https://x", client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await notifier.push_to_users(["1"], "t", "b")

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            BeamsPushNotifier("", "", "https://x")


class TestFactory:
    def test_default_is_logging(self):
        assert isinstance(create_push_notifier(Settings(push_provider="none")), LoggingPushNotifier)

    @pytest.mark.asyncio
    async def test_beams(self):
        notifier = create_push_notifier(Settings(
            push_provider="beams", beams_instance_id="inst", beams_secret_key="secret",
        ))
        assert isinstance(notifier, BeamsPushNotifier)
        await notifier.close()
