"""
Tests for the connected-user counter.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, strategies as st
from redis.exceptions import ConnectionError as RedisConnectionError

from shared.infrastructure.events import InMemoryConnectionCounter, RedisConnectionCounter
from shared.utils.exceptions import TransportError


# (connect?, connection id) sequences
operations = st.lists(
    st.tuples(st.booleans(), st.sampled_from(["a", "b", "c", "d"])),
    max_size=40,
)


class TestInMemoryCounter:
    @pytest.mark.asyncio
    async def test_increment_and_decrement(self):
        counter = InMemoryConnectionCounter()
        assert await counter.increment("a") == 1
        assert await counter.increment("b") == 2
        assert await counter.decrement("a") == 1
        assert await counter.value() == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_count_once(self):
        counter = InMemoryConnectionCounter()
        await counter.increment("a")
        assert await counter.increment("a") == 1
        assert await counter.decrement("a") == 0
        assert await counter.decrement("a") == 0

    @given(ops=operations)
    def test_count_matches_live_set_and_never_negative(self, ops):
        import asyncio

        async def run():
            counter = InMemoryConnectionCounter()
            live = set()
            for connect, conn_id in ops:
                if connect:
                    live.add(conn_id)
                    count = await counter.increment(conn_id)
                else:
                    live.discard(conn_id)
                    count = await counter.decrement(conn_id)
                assert count == len(live) >= 0
            assert await counter.value() == len(live)

        asyncio.run(run())


def _redis_client(results):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    client = MagicMock()
    client.pipeline = MagicMock(return_value=pipe)
    client.scard = AsyncMock(return_value=results[-1])
    return client, pipe


class TestRedisCounter:
    @pytest.mark.asyncio
    async def test_increment_uses_set_and_cardinality(self):
        client, pipe = _redis_client([1, 3])
        counter = RedisConnectionCounter(client, key="conns")

        assert await counter.increment("inst:abc") == 3
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.sadd.assert_called_once_with("conns", "inst:abc")
        pipe.scard.assert_called_once_with("conns")

    @pytest.mark.asyncio
    async def test_decrement(self):
        client, pipe = _redis_client([1, 2])
        counter = RedisConnectionCounter(client, key="conns")

        assert await counter.decrement("inst:abc") == 2
        pipe.srem.assert_called_once_with("conns", "inst:abc")

    @pytest.mark.asyncio
    async def test_value(self):
        client, _ = _redis_client([0, 7])
        assert await RedisConnectionCounter(client).value() == 7

    @pytest.mark.asyncio
    async def test_redis_errors_become_transport_errors(self):
        client, pipe = _redis_client([0, 0])
        pipe.execute.side_effect = RedisConnectionError("down")

        with pytest.raises(TransportError):
            await RedisConnectionCounter(client).increment("a")
