"""
Tests for the client-side state: callback registry, query cache,
invalidation table and notification center.
"""

import asyncio

import pytest

from realtime_client import (
    INVALIDATION_TABLE,
    CacheKey,
    CallbackRegistry,
    NotificationCenter,
    QueryCache,
    keys_for,
)
from shared.infrastructure.events import EventType, NotificationKind


class TestCallbackRegistry:
    @pytest.mark.asyncio
    async def test_fires_in_registration_order(self):
        registry = CallbackRegistry()
        calls = []
        registry.add(lambda: calls.append(1))

        async def second():
            calls.append(2)

        registry.add(second)
        registry.add(lambda: calls.append(3))

        await registry.fire()
        assert calls == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_only_that_callback(self):
        registry = CallbackRegistry()
        calls = []
        registry.add(lambda: calls.append("a"))
        remove_b = registry.add(lambda: calls.append("b"))
        registry.add(lambda: calls.append("c"))

        remove_b()
        remove_b()
        await registry.fire()

        assert calls == ["a", "c"]
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_others(self):
        registry = CallbackRegistry()
        calls = []

        def broken():
            raise RuntimeError("boom")

        registry.add(broken)
        registry.add(lambda: calls.append("ok"))

        await registry.fire()
        registry.fire_sync()
        assert calls == ["ok", "ok"]

    @pytest.mark.asyncio
    async def test_callback_removed_during_round_is_skipped(self):
        registry = CallbackRegistry()
        calls = []
        handles = {}
        registry.add(lambda: handles["b"]())
        handles["b"] = registry.add(lambda: calls.append("b"))

        await registry.fire()
        assert calls == []


class TestInvalidationTable:
    def test_covers_every_event_type(self):
        assert set(INVALIDATION_TABLE) == set(EventType)

    def test_order_add_invalidates_order_and_balance_queries(self):
        assert keys_for(EventType.ORDER_ADD) >= {
            CacheKey.MENU,
            CacheKey.CART,
            CacheKey.USER_BALANCE,
            CacheKey.ORDER_LIST,
            CacheKey.ORDER_COUNT,
        }

    def test_pos_add_invalidates_pos_queue(self):
        assert keys_for(EventType.POS_ADD) == {CacheKey.POS_ORDERS}

    def test_test_push_invalidates_nothing(self):
        assert keys_for(EventType.USER_TEST_PUSH_NOTIFICATION) == frozenset()


class TestQueryCache:
    def test_invalidate_marks_stale(self):
        cache = QueryCache()
        cache.invalidate(CacheKey.MENU)
        assert cache.stale_keys() == {CacheKey.MENU}

    def test_invalidation_is_idempotent(self):
        once, twice = QueryCache(), QueryCache()
        once.invalidate_many([CacheKey.MENU, CacheKey.CART])
        twice.invalidate_many([CacheKey.MENU, CacheKey.CART])
        twice.invalidate_many([CacheKey.CART, CacheKey.MENU])
        assert once.stale_keys() == twice.stale_keys()

    def test_invalidate_all(self):
        cache = QueryCache()
        cache.invalidate_all()
        assert cache.stale_keys() == cache.keys == frozenset(CacheKey)

    def test_without_event_loop_entry_stays_stale(self):
        cache = QueryCache()
        calls = []

        async def refetch():
            calls.append(1)

        cache.register_refetcher(CacheKey.MENU, refetch)
        cache.invalidate(CacheKey.MENU)

        assert cache.is_stale(CacheKey.MENU)
        assert calls == []

    @pytest.mark.asyncio
    async def test_refetch_marks_fresh(self):
        cache = QueryCache()
        calls = []

        async def refetch():
            calls.append(1)

        cache.register_refetcher(CacheKey.MENU, refetch)
        cache.invalidate(CacheKey.MENU)
        await cache.wait_for_refetches()

        assert calls == [1]
        assert not cache.is_stale(CacheKey.MENU)
        assert cache.entry(CacheKey.MENU).generation == 1

    @pytest.mark.asyncio
    async def test_invalidation_during_refetch_runs_one_more(self):
        cache = QueryCache()
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def refetch():
            calls.append(1)
            started.set()
            await release.wait()

        cache.register_refetcher(CacheKey.CART, refetch)
        cache.invalidate(CacheKey.CART)
        await started.wait()
        cache.invalidate(CacheKey.CART)
        cache.invalidate(CacheKey.CART)
        release.set()
        await cache.wait_for_refetches()

        assert calls == [1, 1]
        assert not cache.is_stale(CacheKey.CART)

    @pytest.mark.asyncio
    async def test_failed_refetch_stays_stale(self):
        cache = QueryCache()

        async def refetch():
            raise RuntimeError("offline")

        cache.register_refetcher(CacheKey.BONUS, refetch)
        cache.invalidate(CacheKey.BONUS)
        await cache.wait_for_refetches()

        assert cache.is_stale(CacheKey.BONUS)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestNotificationCenter:
    def test_newest_first(self):
        center = NotificationCenter(duration=10, suppression_window=3, clock=FakeClock())
        center.push(NotificationKind.INFO, "first")
        center.push(NotificationKind.SUCCESS, "second")

        assert [n.message for n in center.visible()] == ["second", "first"]

    def test_same_tag_replaces_within_window(self):
        clock = FakeClock()
        center = NotificationCenter(duration=10, suppression_window=3, clock=clock)
        center.push(NotificationKind.INFO, "3 connected", tag="connection-count")
        clock.now += 1
        center.push(NotificationKind.INFO, "4 connected", tag="connection-count")

        assert [n.message for n in center.visible()] == ["4 connected"]

    def test_same_tag_stacks_after_window(self):
        clock = FakeClock()
        center = NotificationCenter(duration=10, suppression_window=3, clock=clock)
        center.push(NotificationKind.INFO, "3 connected", tag="connection-count")
        clock.now += 5
        center.push(NotificationKind.INFO, "4 connected", tag="connection-count")

        assert len(center.visible()) == 2

    def test_expires_after_duration(self):
        clock = FakeClock()
        center = NotificationCenter(duration=3, suppression_window=3, clock=clock)
        center.push(NotificationKind.SUCCESS, "Order placed")
        clock.now += 3
        assert center.visible() == []

    def test_dismiss_and_listeners(self):
        center = NotificationCenter(duration=10, clock=FakeClock())
        seen = []
        unsubscribe = center.subscribe(seen.append)

        first = center.push(NotificationKind.ERROR, "Deposit failed")
        unsubscribe()
        center.push(NotificationKind.INFO, "ignored by listener")
        center.dismiss(first.id)

        assert seen == [first]
        assert [n.message for n in center.visible()] == ["ignored by listener"]
