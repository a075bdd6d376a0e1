"""
Client query cache.

Tracks, per cached query, whether its local result is stale. Invalidation is
idempotent: invalidating an already-stale entry changes nothing, at most it
causes one redundant refetch. A registered refetcher is started when its key
is invalidated; at most one refetch per key runs at a time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable

from shared.config.logging import get_logger

logger = get_logger(__name__)

Refetcher = Callable[[], Awaitable[None]]


class CacheKey(str, Enum):
    """Cached client queries."""

    # Ordering
    MENU = "menu"
    CART = "cart"
    RESERVATIONS = "reservations"

    # Account
    USER_INFO = "user_info"
    USER_BALANCE = "user_balance"
    ORDER_LIST = "order_list"
    ORDER_COUNT = "order_count"
    TRANSACTIONS = "transactions"
    BONUS = "bonus"

    # Catalog management
    CATEGORIES = "categories"
    OPTION_SETS = "option_sets"
    COMMODITIES = "commodities"
    MENU_LIST = "menu_list"

    # Staff
    POS_ORDERS = "pos_orders"
    DEPOSITS = "deposits"
    SUPPLIERS = "suppliers"

    # Admin
    USERS = "users"
    BONUS_LIST = "bonus_list"
    CONNECTED_USERS = "connected_users"


@dataclass
class CacheEntry:
    """
    Attributes:
        stale: True once invalidated, until the next successful fetch.
        generation: Number of successful fetches.
    """

    stale: bool = False
    generation: int = 0


class QueryCache:
    def __init__(self, keys: Iterable[CacheKey] = CacheKey) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {key: CacheEntry() for key in keys}
        self._refetchers: dict[CacheKey, Refetcher] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        # Invalidated while a refetch was running: fetch again afterwards
        self._rerun: set[CacheKey] = set()

    @property
    def keys(self) -> frozenset[CacheKey]:
        return frozenset(self._entries)

    def entry(self, key: CacheKey) -> CacheEntry:
        return self._entries[key]

    def is_stale(self, key: CacheKey) -> bool:
        return self._entries[key].stale

    def stale_keys(self) -> frozenset[CacheKey]:
        return frozenset(k for k, e in self._entries.items() if e.stale)

    def register_refetcher(self, key: CacheKey, refetch: Refetcher) -> Callable[[], None]:
        """Attach the coroutine that reloads `key`. Returns an unregister function."""
        self._refetchers[key] = refetch

        def unregister() -> None:
            if self._refetchers.get(key) is refetch:
                del self._refetchers[key]

        return unregister

    def mark_fresh(self, key: CacheKey) -> None:
        entry = self._entries[key]
        entry.stale = False
        entry.generation += 1

    def invalidate(self, key: CacheKey) -> None:
        self._entries[key].stale = True
        self._start_refetch(key)

    def invalidate_many(self, keys: Iterable[CacheKey]) -> None:
        for key in keys:
            self.invalidate(key)

    def invalidate_all(self) -> None:
        """Full sweep: every key is stale and refetched."""
        self.invalidate_many(list(self._entries))

    def _start_refetch(self, key: CacheKey) -> None:
        refetch = self._refetchers.get(key)
        if refetch is None:
            return
        if key in self._inflight:
            self._rerun.add(key)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: the entry stays stale until the next fetch
            return
        self._inflight[key] = loop.create_task(
            self._run_refetch(key, refetch), name=f"refetch:{key.value}",
        )

    async def _run_refetch(self, key: CacheKey, refetch: Refetcher) -> None:
        try:
            await refetch()
        except Exception as e:
            logger.warning("Refetch failed", key=key.value, error=str(e))
        else:
            if key not in self._rerun:
                self.mark_fresh(key)
        finally:
            self._inflight.pop(key, None)
            if key in self._rerun:
                self._rerun.discard(key)
                self._start_refetch(key)

    async def wait_for_refetches(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)
