"""
Invalidation table.

Declarative mapping from each event type to the cached queries it makes
stale. The table must cover every EventType; a missing entry fails at import.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Final

from shared.infrastructure.events.event_types import EventType
from .cache import CacheKey

_ORDER_KEYS = frozenset({
    CacheKey.MENU,
    CacheKey.CART,
    CacheKey.USER_INFO,
    CacheKey.USER_BALANCE,
    CacheKey.ORDER_LIST,
    CacheKey.ORDER_COUNT,
    CacheKey.TRANSACTIONS,
})

_BALANCE_KEYS = frozenset({
    CacheKey.USER_INFO,
    CacheKey.USER_BALANCE,
    CacheKey.TRANSACTIONS,
})

_MENU_KEYS = frozenset({CacheKey.MENU, CacheKey.MENU_LIST, CacheKey.CART})

INVALIDATION_TABLE: Final = MappingProxyType({
    # Orders
    EventType.ORDER_ADD: _ORDER_KEYS,
    EventType.ORDER_UPDATE: frozenset({
        CacheKey.ORDER_LIST, CacheKey.ORDER_COUNT, CacheKey.USER_INFO,
    }),
    EventType.ORDER_CANCEL: _ORDER_KEYS,
    # Bonus
    EventType.BONUS_REDEEMED: _BALANCE_KEYS | {CacheKey.BONUS},
    EventType.BONUS_APPLY: _BALANCE_KEYS | {CacheKey.BONUS},
    # Deposits
    EventType.DEPOSIT_RECHARGE: _BALANCE_KEYS,
    EventType.DEPOSIT_REFUND: _BALANCE_KEYS,
    EventType.DEPOSIT_FAILED: frozenset({CacheKey.TRANSACTIONS}),
    # Menu publishing
    EventType.MENU_RESERVATION_UPDATE: frozenset({CacheKey.MENU, CacheKey.RESERVATIONS}),
    # User settings
    EventType.USER_TEST_PUSH_NOTIFICATION: frozenset(),
    EventType.USER_TOKEN_UPDATE: frozenset({CacheKey.USER_INFO}),
    # Catalog
    EventType.CATEGORY_ADD: frozenset({CacheKey.CATEGORIES}),
    EventType.CATEGORY_UPDATE: frozenset({CacheKey.CATEGORIES, CacheKey.MENU}),
    EventType.CATEGORY_DELETE: frozenset({CacheKey.CATEGORIES, CacheKey.MENU}),
    EventType.OPTION_SETS_ADD: frozenset({CacheKey.OPTION_SETS}),
    EventType.OPTION_SETS_UPDATE: frozenset({CacheKey.OPTION_SETS, CacheKey.COMMODITIES}),
    EventType.OPTION_SETS_DELETE: frozenset({CacheKey.OPTION_SETS, CacheKey.COMMODITIES}),
    EventType.COMMODITY_ADD: frozenset({CacheKey.COMMODITIES}),
    EventType.COMMODITY_UPDATE: frozenset({CacheKey.COMMODITIES}) | _MENU_KEYS,
    EventType.COMMODITY_DELETE: frozenset({CacheKey.COMMODITIES}) | _MENU_KEYS,
    EventType.MENU_ADD: _MENU_KEYS,
    EventType.MENU_UPDATE: _MENU_KEYS,
    EventType.MENU_DELETE: _MENU_KEYS,
    EventType.MENU_LIVE_UPDATE: _MENU_KEYS,
    # Operations
    EventType.POS_ADD: frozenset({CacheKey.POS_ORDERS}),
    EventType.POS_UPDATE: frozenset({CacheKey.POS_ORDERS}),
    EventType.DEPOSIT_UPDATE: frozenset({CacheKey.DEPOSITS}),
    EventType.SUPPLIER_ADD: frozenset({CacheKey.SUPPLIERS}),
    EventType.SUPPLIER_UPDATE: frozenset({CacheKey.SUPPLIERS}),
    EventType.SUPPLIER_DELETE: frozenset({CacheKey.SUPPLIERS}),
    # Administration
    EventType.USER_AUTHORITY_UPDATE: frozenset({CacheKey.USERS}),
    EventType.BONUS_ADD: frozenset({CacheKey.BONUS_LIST}),
    EventType.BONUS_UPDATE: frozenset({CacheKey.BONUS_LIST}),
    EventType.BONUS_DELETE: frozenset({CacheKey.BONUS_LIST}),
    EventType.CONNECTION_COUNT_UPDATE: frozenset({CacheKey.CONNECTED_USERS}),
})


def keys_for(event_type: EventType) -> frozenset[CacheKey]:
    return INVALIDATION_TABLE[event_type]


def _validate_table() -> None:
    missing = set(EventType) - set(INVALIDATION_TABLE)
    if missing:
        raise RuntimeError(
            f"INVALIDATION_TABLE is missing event types: {sorted(t.value for t in missing)}"
        )


_validate_table()
