"""
Ordered callback registry.

Callbacks fire in registration order. `add` returns an unsubscribe function
that removes the callback in O(1) by its handle, and callbacks may add or
remove callbacks while the registry is firing (the current round uses a
snapshot).
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

from shared.config.logging import get_logger

logger = get_logger(__name__)

Callback = Callable[..., Union[Awaitable[None], None]]


class CallbackRegistry:
    def __init__(self, name: str = "callbacks") -> None:
        self._name = name
        # dicts keep insertion order, so handles iterate in registration order
        self._callbacks: dict[int, Callback] = {}
        self._next_handle = 0

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callback) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        handle = self._next_handle
        self._next_handle += 1
        self._callbacks[handle] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(handle, None)

        return unsubscribe

    def clear(self) -> None:
        self._callbacks.clear()

    def fire_sync(self, *args: Any) -> None:
        """Invoke plain (non-async) callbacks; failures are logged."""
        for handle, callback in list(self._callbacks.items()):
            if handle not in self._callbacks:
                continue
            try:
                callback(*args)
            except Exception as e:
                logger.error(
                    "Callback failed",
                    registry=self._name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def fire(self, *args: Any) -> None:
        """
        Invoke every callback with `args`, awaiting coroutine results.

        A failing callback is logged and does not stop the others.
        """
        for handle, callback in list(self._callbacks.items()):
            if handle not in self._callbacks:
                # removed by an earlier callback in this round
                continue
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Callback failed",
                    registry=self._name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
