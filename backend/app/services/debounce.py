"""Per-key debouncing of actions on the running event loop.

Bursts of subscribe/unsubscribe requests for the same key (a user's channel
room, a UI view) collapse into the last action scheduled for that key, run
once the key has been quiet for ``delay`` seconds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Dict, Generic, Set, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

DebouncedAction = Callable[[], "Awaitable[None] | None"]

DEFAULT_DELAY_SECONDS = 0.2


class DebouncedActionManager(Generic[K]):
    def __init__(self, delay: float = DEFAULT_DELAY_SECONDS) -> None:
        self._delay = delay
        self._pending: Dict[K, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, key: K, action: DebouncedAction) -> bool:
        """Replace any pending action for ``key`` with ``action``.

        Returns False only when no event loop is running to arm the timer.
        """
        self.cancel(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Cannot debounce action for %r: no running event loop", key)
            return False

        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if self._pending.get(key) is handle:
                del self._pending[key]
            task = loop.create_task(self._run(key, action))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        handle = loop.call_later(self._delay, fire)
        self._pending[key] = handle
        return True

    def cancel(self, key: K) -> bool:
        handle = self._pending.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_pending(self, key: K) -> bool:
        return key in self._pending

    def cancel_all(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    async def _run(self, key: K, action: DebouncedAction) -> None:
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Debounced action failed (key=%r)", key)
