"""
Per-key debouncing for action dispatch.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    fn: Callable[[], Awaitable[Any]]
    handle: Optional[asyncio.TimerHandle] = None
    waiters: List[asyncio.Future] = field(default_factory=list)


class Debouncer:
    """
    Coalesces calls per key.

    Every call restarts the key's timer and replaces the function to run.
    When the timer fires the latest function runs once, and every caller
    that was waiting on the key gets its result (or its exception).
    """

    def __init__(self):
        self._pending: Dict[str, _Pending] = {}
        self._running: set = set()

    def call(self, key: str, delay_ms: int, fn: Callable[[], Awaitable[Any]]) -> "asyncio.Future":
        loop = asyncio.get_running_loop()
        entry = self._pending.get(key)
        if entry is None:
            entry = self._pending[key] = _Pending(fn=fn)
        else:
            entry.handle.cancel()
            entry.fn = fn

        future = loop.create_future()
        entry.waiters.append(future)
        entry.handle = loop.call_later(delay_ms / 1000, self._fire, key)
        return future

    def _fire(self, key: str) -> None:
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        task = asyncio.get_running_loop().create_task(self._run(key, entry))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: str, entry: _Pending) -> None:
        logger.debug("debounce %s fired for %d callers", key, len(entry.waiters))
        try:
            result = await entry.fn()
        except Exception as e:
            for waiter in entry.waiters:
                if not waiter.done():
                    waiter.set_exception(e)
            return
        for waiter in entry.waiters:
            if not waiter.done():
                waiter.set_result(result)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def cancel(self, key: str) -> None:
        """Drop a scheduled call; its callers are cancelled."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        entry.handle.cancel()
        for waiter in entry.waiters:
            waiter.cancel()
