"""A keyed work queue with delayed and rate-limited adds."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

from etcd_operator.utils.retry import ItemBackoff, RetryConfig


class WorkQueue:
    """Queue of object keys.

    A key is queued at most once however often it is added, and is never
    handed to two workers at the same time: a key added while it is being
    processed is queued again when ``done`` is called.
    """

    def __init__(self, backoff: Optional[ItemBackoff] = None) -> None:
        self.backoff = backoff or ItemBackoff(RetryConfig(base_delay=1.0, max_delay=300.0))
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def add(self, key: str) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Add ``key`` after ``delay`` seconds; an earlier pending add wins."""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending.when() <= deadline:
                return
            pending.cancel()
        self._timers[key] = loop.call_at(deadline, self._fire, key)

    def add_rate_limited(self, key: str) -> float:
        delay = self.backoff.next_delay(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self.backoff.forget(key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def get(self) -> Optional[str]:
        """Next key to process, or None once the queue is shut down."""
        key = await self._queue.get()
        if key is None:
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutdown:
            self._queue.put_nowait(key)

    def shutdown(self, workers: int = 1) -> None:
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)
