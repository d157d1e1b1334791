"""In-process counter store."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

from .base import QuotaState, window_reset

logger = logging.getLogger("turnstile.store.memory")


@dataclass(slots=True)
class _Window:
    count: int
    reset: int
    expires_at: float


class MemoryCounterStore:
    """Fixed window counters kept in a dictionary.

    Only suitable for a single process; counters are not shared between workers.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._windows: Dict[str, _Window] = {}
        self._lock = asyncio.Lock()
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._windows)

    async def consume(self, identity: str, duration_ms: int, max_requests: int) -> QuotaState:
        now = self._clock()
        async with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            window = self._windows.get(identity)
            if window is None or window.expires_at <= now:
                now_ms = int(now * 1000)
                window = _Window(
                    count=max_requests,
                    reset=window_reset(now_ms, duration_ms),
                    expires_at=(now_ms + duration_ms) / 1000,
                )
                self._windows[identity] = window
                return QuotaState(total=max_requests, remaining=max_requests, reset=window.reset)
            if window.count <= 0:
                return QuotaState(total=max_requests, remaining=0, reset=window.reset)
            window.count -= 1
            return QuotaState(total=max_requests, remaining=window.count, reset=window.reset)

    async def close(self) -> None:
        async with self._lock:
            self._windows.clear()

    def _sweep(self, now: float) -> None:
        expired = [identity for identity, window in self._windows.items() if window.expires_at <= now]
        for identity in expired:
            del self._windows[identity]
        if expired:
            logger.debug("Evicted %s expired quota windows", len(expired))
        self._next_sweep = now + self._sweep_interval
