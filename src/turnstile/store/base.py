"""Shared abstractions for quota counter stores."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class QuotaState:
    """Snapshot of an identity's quota for the current window.

    ``remaining`` is the capacity reported before the current call is charged and
    ``reset`` is the UNIX time, in seconds, at which the window closes.
    """

    total: int
    remaining: int
    reset: int


class StoreUnavailable(RuntimeError):
    """Raised when the counter store cannot answer a quota query."""


class CounterStore(Protocol):
    """Atomic fixed-window counter keyed by identity."""

    async def consume(self, identity: str, duration_ms: int, max_requests: int) -> QuotaState:
        """Charge one request against ``identity`` and report the window state."""

    async def close(self) -> None:
        """Release any resources held by the store."""


def window_reset(now_ms: int, duration_ms: int) -> int:
    """Return the reset timestamp, in seconds, of a window opened at ``now_ms``."""

    return (now_ms + duration_ms) // 1000
