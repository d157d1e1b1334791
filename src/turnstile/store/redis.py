"""Redis backed counter store.

Each identity owns two keys, ``<prefix>:<identity>:count`` and
``<prefix>:<identity>:reset``, both expiring with the window. The read, open and
decrement steps run inside a single Lua script so concurrent requests for the same
identity can never be admitted more than ``max`` times per window.

**Security Note**: use a ``rediss://`` URL when the store is reached over an
untrusted network, and never log the connection URL since it may carry a password.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import QuotaState, StoreUnavailable

logger = logging.getLogger("turnstile.store.redis")

CONSUME_SCRIPT = """
local max = tonumber(ARGV[1])
local duration = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local count = redis.call('GET', KEYS[1])
local reset = redis.call('GET', KEYS[2])
if not count or not reset then
  reset = math.floor((now + duration) / 1000)
  redis.call('SET', KEYS[1], max, 'PX', duration)
  redis.call('SET', KEYS[2], reset, 'PX', duration)
  return {max, max, reset}
end
count = tonumber(count)
reset = tonumber(reset)
if count <= 0 then
  return {max, 0, reset}
end
count = redis.call('DECR', KEYS[1])
return {max, count, reset}
"""


class RedisCounterStore:
    """Fixed window counters shared through Redis."""

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = "limit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._clock = clock
        self._consume = client.register_script(CONSUME_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        prefix: str = "limit",
        socket_timeout: Optional[float] = None,
    ) -> "RedisCounterStore":
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True, socket_timeout=socket_timeout)
        logger.debug("Redis counter store created")
        return cls(client, prefix=prefix)

    def _keys(self, identity: str) -> list[str]:
        base = f"{self._prefix}:{identity}"
        return [f"{base}:count", f"{base}:reset"]

    async def consume(self, identity: str, duration_ms: int, max_requests: int) -> QuotaState:
        now_ms = int(self._clock() * 1000)
        try:
            total, remaining, reset = await self._consume(
                keys=self._keys(identity),
                args=[max_requests, duration_ms, now_ms],
            )
        except RedisError as exc:
            logger.error("Counter store query failed for %s: %s", identity, exc)
            raise StoreUnavailable(f"Counter store query failed: {exc}") from exc
        return QuotaState(total=int(total), remaining=int(remaining), reset=int(reset))

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("Redis counter store closed")
