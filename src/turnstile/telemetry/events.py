"""Telemetry event collection for Turnstile."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..core.config import get_settings
from ..core.http import get_async_client

logger = logging.getLogger("turnstile.telemetry")


@dataclass(slots=True)
class TelemetryEvent:
    """Represents a single telemetry data point."""

    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time())


class TelemetryClient:
    """Buffers events and forwards them to the configured collector.

    Events recorded while no collector is configured, or before :meth:`start`,
    are dropped.
    """

    def __init__(self, endpoint: Optional[str] = None) -> None:
        self._endpoint = endpoint
        self._events: asyncio.Queue[TelemetryEvent] = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task[None]] = None

    @property
    def endpoint(self) -> Optional[str]:
        if self._endpoint is None:
            self._endpoint = get_settings().telemetry_endpoint
        return self._endpoint

    @property
    def running(self) -> bool:
        return self._sender_task is not None

    async def start(self) -> None:
        if self.endpoint and self._sender_task is None:
            self._sender_task = asyncio.create_task(self._forward_events())

    async def stop(self) -> None:
        if self._sender_task:
            self._sender_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender_task
            self._sender_task = None

    async def record(self, event: TelemetryEvent) -> None:
        if not self.running:
            return
        await self._events.put(event)

    async def _forward_events(self) -> None:
        assert self.endpoint is not None
        async with get_async_client() as client:
            while True:
                event = await self._events.get()
                payload = json.dumps(asdict(event))
                try:
                    await client.post(str(self.endpoint), content=payload)
                except httpx.HTTPError as exc:
                    logger.debug("Dropped telemetry event %s: %s", event.name, exc)


telemetry_client = TelemetryClient()
