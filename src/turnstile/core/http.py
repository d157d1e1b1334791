"""HTTP utilities for Turnstile outbound calls."""
from __future__ import annotations

from contextlib import asynccontextmanager

import httpx

from .config import get_settings


@asynccontextmanager
async def get_async_client() -> httpx.AsyncClient:
    settings = get_settings()
    headers = {"User-Agent": f"{settings.app_name}/{settings.environment}"}
    async with httpx.AsyncClient(timeout=settings.default_timeout_seconds, headers=headers) as client:
        yield client
