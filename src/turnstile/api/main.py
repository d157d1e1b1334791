"""FastAPI application entrypoint for Turnstile."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import Settings, get_settings
from ..core.logging import setup_logging
from ..limiting.errors import rate_limit_error_response
from ..limiting.middleware import RateLimitMiddleware
from ..limiting.options import RateLimitOptions
from ..store.base import CounterStore
from ..store.memory import MemoryCounterStore
from ..store.redis import RedisCounterStore
from ..telemetry.events import TelemetryEvent, telemetry_client

logger = logging.getLogger("turnstile.api")


def create_store(settings: Settings) -> CounterStore:
    if settings.redis_url:
        return RedisCounterStore.from_url(
            settings.redis_url,
            prefix=settings.ratelimit_prefix,
            socket_timeout=settings.redis_socket_timeout,
        )
    return MemoryCounterStore()


def create_app(settings: Settings | None = None, store: CounterStore | None = None) -> FastAPI:
    settings = settings if settings is not None else get_settings()
    store = store if store is not None else create_store(settings)
    options = RateLimitOptions.from_settings(settings)

    app = FastAPI(title=settings.app_name, version="1.0.0")
    app.state.store = store
    app.add_middleware(
        RateLimitMiddleware,
        store=store,
        options=options,
        on_error=rate_limit_error_response,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            options.headers.total,
            options.headers.remaining,
            options.headers.reset,
            "Retry-After",
        ],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Initialising Turnstile API (window=%sms, max=%s)", options.duration, options.max)
        await telemetry_client.start()
        await telemetry_client.record(TelemetryEvent(name="app.startup", attributes={"environment": settings.environment}))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Shutting down Turnstile API")
        await store.close()
        await telemetry_client.record(TelemetryEvent(name="app.shutdown"))
        await telemetry_client.stop()

    @app.get("/")
    async def root() -> dict:
        return {"service": settings.app_name, "message": "Turnstile API is online."}

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


def build_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, ratelimit_level=settings.ratelimit_log_level)
    return create_app(settings)
