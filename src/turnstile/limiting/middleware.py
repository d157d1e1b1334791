"""Fixed window request admission.

:class:`RateLimiter` decides per request whether to call the downstream handler,
bypass limiting, reject the caller outright or throttle it. :func:`ratelimit`
binds a limiter to a handler and returns a ``(request, response)`` callable.
:class:`RateLimitMiddleware` and :class:`RateLimitDependency` adapt it to
Starlette middleware and FastAPI dependencies.
"""
from __future__ import annotations

import dataclasses
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.durations import format_duration
from ..store.base import CounterStore, QuotaState
from ..telemetry.events import TelemetryEvent, telemetry_client
from .errors import TOO_MANY_REQUESTS_STATUS, Forbidden, RateLimitError, RateLimitExceeded
from .options import Predicate, RateLimitOptions

logger = logging.getLogger("turnstile.ratelimit")

RETRY_AFTER_HEADER = "Retry-After"

Handler = Callable[[Request, Response], Awaitable[Any]]
ErrorHandler = Callable[[Request, RateLimitError], Awaitable[Response]]

DENIED_EVENT = "ratelimit.denied"
THROTTLED_EVENT = "ratelimit.throttled"


def new_response() -> Response:
    """Return an empty response used to collect headers before the handler runs."""

    response = Response()
    del response.headers["content-length"]
    return response


def end_response(response: Response, content: str) -> Response:
    """Write ``content`` as the plain text body of ``response``."""

    response.body = response.render(content)
    response.headers["content-length"] = str(len(response.body))
    response.headers["content-type"] = "text/plain; charset=utf-8"
    return response


async def _evaluate(predicate: Optional[Predicate], request: Request) -> bool:
    if predicate is None:
        return False
    result = predicate(request)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


class RateLimiter:
    """Admission decision for one quota window configuration."""

    def __init__(
        self,
        options: Optional[RateLimitOptions] = None,
        *,
        store: CounterStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.options = options or RateLimitOptions()
        self.store = store
        self._clock = clock

    async def __call__(self, request: Request, response: Response, handler: Handler) -> Any:
        """Admit, bypass, deny or throttle one request.

        The deny-list is consulted first and a match raises
        :class:`~turnstile.limiting.errors.Forbidden` without calling the
        allow-list or the identity resolver, so side effects in those callables
        never happen for denied requests. The allow-list runs before identity
        resolution.
        """
        opts = self.options

        if await _evaluate(opts.blacklist, request):
            logger.info("Rejected deny-listed request to %s", request.url.path)
            raise Forbidden()

        whitelisted = await _evaluate(opts.whitelist, request)
        identity = opts.id(request)
        if identity is False or whitelisted:
            logger.debug("Bypassing rate limit for %s", request.url.path)
            return await handler(request, response)

        limit = await self.store.consume(identity, opts.duration, opts.max)
        calls = limit.remaining - 1 if limit.remaining > 0 else 0

        if not opts.disable_header:
            response.headers[opts.headers.total] = str(limit.total)
            response.headers[opts.headers.remaining] = str(calls)
            response.headers[opts.headers.reset] = str(limit.reset)

        logger.debug("remaining %s/%s %s", calls, limit.total, identity)
        if limit.remaining > 0:
            return await handler(request, response)

        return self._throttle(identity, limit, response)

    def _throttle(self, identity: str, limit: QuotaState, response: Response) -> Response:
        now = self._clock()
        delta = int(limit.reset * 1000 - now * 1000)
        after = int(limit.reset - now)
        response.headers[RETRY_AFTER_HEADER] = str(after)
        response.status_code = TOO_MANY_REQUESTS_STATUS
        logger.warning("Rate limit exceeded for %s, window resets in %ss", identity, after)

        if self.options.throw:
            raise RateLimitExceeded(body=response.body, retry_after=after, headers=dict(response.headers))

        message = self.options.error_message or f"Rate limit exceeded, retry in {format_duration(delta)}."
        return end_response(response, message)


def ratelimit(
    handler: Handler,
    options: Optional[RateLimitOptions] = None,
    *,
    store: CounterStore,
    clock: Callable[[], float] = time.time,
) -> Handler:
    """Wrap ``handler`` so every call is admitted against the configured quota."""

    limiter = RateLimiter(options, store=store, clock=clock)

    async def ratelimit_handler(request: Request, response: Response) -> Any:
        return await limiter(request, response, handler)

    return ratelimit_handler


async def _record(name: str, request: Request, status_code: int) -> None:
    await telemetry_client.record(
        TelemetryEvent(
            name=name,
            attributes={"path": request.url.path, "status": status_code},
        )
    )


def _event_for(exc: RateLimitError) -> str:
    return DENIED_EVENT if isinstance(exc, Forbidden) else THROTTLED_EVENT


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a :class:`RateLimiter` to every request reaching ``app``.

    Errors raised by the limiter propagate to the host unless ``on_error`` is
    given, in which case its response is sent instead.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        store: CounterStore,
        options: Optional[RateLimitOptions] = None,
        on_error: Optional[ErrorHandler] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(app)
        self.limiter = RateLimiter(options, store=store, clock=clock)
        self.on_error = on_error

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        async def downstream(request: Request, response: Response) -> Response:
            result = await call_next(request)
            for key, value in response.headers.items():
                result.headers[key] = value
            return result

        placeholder = new_response()
        try:
            result = await self.limiter(request, placeholder, downstream)
        except RateLimitError as exc:
            await _record(_event_for(exc), request, exc.status_code)
            if self.on_error is None:
                raise
            return await self.on_error(request, exc)

        if result is placeholder:
            await _record(THROTTLED_EVENT, request, result.status_code)
        return result


class RateLimitDependency:
    """FastAPI dependency applying a :class:`RateLimiter` to a route.

    Quota headers are set on FastAPI's response. A dependency cannot end the
    response itself, so throttled requests always raise
    :class:`~turnstile.limiting.errors.RateLimitExceeded`.
    """

    def __init__(
        self,
        options: Optional[RateLimitOptions] = None,
        *,
        store: CounterStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        options = dataclasses.replace(options or RateLimitOptions(), throw=True)
        self.limiter = RateLimiter(options, store=store, clock=clock)

    async def __call__(self, request: Request, response: Response) -> None:
        try:
            await self.limiter(request, response, _admit)
        except RateLimitError as exc:
            await _record(_event_for(exc), request, exc.status_code)
            raise


async def _admit(request: Request, response: Response) -> None:
    return None
