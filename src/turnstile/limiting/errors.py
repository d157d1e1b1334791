"""Errors raised by the admission middleware."""
from __future__ import annotations

from typing import Mapping, Optional

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException

FORBIDDEN_STATUS = 493
TOO_MANY_REQUESTS_STATUS = 429


class RateLimitError(HTTPException):
    """Base class for admission failures meant for an upstream error handler."""


class Forbidden(RateLimitError):
    """Raised when the deny-list predicate matches a request."""

    def __init__(self, headers: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(status_code=FORBIDDEN_STATUS, detail="Forbidden", headers=headers)


class RateLimitExceeded(RateLimitError):
    """Raised instead of writing a 429 response when throwing is enabled."""

    def __init__(
        self,
        *,
        body: bytes = b"",
        retry_after: int = 0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(status_code=TOO_MANY_REQUESTS_STATUS, headers=headers)
        self.body = body
        self.retry_after = retry_after


async def rate_limit_error_response(request: Request, exc: RateLimitError) -> Response:
    """Render an admission error as a plain text response.

    Works both as an ``on_error`` hook for the middleware and as a FastAPI
    exception handler.
    """

    return PlainTextResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)
