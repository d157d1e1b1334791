"""Configuration for the admission middleware."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Literal, Optional, Union

from starlette.requests import Request

from .identity import default_identity

if TYPE_CHECKING:
    from ..core.config import Settings

DEFAULT_DURATION_MS = 3_600_000
DEFAULT_MAX = 2500

IdentityResolver = Callable[[Request], Union[str, Literal[False]]]
Predicate = Callable[[Request], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True, slots=True)
class HeaderNames:
    """Names of the response headers describing the quota."""

    remaining: str = "X-RateLimit-Remaining"
    reset: str = "X-RateLimit-Reset"
    total: str = "X-RateLimit-Limit"


@dataclass(frozen=True, slots=True)
class RateLimitOptions:
    """Options accepted by :func:`turnstile.limiting.middleware.ratelimit`.

    ``duration`` is the window length in milliseconds and ``max`` the number of
    requests an identity may make per window. ``id`` returns ``False`` to exempt a
    request from limiting altogether. ``whitelist`` and ``blacklist`` may be plain
    or async callables.
    """

    duration: int = DEFAULT_DURATION_MS
    max: int = DEFAULT_MAX
    id: IdentityResolver = default_identity
    whitelist: Optional[Predicate] = None
    blacklist: Optional[Predicate] = None
    headers: HeaderNames = field(default_factory=HeaderNames)
    disable_header: bool = False
    throw: bool = False
    error_message: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RateLimitOptions":
        return cls(
            duration=settings.ratelimit_duration_ms,
            max=settings.ratelimit_max,
            whitelist=identity_in(settings.ratelimit_whitelist),
            blacklist=identity_in(settings.ratelimit_blacklist),
            headers=HeaderNames(
                remaining=settings.ratelimit_header_remaining,
                reset=settings.ratelimit_header_reset,
                total=settings.ratelimit_header_total,
            ),
            disable_header=settings.ratelimit_disable_header,
            throw=settings.ratelimit_throw,
            error_message=settings.ratelimit_error_message,
        )


def identity_in(identities: Iterable[str]) -> Optional[Predicate]:
    """Build a predicate matching requests whose default identity is listed."""

    members = frozenset(identities)
    if not members:
        return None

    def _matches(request: Request) -> bool:
        return default_identity(request) in members

    return _matches
