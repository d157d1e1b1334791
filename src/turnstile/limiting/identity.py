"""Identity resolution for rate limiting."""
from __future__ import annotations

from starlette.requests import Request

FORWARDED_FOR_HEADER = "X-Forwarded-For"
ANONYMOUS = "anonymous"


def default_identity(request: Request) -> str:
    """Key a request by its forwarded-for header or its peer address.

    The header value is used verbatim, multi-hop lists included. Clients that do
    not sit behind a trusted proxy can spoof it, so deployments exposed directly
    to the internet should supply their own resolver.
    """

    forwarded = request.headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        return forwarded
    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS
