from typing import List, Optional, Tuple

import pytest
from starlette.requests import Request

from turnstile.store.base import QuotaState


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore:
    """Counter store returning a fixed quota state and recording each call."""

    def __init__(self, state: QuotaState) -> None:
        self.state = state
        self.calls: List[Tuple[str, int, int]] = []
        self.closed = False

    async def consume(self, identity: str, duration_ms: int, max_requests: int) -> QuotaState:
        self.calls.append((identity, duration_ms, max_requests))
        return self.state

    async def close(self) -> None:
        self.closed = True


def make_request(
    *,
    path: str = "/",
    headers: Optional[dict] = None,
    client: Optional[Tuple[str, int]] = ("10.0.0.1", 51000),
) -> Request:
    raw_headers = [(key.lower().encode("latin-1"), value.encode("latin-1")) for key, value in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
        "client": client,
    }
    return Request(scope)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def request_factory():
    return make_request
