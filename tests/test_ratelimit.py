from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import RecordingStore, make_request

from turnstile.limiting.errors import Forbidden, RateLimitExceeded
from turnstile.limiting.middleware import new_response, ratelimit
from turnstile.limiting.options import HeaderNames, RateLimitOptions
from turnstile.store.base import QuotaState, StoreUnavailable

RESET = 1_700_000_060


def handler_returning(value="handled"):
    return AsyncMock(return_value=value)


@pytest.mark.asyncio
async def test_admitted_request_reports_quota_headers(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    handler = handler_returning()
    limited = ratelimit(handler, store=store, clock=clock)
    request, response = make_request(), new_response()

    result = await limited(request, response)

    assert result == "handled"
    handler.assert_awaited_once_with(request, response)
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "2"
    assert response.headers["X-RateLimit-Reset"] == str(RESET)
    assert "Retry-After" not in response.headers


@pytest.mark.asyncio
async def test_store_is_queried_with_identity_and_window(clock):
    store = RecordingStore(QuotaState(total=5, remaining=5, reset=RESET))
    options = RateLimitOptions(duration=60_000, max=5)
    limited = ratelimit(handler_returning(), options, store=store, clock=clock)

    await limited(make_request(headers={"X-Forwarded-For": "203.0.113.9"}), new_response())

    assert store.calls == [("203.0.113.9", 60_000, 5)]


@pytest.mark.asyncio
async def test_defaults_apply_without_options(clock):
    store = RecordingStore(QuotaState(total=2500, remaining=2500, reset=RESET))
    limited = ratelimit(handler_returning(), store=store, clock=clock)

    await limited(make_request(), new_response())

    assert store.calls == [("10.0.0.1", 3_600_000, 2500)]


@pytest.mark.asyncio
async def test_last_admitted_request_reports_zero_remaining(clock):
    store = RecordingStore(QuotaState(total=10, remaining=1, reset=RESET))
    handler = handler_returning()
    response = new_response()

    await ratelimit(handler, store=store, clock=clock)(make_request(), response)

    handler.assert_awaited_once()
    assert response.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_exhausted_quota_writes_throttling_response(clock):
    clock.now = RESET - 5
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    handler = handler_returning()
    response = new_response()

    result = await ratelimit(handler, store=store, clock=clock)(make_request(), response)

    handler.assert_not_awaited()
    assert result is response
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "5"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.body == b"Rate limit exceeded, retry in 5 seconds."
    assert response.headers["content-length"] == str(len(response.body))
    assert response.headers["content-type"].startswith("text/plain")


@pytest.mark.asyncio
async def test_throttling_message_uses_long_durations(clock):
    clock.now = RESET - 7200
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    response = new_response()

    await ratelimit(handler_returning(), store=store, clock=clock)(make_request(), response)

    assert response.body == b"Rate limit exceeded, retry in 2 hours."
    assert response.headers["Retry-After"] == "7200"


@pytest.mark.asyncio
async def test_retry_after_truncates_fractional_seconds(clock):
    clock.now = RESET - 4.6
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    response = new_response()

    await ratelimit(handler_returning(), store=store, clock=clock)(make_request(), response)

    assert response.headers["Retry-After"] == "4"


@pytest.mark.asyncio
async def test_custom_error_message(clock):
    store = RecordingStore(QuotaState(total=1, remaining=0, reset=RESET))
    options = RateLimitOptions(error_message="Slow down")
    response = new_response()

    await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), response)

    assert response.body == b"Slow down"


@pytest.mark.asyncio
async def test_throw_raises_rate_limit_exceeded(clock):
    clock.now = RESET - 5
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    options = RateLimitOptions(throw=True)
    handler = handler_returning()
    response = new_response()

    with pytest.raises(RateLimitExceeded) as excinfo:
        await ratelimit(handler, options, store=store, clock=clock)(make_request(), response)

    handler.assert_not_awaited()
    exc = excinfo.value
    assert exc.status_code == 429
    assert exc.body == b""
    assert exc.retry_after == 5
    assert exc.headers["retry-after"] == "5"
    assert exc.headers["x-ratelimit-limit"] == "10"
    assert response.status_code == 429
    assert response.body == b""


@pytest.mark.asyncio
async def test_blacklist_rejects_before_anything_else(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    whitelist = AsyncMock(return_value=True)
    options = RateLimitOptions(
        id=lambda request: False,
        whitelist=whitelist,
        blacklist=lambda request: True,
    )
    handler = handler_returning()
    response = new_response()

    with pytest.raises(Forbidden) as excinfo:
        await ratelimit(handler, options, store=store, clock=clock)(make_request(), response)

    assert excinfo.value.status_code == 493
    assert excinfo.value.detail == "Forbidden"
    handler.assert_not_awaited()
    whitelist.assert_not_awaited()
    assert store.calls == []
    assert "X-RateLimit-Limit" not in response.headers


@pytest.mark.asyncio
async def test_async_blacklist_is_awaited(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    blacklist = AsyncMock(return_value=True)
    options = RateLimitOptions(blacklist=blacklist)

    with pytest.raises(Forbidden):
        await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), new_response())

    blacklist.assert_awaited_once()


@pytest.mark.asyncio
async def test_blacklist_returning_false_continues(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    options = RateLimitOptions(blacklist=AsyncMock(return_value=False))
    handler = handler_returning()

    await ratelimit(handler, options, store=store, clock=clock)(make_request(), new_response())

    handler.assert_awaited_once()
    assert len(store.calls) == 1


@pytest.mark.asyncio
async def test_whitelisted_request_bypasses_store_and_headers(clock):
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    options = RateLimitOptions(whitelist=AsyncMock(return_value=True))
    handler = handler_returning("bypassed")
    response = new_response()

    result = await ratelimit(handler, options, store=store, clock=clock)(make_request(), response)

    assert result == "bypassed"
    assert store.calls == []
    assert len(response.headers) == 0


@pytest.mark.asyncio
async def test_disabled_identity_bypasses_store_and_headers(clock):
    store = RecordingStore(QuotaState(total=10, remaining=0, reset=RESET))
    options = RateLimitOptions(id=lambda request: False)
    handler = handler_returning("bypassed")
    response = new_response()

    result = await ratelimit(handler, options, store=store, clock=clock)(make_request(), response)

    assert result == "bypassed"
    assert store.calls == []
    assert len(response.headers) == 0


@pytest.mark.asyncio
async def test_custom_identity_resolver(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    options = RateLimitOptions(id=lambda request: request.headers.get("x-api-key", "none"))

    await ratelimit(handler_returning(), options, store=store, clock=clock)(
        make_request(headers={"X-Api-Key": "key-1"}), new_response()
    )

    assert store.calls[0][0] == "key-1"


@pytest.mark.asyncio
async def test_custom_header_names(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    options = RateLimitOptions(headers=HeaderNames(remaining="Quota-Left", reset="Quota-Reset", total="Quota"))
    response = new_response()

    await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), response)

    assert response.headers["Quota"] == "10"
    assert response.headers["Quota-Left"] == "2"
    assert response.headers["Quota-Reset"] == str(RESET)
    assert "X-RateLimit-Limit" not in response.headers


@pytest.mark.asyncio
@pytest.mark.parametrize("remaining", [3, 0])
async def test_disable_header_suppresses_quota_headers(clock, remaining):
    store = RecordingStore(QuotaState(total=10, remaining=remaining, reset=RESET))
    options = RateLimitOptions(disable_header=True)
    response = new_response()

    await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), response)

    for name in ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"):
        assert name not in response.headers


@pytest.mark.asyncio
async def test_store_failure_propagates(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    store.consume = AsyncMock(side_effect=StoreUnavailable("down"))
    handler = handler_returning()

    with pytest.raises(StoreUnavailable):
        await ratelimit(handler, store=store, clock=clock)(make_request(), new_response())

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_denied_request_never_resolves_identity(clock):
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))
    resolver = MagicMock(return_value="client")
    options = RateLimitOptions(id=resolver, blacklist=AsyncMock(return_value=True))

    with pytest.raises(Forbidden):
        await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), new_response())

    resolver.assert_not_called()


@pytest.mark.asyncio
async def test_allow_list_runs_before_identity_resolution(clock):
    order = []
    store = RecordingStore(QuotaState(total=10, remaining=3, reset=RESET))

    def resolver(request):
        order.append("id")
        return "client"

    def whitelist(request):
        order.append("whitelist")
        return False

    def blacklist(request):
        order.append("blacklist")
        return False

    options = RateLimitOptions(id=resolver, whitelist=whitelist, blacklist=blacklist)

    await ratelimit(handler_returning(), options, store=store, clock=clock)(make_request(), new_response())

    assert order == ["blacklist", "whitelist", "id"]
