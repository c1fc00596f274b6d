import asyncio

import httpx
import pytest

from kaimaku.core.cache import SearchCache, search_key
from kaimaku.core.retry import RetryPolicy, call_with_retry


def status_error(status, headers=None):
    request = httpx.Request("GET", "https://api.test/anime/")
    response = httpx.Response(status, headers=headers, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


def test_transient_failures_are_retryable():
    policy = RetryPolicy()
    assert policy.should_retry(httpx.ConnectTimeout("slow"))
    assert policy.should_retry(status_error(503))
    assert policy.should_retry(status_error(502))


def test_client_errors_are_not_retried():
    policy = RetryPolicy()
    assert not policy.should_retry(status_error(429))
    assert not policy.should_retry(status_error(422))
    assert not policy.should_retry(ValueError("bad json"))


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0)
    assert [policy.delay_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_retry_after_header_wins():
    policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter=0)
    assert policy.delay_for(0, status_error(503, {"Retry-After": "7"})) == 7.0
    # Capped, and a date-form header falls back to backoff
    assert policy.delay_for(0, status_error(503, {"Retry-After": "120"})) == 10.0
    assert policy.delay_for(0, status_error(503, {"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"})) == 1.0


def test_call_with_retry_recovers_from_transient_error():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise status_error(503)
        return "ok"

    policy = RetryPolicy(attempts=3, base_delay=0, jitter=0)
    assert asyncio.run(call_with_retry(flaky, policy)) == "ok"
    assert len(calls) == 3


def test_call_with_retry_raises_permanent_error_at_once():
    calls = []

    async def not_found():
        calls.append(1)
        raise status_error(404)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(call_with_retry(not_found, RetryPolicy(attempts=3, base_delay=0)))
    assert len(calls) == 1


def test_call_with_retry_gives_up_after_attempts():
    calls = []

    async def down():
        calls.append(1)
        raise httpx.ConnectError("refused")

    with pytest.raises(httpx.ConnectError):
        asyncio.run(call_with_retry(down, RetryPolicy(attempts=2, base_delay=0, jitter=0)))
    assert len(calls) == 2


def test_search_key_normalizes_query():
    assert search_key("Naruto") == search_key("  naruto ")
    assert search_key("Naruto") != search_key("Bleach")


def test_unreachable_redis_is_a_cache_miss():
    # Nothing listens on this port; reads miss and writes are dropped
    cache = SearchCache(url="redis://127.0.0.1:1")

    async def exercise():
        await cache.store_results("Naruto", [{"id": 1}])
        result = await cache.get_results("Naruto")
        await cache.close()
        return result

    assert asyncio.run(exercise()) is None
