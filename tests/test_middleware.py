import asyncio
import logging

import pytest
from aiohttp import web
from aiohttp.test_utils import make_mocked_request

from makerserve.middleware import (
    ConcurrencyLimit,
    GuardDecision,
    HttpErrResolver,
    RateLimiter,
    TimeoutGuard,
    always,
    bypass,
)


def _request(path="/specs", headers=None):
    return make_mocked_request("GET", path, headers=headers or {})


async def _ok(request):
    return web.Response(text="ok")


@pytest.mark.asyncio
async def test_policies():
    request = _request()
    assert always(request) is GuardDecision.CONTINUE
    assert bypass(request) is GuardDecision.BYPASS


@pytest.mark.asyncio
async def test_resolver_passes_response_through():
    response = web.Response(text="fine", status=201)

    async def handler(request):
        return response

    assert await HttpErrResolver()(_request(), handler) is response


@pytest.mark.asyncio
async def test_resolver_turns_error_into_body():
    async def handler(request):
        raise ValueError("boom")

    response = await HttpErrResolver()(_request(), handler)
    assert response.status == 200
    assert response.body == b"boom"


@pytest.mark.asyncio
async def test_resolver_lets_http_exceptions_through():
    async def handler(request):
        raise web.HTTPNotFound()

    with pytest.raises(web.HTTPNotFound):
        await HttpErrResolver()(_request(), handler)


@pytest.mark.asyncio
async def test_resolver_logs_external_request(caplog):
    caplog.set_level(logging.INFO, logger="makerserve.middleware")
    request = _request(headers={"cf-connecting-ip": "192.0.2.1", "Host": "maker.bidn.dev"})
    response = await HttpErrResolver()(request, _ok)
    assert response.text == "ok"
    assert "Incoming external request" in caplog.text
    assert "192.0.2.1" in caplog.text


@pytest.mark.asyncio
async def test_resolver_logs_internal_request(caplog):
    caplog.set_level(logging.INFO, logger="makerserve.middleware")
    request = _request(headers={"x-real-ip": "10.0.0.5", "Host": "maker.app.io"})
    await HttpErrResolver()(request, _ok)
    assert "Incoming internal request" in caplog.text
    assert "Incoming external request" not in caplog.text


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_quota():
    limiter = RateLimiter(2, 60, always)
    await limiter.acquire()
    await limiter.acquire()
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(limiter.acquire(), 0.05)


@pytest.mark.asyncio
async def test_rate_limiter_waits_for_next_window():
    limiter = RateLimiter(1, 0.1, always)
    loop = asyncio.get_running_loop()
    start = loop.time()
    first = await limiter(_request(), _ok)
    second = await limiter(_request(), _ok)
    assert first.text == second.text == "ok"
    assert loop.time() - start >= 0.09


@pytest.mark.asyncio
async def test_rate_limiter_bypass_never_waits():
    limiter = RateLimiter(1, 60, bypass)
    responses = await asyncio.wait_for(
        asyncio.gather(*(limiter(_request(), _ok) for _ in range(5))), 1
    )
    assert [r.text for r in responses] == ["ok"] * 5


@pytest.mark.parametrize(("requests", "seconds"), [(0, 10), (10, 0), (-1, 10)])
def test_rate_limiter_rejects_bad_arguments(requests, seconds):
    with pytest.raises(ValueError):
        RateLimiter(requests, seconds, always)


@pytest.mark.asyncio
async def test_timeout_expires():
    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text="late")

    with pytest.raises(TimeoutError, match="request timed out"):
        await TimeoutGuard(0.01, always)(_request(), slow)


@pytest.mark.asyncio
async def test_timeout_bypass_lets_slow_handler_finish():
    async def slow(request):
        await asyncio.sleep(0.05)
        return web.Response(text="late")

    response = await TimeoutGuard(0.01, bypass)(_request(), slow)
    assert response.text == "late"


@pytest.mark.asyncio
async def test_timeout_keeps_inner_timeout_error():
    async def failing(request):
        raise TimeoutError("upstream")

    with pytest.raises(TimeoutError, match="upstream"):
        await TimeoutGuard(10, always)(_request(), failing)


@pytest.mark.asyncio
async def test_timeout_error_resolved_to_message():
    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text="late")

    guard = TimeoutGuard(0.01, always)

    async def guarded(request):
        return await guard(request, slow)

    response = await HttpErrResolver()(_request(), guarded)
    assert response.body == b"request timed out"


def test_timeout_from_mins_matches_seconds():
    assert TimeoutGuard.from_mins(2, bypass).seconds == TimeoutGuard(120, bypass).seconds


def test_timeout_rejects_negative():
    with pytest.raises(ValueError):
        TimeoutGuard(-1, always)


@pytest.mark.parametrize("limit", [1, 3])
@pytest.mark.asyncio
async def test_concurrency_limit_caps_parallel_requests(limit):
    guard = ConcurrencyLimit(limit)
    active = 0
    peak = 0

    async def handler(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return web.Response(text="ok")

    responses = await asyncio.gather(*(guard(_request(), handler) for _ in range(6)))
    assert peak == limit
    assert [r.text for r in responses] == ["ok"] * 6
    assert active == 0