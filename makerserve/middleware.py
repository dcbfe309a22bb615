"""Request middlewares: error reporting, rate limiting, timeouts and concurrency."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from aiohttp import web

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class GuardDecision(Enum):
    """Whether a conditional middleware applies to a request or skips it."""

    CONTINUE = "continue"
    BYPASS = "bypass"


Predicate = Callable[[web.Request], GuardDecision]


def always(request: web.Request) -> GuardDecision:
    """Policy that applies the middleware to every request."""
    return GuardDecision.CONTINUE


def bypass(request: web.Request) -> GuardDecision:
    """Policy that skips the middleware for every request."""
    return GuardDecision.BYPASS


def _describe(request: web.Request) -> str:
    host = request.headers.get("Host", "")
    return f"path={request.path} host={host} method={request.method}"


class HttpErrResolver:
    """Turn any error raised below it into a response carrying its message."""

    __middleware_version__ = 1

    async def __call__(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        headers = request.headers
        host = headers.get("Host")
        span = f"http path={request.path} method={request.method}"
        if "cf-connecting-ip" in headers and host is not None:
            logger.info(
                "%s: Incoming external request ip=%s host=%s",
                span,
                headers["cf-connecting-ip"],
                host,
            )
        elif "x-real-ip" in headers and host is not None:
            logger.info(
                "%s: Incoming internal request ip=%s host=%s",
                span,
                headers["x-real-ip"],
                host,
            )
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as exc:
            return web.Response(body=str(exc).encode("utf-8"))


class RateLimiter:
    """Admit at most ``requests`` requests per ``seconds``, delaying the rest."""

    __middleware_version__ = 1

    def __init__(self, requests: int, seconds: float, predicate: Predicate) -> None:
        if requests <= 0:
            raise ValueError("rate limit must allow at least one request")
        if seconds <= 0:
            raise ValueError("rate limit period must be positive")
        self.requests = requests
        self.seconds = seconds
        self.predicate = predicate
        self._lock = asyncio.Lock()
        self._until: float | None = None
        self._remaining = requests
        self._limited_until: float | None = None

    async def acquire(self) -> None:
        """Wait until the current window has room, then take one slot."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            if self._limited_until is not None:
                delay = self._limited_until - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                self._until = loop.time() + self.seconds
                self._remaining = self.requests
                self._limited_until = None
            now = loop.time()
            if self._until is None or now >= self._until:
                self._until = now + self.seconds
                self._remaining = self.requests
            if self._remaining > 1:
                self._remaining -= 1
            else:
                self._limited_until = self._until

    async def __call__(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        logger.debug("call")
        if self.predicate(request) is GuardDecision.BYPASS:
            return await handler(request)
        await self.acquire()
        return await handler(request)


class TimeoutGuard:
    """Fail a request that takes longer than ``seconds``."""

    __middleware_version__ = 1

    def __init__(self, seconds: float, predicate: Predicate) -> None:
        if seconds < 0:
            raise ValueError("timeout must not be negative")
        self.seconds = seconds
        self.predicate = predicate

    @classmethod
    def from_mins(cls, minutes: int, predicate: Predicate) -> TimeoutGuard:
        return cls(minutes * 60, predicate)

    async def __call__(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        logger.debug("timeout %s: call", _describe(request))
        if self.predicate(request) is GuardDecision.BYPASS:
            return await handler(request)
        deadline = asyncio.timeout(self.seconds)
        try:
            async with deadline:
                return await handler(request)
        except TimeoutError:
            if deadline.expired():
                raise TimeoutError("request timed out") from None
            raise


class ConcurrencyLimit:
    """Run at most ``limit`` requests at the same time."""

    __middleware_version__ = 1

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)

    async def __call__(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        async with self._semaphore:
            return await handler(request)