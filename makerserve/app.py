"""The web application, its server loop and the command that starts it."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable, Sequence

from aiohttp import web

from .errors import ServerError
from .middleware import (
    ConcurrencyLimit,
    HttpErrResolver,
    RateLimiter,
    TimeoutGuard,
    always,
    bypass,
)
from .routes import route
from .state import AppState, RequestOrigin, request_origin, server_init

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]
Middleware = Callable[[web.Request, Handler], Awaitable[web.StreamResponse]]

SHUTDOWN_GRACE_SECONDS = 10


def _wrap(middleware: Middleware, inner: Handler) -> Handler:
    async def handler(request: web.Request) -> web.StreamResponse:
        return await middleware(request, inner)

    return handler


def _chain(middlewares: Sequence[Middleware], handler: Handler) -> Handler:
    for middleware in reversed(middlewares):
        handler = _wrap(middleware, handler)
    return handler


def build_app(state: AppState) -> web.Application:
    """An application that serves internal and external requests through separate stacks."""

    async def routed(request: web.Request) -> web.StreamResponse:
        return await route(state, request)

    internal = _chain(
        [HttpErrResolver(), TimeoutGuard.from_mins(10, bypass)],
        routed,
    )
    external = _chain(
        [
            HttpErrResolver(),
            RateLimiter(10, 10, always),
            TimeoutGuard.from_mins(3, bypass),
            ConcurrencyLimit(50),
        ],
        routed,
    )

    async def dispatch(request: web.Request) -> web.StreamResponse:
        if request_origin(request) is RequestOrigin.INTERNAL:
            return await internal(request)
        return await external(request)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", dispatch)
    return app


async def serve(state: AppState, host: str, port: int) -> None:
    """Serve until SIGINT or SIGTERM, then close connections within a grace period."""
    runner = web.AppRunner(build_app(state))
    await runner.setup()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    signals = (signal.SIGINT, signal.SIGTERM)
    for signum in signals:
        loop.add_signal_handler(signum, stop.set)
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info("listening on %s:%s", host, port)
        await stop.wait()
        logger.info("exit signal received")
    finally:
        for signum in signals:
            loop.remove_signal_handler(signum)
        try:
            await asyncio.wait_for(runner.cleanup(), SHUTDOWN_GRACE_SECONDS)
            logger.info("all connections closed")
        except TimeoutError:
            logger.info("failed to close all connections")


def main(argv: Sequence[str] | None = None) -> int:
    """Read the configuration from the environment and run the server."""
    parser = argparse.ArgumentParser(
        prog="makerserve",
        description="Serve file generation requests built from TOML specifications.",
    )
    parser.parse_args(argv)

    try:
        state, (host, port) = server_init()
    except ServerError as exc:
        print(f"Error: {exc!r}", file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    try:
        asyncio.run(serve(state, host, port))
    except OSError as exc:
        print(f"Error: {ServerError.from_exception(exc)!r}", file=sys.stderr)
        return 1
    return 0