"""Empty error responses and the exception that carries an HTTP status."""

from __future__ import annotations

import logging
from http import HTTPStatus

from aiohttp import web

logger = logging.getLogger(__name__)


def _status_label(status: HTTPStatus) -> str:
    return f"{status.value} {status.phrase}"


class HttpStatusError(Exception):
    """A failure that should be answered with an empty response of ``status``."""

    def __init__(self, status: HTTPStatus | int, reason: str) -> None:
        self.status = HTTPStatus(status)
        self.reason = reason
        super().__init__(reason)

    def __str__(self) -> str:
        return f"[{_status_label(self.status)}] {self.reason}"


def error_response(status: HTTPStatus | int) -> web.Response:
    """An empty-bodied response with the given status."""
    return web.Response(status=int(HTTPStatus(status)), body=b"")


def _logged_response(status: HTTPStatus, reason: str) -> web.Response:
    logger.error("[%s] %s", _status_label(status), reason)
    return error_response(status)


def bad_request(reason: str) -> web.Response:
    """Log ``reason`` and return an empty 400 response."""
    return _logged_response(HTTPStatus.BAD_REQUEST, reason)


def server_error(reason: str) -> web.Response:
    """Log ``reason`` and return an empty 500 response."""
    return _logged_response(HTTPStatus.INTERNAL_SERVER_ERROR, reason)