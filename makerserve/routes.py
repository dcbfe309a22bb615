"""Request routing and the handlers behind each route."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from http import HTTPStatus
from pathlib import Path

import aiohttp
from aiohttp import hdrs, web

from .prompt import Filetype, ResolvedPrompt, TomlSpec
from .responses import HttpStatusError, bad_request, error_response
from .state import AppState, OllamaResponse

logger = logging.getLogger(__name__)

_NO_TIMEOUT = aiohttp.ClientTimeout(total=None)
_UNFORWARDED = frozenset(
    name.lower()
    for name in (
        hdrs.CONTENT_LENGTH,
        hdrs.TRANSFER_ENCODING,
        hdrs.CONTENT_ENCODING,
        hdrs.CONNECTION,
        "Keep-Alive",
    )
)


class OllamaEndpoint(Enum):
    """Paths of the generator backend that the server calls."""

    GENERATE = "/api/generate"
    TAGS = "/api/tags"

    def __str__(self) -> str:
        return self.value


class _RouteError(Exception):
    """A request the route refuses; answered with 400 by the router."""


def _answer(exc: HttpStatusError) -> web.Response:
    logger.error("%s", exc)
    return error_response(exc.status)


def _server_failure(exc: BaseException) -> HttpStatusError:
    return HttpStatusError(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))


def _ollama_authority(state: AppState) -> str:
    if state.ollama_host is None:
        raise HttpStatusError(HTTPStatus.INTERNAL_SERVER_ERROR, "missing uri host")
    if state.ollama_port is None:
        raise HttpStatusError(HTTPStatus.INTERNAL_SERVER_ERROR, "missing uri port")
    authority = state.ollama_authority
    if not authority:
        raise HttpStatusError(
            HTTPStatus.INTERNAL_SERVER_ERROR, "malformed authority for ollama path"
        )
    return authority


async def route(state: AppState, request: web.Request) -> web.StreamResponse:
    """Dispatch a request by path; any refusal becomes an empty 400."""
    handler = _ROUTES.get(request.path)
    if handler is None:
        return bad_request("not found")
    try:
        return await handler(state, request)
    except web.HTTPException:
        raise
    except Exception as exc:
        return bad_request(str(exc))


async def create_route(state: AppState, request: web.Request) -> web.StreamResponse:
    """Generate a file from a JSON description using the matching specification."""
    if request.method != hdrs.METH_POST:
        raise _RouteError("method not allowed")
    content_type = request.headers.get(hdrs.CONTENT_TYPE, "")
    if not content_type.startswith("application/json"):
        return error_response(HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
    try:
        return await _maker_run(state, request)
    except HttpStatusError as exc:
        return _answer(exc)


async def _maker_run(state: AppState, request: web.Request) -> web.StreamResponse:
    authority = _ollama_authority(state)

    try:
        raw = await request.read()
    except Exception as exc:
        raise _server_failure(exc) from exc

    try:
        filetype = Filetype.from_json(raw)
    except ValueError as exc:
        raise HttpStatusError(HTTPStatus.BAD_REQUEST, str(exc)) from exc

    spec_path = Path(state.specifications) / filetype.spec_filename()
    try:
        spec_text = await asyncio.to_thread(spec_path.read_bytes)
    except OSError as exc:
        raise _server_failure(exc) from exc
    try:
        spec = TomlSpec.from_toml(spec_text)
    except ValueError as exc:
        raise _server_failure(exc) from exc

    logger.info("ollama request for %s", filetype)
    prompt = ResolvedPrompt.from_spec(spec, filetype)
    logger.debug("%r", prompt)
    if prompt.model is None:
        prompt.model = state.default_model

    url = state.ollama_base_url() + str(OllamaEndpoint.GENERATE)
    headers = {hdrs.HOST: authority, hdrs.CONTENT_TYPE: "application/json"}
    try:
        async with aiohttp.ClientSession(timeout=_NO_TIMEOUT) as session:
            async with session.request(
                request.method, url, data=prompt.to_json().encode("utf-8"), headers=headers
            ) as upstream:
                body = await upstream.read()
    except (aiohttp.ClientError, OSError) as exc:
        raise _server_failure(exc) from exc

    try:
        answer = OllamaResponse.from_dict(json.loads(body))
    except ValueError as exc:
        raise _server_failure(exc) from exc

    logger.info(
        "ollama response received created_at=%s model=%s prompt_size=%s eval_count=%s "
        "sec_elapsed=%s ms_elapsed=%s",
        answer.created_at,
        answer.model,
        answer.prompt_eval_count,
        answer.eval_count,
        answer.total_duration // 1_000_000_000,
        (answer.total_duration % 1_000_000_000) // 1_000_000,
    )
    return web.Response(
        body=answer.response.encode("utf-8"),
        headers={hdrs.CONTENT_TYPE: "text/plain; charset=utf-8"},
    )


async def list_models(state: AppState, request: web.Request) -> web.StreamResponse:
    """Relay the generator's model list, status and headers included."""
    try:
        authority = _ollama_authority(state)
        url = state.ollama_base_url() + str(OllamaEndpoint.TAGS)
        headers = {hdrs.HOST: authority, hdrs.CONTENT_TYPE: "application/json"}
        try:
            async with aiohttp.ClientSession(timeout=_NO_TIMEOUT) as session:
                async with session.request(request.method, url, headers=headers) as upstream:
                    body = await upstream.read()
                    status = upstream.status
                    reason = upstream.reason
                    forwarded = [
                        (name, value)
                        for name, value in upstream.headers.items()
                        if name.lower() not in _UNFORWARDED
                    ]
        except (aiohttp.ClientError, OSError) as exc:
            raise _server_failure(exc) from exc
    except HttpStatusError as exc:
        return _answer(exc)
    response = web.Response(status=status, reason=reason, body=body)
    for name, value in forwarded:
        response.headers.add(name, value)
    return response


async def models_route(state: AppState, request: web.Request) -> web.StreamResponse:
    """List the models the generator offers."""
    if request.method != hdrs.METH_GET:
        raise _RouteError("method not allowed")
    return await list_models(state, request)


def _spec_names(directory: Path) -> list[str]:
    with os.scandir(directory) as entries:
        return sorted(
            entry.name[: -len(".toml")]
            for entry in entries
            if Path(entry.name).suffix == ".toml"
        )


async def specs_route(state: AppState, request: web.Request) -> web.StreamResponse:
    """List the names of the available specifications as a JSON array."""
    if request.method != hdrs.METH_GET:
        return error_response(HTTPStatus.METHOD_NOT_ALLOWED)
    names = await asyncio.to_thread(_spec_names, Path(state.specifications))
    body = json.dumps(names, separators=(",", ":"), ensure_ascii=False)
    return web.Response(body=body.encode("utf-8"))


_ROUTES: dict[str, Callable[[AppState, web.Request], Awaitable[web.StreamResponse]]] = {
    "/create": create_route,
    "/models": models_route,
    "/specs": specs_route,
}