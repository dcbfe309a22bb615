"""Server configuration, shared state and request classification."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from aiohttp import web

from .errors import ServerError

logger = logging.getLogger(__name__)

PUBLIC_HOST = "maker.bidn.dev"
LISTEN_HOST = "0.0.0.0"
DEFAULT_SPECIFICATIONS = Path("/app/specifications")

_U16 = re.compile(r"\+?[0-9]+")
_U64_MAX = 2**64 - 1


def _parse_u16(text: str) -> int | None:
    if not _U16.fullmatch(text):
        return None
    value = int(text)
    return value if value <= 0xFFFF else None


@dataclass(frozen=True)
class AppState:
    """Settings shared by every request handler."""

    ollama_uri: str
    specifications: Path
    default_model: str

    @property
    def ollama_host(self) -> str | None:
        return urlsplit(self.ollama_uri).hostname

    @property
    def ollama_port(self) -> int | None:
        return urlsplit(self.ollama_uri).port

    @property
    def ollama_authority(self) -> str:
        return urlsplit(self.ollama_uri).netloc

    def ollama_base_url(self) -> str:
        """Scheme and authority of the generator backend, without a path."""
        parts = urlsplit(self.ollama_uri)
        return f"{parts.scheme}://{parts.netloc}"


def _required(data: Mapping[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    return data[key]


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = _required(data, key)
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _required_bool(data: Mapping[str, Any], key: str) -> bool:
    value = _required(data, key)
    if not isinstance(value, bool):
        raise ValueError(f"field `{key}` must be a boolean")
    return value


def _required_u64(data: Mapping[str, Any], key: str) -> int:
    value = _required(data, key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{key}` must be an integer")
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"field `{key}` is out of range")
    return value


@dataclass(frozen=True)
class OllamaResponse:
    """A complete, non-streamed answer from the generator."""

    response: str
    done: bool
    model: str
    created_at: str
    done_reason: str
    total_duration: int
    prompt_eval_count: int
    eval_count: int
    thinking: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> OllamaResponse:
        if not isinstance(data, Mapping):
            raise ValueError("response must be an object")
        thinking = data.get("thinking")
        if thinking is not None and not isinstance(thinking, str):
            raise ValueError("field `thinking` must be a string")
        return cls(
            response=_required_str(data, "response"),
            done=_required_bool(data, "done"),
            model=_required_str(data, "model"),
            created_at=_required_str(data, "created_at"),
            done_reason=_required_str(data, "done_reason"),
            total_duration=_required_u64(data, "total_duration"),
            prompt_eval_count=_required_u64(data, "prompt_eval_count"),
            eval_count=_required_u64(data, "eval_count"),
            thinking=thinking,
        )


class RequestOrigin(Enum):
    """Whether a request came from inside the deployment or from outside."""

    INTERNAL = "internal"
    EXTERNAL = "external"


def server_init(
    environ: Mapping[str, str] | None = None,
    specifications: Path | str | None = None,
) -> tuple[AppState, tuple[str, int]]:
    """Read the configuration and return the state and the listen address."""
    env = os.environ if environ is None else environ

    port = env.get("BACKEND_PORT")
    if port is None:
        raise ServerError("Missing server backend port")
    ollama_port = env.get("OLLAMA_PORT")
    if ollama_port is None:
        raise ServerError("Missing ollama backend port")
    default_model = env.get("DEFAULT_OLLAMA_MODEL")
    if default_model is None:
        raise ServerError("Missing default ollama model fallback")

    spec_dir = DEFAULT_SPECIFICATIONS if specifications is None else Path(specifications)
    try:
        found = spec_dir.exists()
    except OSError:
        raise ServerError("Unable to find specifications directory") from None
    if not found:
        raise ServerError("Unable to find specifications directory")

    if _parse_u16(ollama_port) is None:
        raise ServerError("Unable to parse ollama uri")
    state = AppState(f"http://ollama:{ollama_port}", spec_dir, default_model)

    listen_port = _parse_u16(port)
    if listen_port is None:
        raise ServerError("Unable to parse port number")
    return state, (LISTEN_HOST, listen_port)


def classify_origin(host: str | None, is_cloudflare: bool) -> RequestOrigin:
    """Internal unless addressed to the public host or relayed by the proxy."""
    public = host == PUBLIC_HOST
    if not public and not is_cloudflare:
        return RequestOrigin.INTERNAL
    logger.warning(
        "unexpected request src combination host=%s public=%s cloudflare=%s",
        host if host is not None else "null",
        public,
        is_cloudflare,
    )
    return RequestOrigin.EXTERNAL


def _target_host(raw_target: str) -> str | None:
    target = urlsplit(raw_target)
    if not (target.scheme and target.netloc):
        return None
    host = target.netloc.rpartition("@")[2]
    if host.startswith("[") and "]" in host:
        return host[: host.index("]") + 1]
    return host.partition(":")[0]


def request_origin(request: web.BaseRequest) -> RequestOrigin:
    """Classify a request by the host in its target and the proxy header."""
    return classify_origin(
        _target_host(request.raw_path),
        "cf-connecting-ip" in request.headers,
    )