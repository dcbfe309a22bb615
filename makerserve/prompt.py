"""Prompt specifications and their resolution into generation requests."""

from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

SCHEMA = (
    ";use the following schema: mk=makefile, cm=cmake, dkr=docker, "
    "rdme=readme, c=constraints,; constraints are separated with '|';"
)

_U32_MAX = 2**32 - 1


def _as_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be an object")
    return data


def _required_str(data: Mapping[str, Any], key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _optional_float(data: Mapping[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field `{key}` must be a number")
    return float(value)


def _optional_u32(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{key}` must be an integer")
    if not 0 <= value <= _U32_MAX:
        raise ValueError(f"field `{key}` is out of range")
    return value


class Think(Enum):
    """Reasoning setting: an effort level or a plain on/off switch."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ENABLED = True
    DISABLED = False

    @classmethod
    def from_value(cls, value: Any) -> Think:
        """Parse a level name or a boolean."""
        if isinstance(value, (bool, str)):
            try:
                return cls(value)
            except ValueError:
                pass
        raise ValueError(f"invalid think value: {value!r}")

    def to_value(self) -> str | bool:
        """Return the wire value: a level name or a boolean."""
        return self.value


class FiletypeKind(Enum):
    """The kinds of file that can be generated."""

    MAKE = "make"
    CMAKE = "cmake"
    README = "readme"
    DOCKER = "docker"
    SPEC = "spec"
    ANKI = "anki"


_DISPLAY_NAMES = {
    FiletypeKind.MAKE: "Makefile",
    FiletypeKind.CMAKE: "Cmake",
    FiletypeKind.README: "README",
    FiletypeKind.DOCKER: "Docker",
    FiletypeKind.SPEC: "Spec",
    FiletypeKind.ANKI: "Anki",
}

_TEMPLATES = {
    FiletypeKind.MAKE: ";the output should be a valid mk: {};",
    FiletypeKind.CMAKE: ";the output should be a valid cm file: {};",
    FiletypeKind.README: ";the output should be a valid rdme: {};",
    FiletypeKind.DOCKER: ";the output file should be a valid dkr file: {};",
    FiletypeKind.SPEC: ";the output file should be a valid toml file: {};",
    FiletypeKind.ANKI: ";the output file should be a valid toml file: {};",
}


@dataclass(frozen=True)
class Filetype:
    """A request to generate a file of some kind from a description."""

    kind: FiletypeKind
    content: str

    @classmethod
    def from_dict(cls, data: Any) -> Filetype:
        data = _as_mapping(data, "filetype")
        if "filetype" not in data:
            raise ValueError("missing field `filetype`")
        tag = data["filetype"]
        if not isinstance(tag, str):
            raise ValueError("field `filetype` must be a string")
        try:
            kind = FiletypeKind(tag)
        except ValueError:
            raise ValueError(f"unknown filetype: {tag!r}") from None
        return cls(kind, _required_str(data, "content"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> Filetype:
        """Parse a JSON object tagged by its ``filetype`` field."""
        return cls.from_dict(json.loads(raw))

    def to_dict(self) -> dict[str, str]:
        return {"filetype": self.kind.value, "content": self.content}

    def spec_filename(self) -> str:
        """Name of the specification file for this kind."""
        return f"{self.kind.value}.toml"

    def __str__(self) -> str:
        return _DISPLAY_NAMES[self.kind]


@dataclass
class System:
    """Model options passed through to the generator."""

    temperature: float | None = None
    top_p: float | None = None
    num_ctx: int | None = None
    num_predict: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> System:
        data = _as_mapping(data, "system")
        return cls(
            temperature=_optional_float(data, "temperature"),
            top_p=_optional_float(data, "top_p"),
            num_ctx=_optional_u32(data, "num_ctx"),
            num_predict=_optional_u32(data, "num_predict"),
        )

    def to_dict(self) -> dict[str, float | int]:
        values = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "num_ctx": self.num_ctx,
            "num_predict": self.num_predict,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass
class TaskContext:
    """The task a specification describes."""

    prompt: str
    constraints: list[str] = field(default_factory=list)
    system_prompt: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TaskContext:
        data = _as_mapping(data, "context")
        if "constraints" not in data:
            raise ValueError("missing field `constraints`")
        constraints = data["constraints"]
        if not isinstance(constraints, list) or not all(
            isinstance(item, str) for item in constraints
        ):
            raise ValueError("field `constraints` must be a list of strings")
        return cls(
            prompt=_required_str(data, "prompt"),
            constraints=list(constraints),
            system_prompt=_optional_str(data, "system_prompt"),
        )


@dataclass
class TomlSpec:
    """A generation specification as stored in a TOML file."""

    context: TaskContext
    model: str | None = None
    system: System | None = None
    think: Think | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TomlSpec:
        data = _as_mapping(data, "specification")
        if "context" not in data:
            raise ValueError("missing field `context`")
        system = data.get("system")
        think = data.get("think")
        return cls(
            context=TaskContext.from_dict(data["context"]),
            model=_optional_str(data, "model"),
            system=None if system is None else System.from_dict(system),
            think=None if think is None else Think.from_value(think),
        )

    @classmethod
    def from_toml(cls, text: str | bytes) -> TomlSpec:
        """Parse a specification from TOML text."""
        if isinstance(text, bytes):
            text = text.decode("utf-8")
        return cls.from_dict(tomllib.loads(text))


@dataclass
class ResolvedPrompt:
    """A complete, non-streaming generation request."""

    prompt: str
    think: Think
    model: str | None = None
    system_prompt: str | None = None
    stream: bool = False
    keep_alive: str | None = None
    options: System | None = None

    @classmethod
    def from_spec(cls, spec: TomlSpec, filetype: Filetype) -> ResolvedPrompt:
        """Combine a specification with a file request into one prompt."""
        parts = [
            spec.context.prompt,
            SCHEMA,
            _TEMPLATES[filetype.kind].format(filetype.content),
        ]
        if spec.context.constraints:
            parts.append(" c:" + "|".join(spec.context.constraints))
        return cls(
            prompt="".join(parts),
            think=spec.think if spec.think is not None else Think.ENABLED,
            model=spec.model,
            system_prompt=spec.context.system_prompt,
            stream=False,
            keep_alive=None,
            options=None if spec.system is None else replace(spec.system),
        )

    @classmethod
    def from_dict(cls, data: Any) -> ResolvedPrompt:
        data = _as_mapping(data, "prompt")
        if "stream" not in data:
            raise ValueError("missing field `stream`")
        stream = data["stream"]
        if not isinstance(stream, bool):
            raise ValueError("field `stream` must be a boolean")
        if "think" not in data:
            raise ValueError("missing field `think`")
        options = data.get("options")
        return cls(
            prompt=_required_str(data, "prompt"),
            think=Think.from_value(data["think"]),
            model=_optional_str(data, "model"),
            system_prompt=_optional_str(data, "system_prompt"),
            stream=stream,
            keep_alive=_optional_str(data, "keep_alive"),
            options=None if options is None else System.from_dict(options),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"model": self.model, "prompt": self.prompt}
        if self.system_prompt is not None:
            result["system_prompt"] = self.system_prompt
        result["stream"] = self.stream
        result["think"] = self.think.to_value()
        if self.keep_alive is not None:
            result["keep_alive"] = self.keep_alive
        if self.options is not None:
            result["options"] = self.options.to_dict()
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)