"""Errors raised while configuring and starting the server."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Where a server error came from."""

    SERVER = "server"
    OTHER = "other"


class ServerError(Exception):
    """A fatal error in server setup or operation."""

    def __init__(self, reason: str, kind: ErrorKind = ErrorKind.SERVER) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind

    @classmethod
    def from_exception(cls, exc: BaseException) -> ServerError:
        """Wrap an arbitrary exception, keeping only its message."""
        return cls(str(exc), ErrorKind.OTHER)

    def __str__(self) -> str:
        return self.reason

    def __repr__(self) -> str:
        return f"ServerError(kind={self.kind.name}, reason={self.reason!r})"