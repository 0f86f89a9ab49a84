"""
Exceptions raised by pg-cursor-stream itself.

Backend errors (psycopg.Error, asyncpg.PostgresError and friends) are never
wrapped: they reach the caller exactly as the driver raised them.
"""

from __future__ import annotations


class CursorStreamError(Exception):
    """Base for errors raised by this package."""


class CursorClosedError(CursorStreamError):
    def __init__(self, cursor_name: str) -> None:
        self.cursor_name = cursor_name
        super().__init__(f"cursor {cursor_name!r} is already closed")


class ConnectionBusyError(CursorStreamError):
    """A stream was pulled from two places at once."""

    def __init__(self, cursor_name: str) -> None:
        self.cursor_name = cursor_name
        super().__init__(
            f"cursor {cursor_name!r} already has a pull in progress;"
            " streams are single-consumer"
        )


class UnsupportedConnectionError(CursorStreamError, TypeError):
    def __init__(self, target: object) -> None:
        self.target_type = type(target)
        super().__init__(
            f"unsupported connection type: {type(target).__name__};"
            " expected a psycopg AsyncConnection/AsyncTransaction,"
            " an asyncpg Connection, or a CursorExecutor"
        )


__all__ = [
    "CursorStreamError",
    "CursorClosedError",
    "ConnectionBusyError",
    "UnsupportedConnectionError",
]
