"""
Driver adapters for issuing cursor statements.

The cursor engine only needs two operations from a connection: run a command
and report its affected-row count, and run a query and return its rows. Both
psycopg (async) and asyncpg connections are adapted to that shape here, and any
other object implementing `CursorExecutor` is accepted as-is.

Statements are always sent without parameters, so placeholders or `%` signs in
the caller's query text are passed through to the server untouched.
"""

from __future__ import annotations

from typing import Any, List, Protocol, runtime_checkable

import asyncpg
import psycopg

from pg_cursor_stream.exceptions import UnsupportedConnectionError


@runtime_checkable
class CursorExecutor(Protocol):
    """
    Minimal statement interface required by a cursor session.

    Attributes
    ----------
    connection : Any
        The underlying connection object. Used as the identity key for
        per-connection cursor naming and in-flight fetch tracking, so two
        executors over the same connection must expose the same object.
    """

    connection: Any

    async def execute(self, sql: str) -> int: ...

    async def fetch(self, sql: str) -> List[Any]: ...


class PsycopgExecutor:
    """Adapter for `psycopg.AsyncConnection` (rows follow its row factory)."""

    def __init__(self, connection: psycopg.AsyncConnection) -> None:
        self.connection = connection

    async def execute(self, sql: str) -> int:
        async with self.connection.cursor() as cur:
            await cur.execute(sql)
            # -1 for utility commands such as DECLARE/CLOSE
            return max(cur.rowcount, 0)

    async def fetch(self, sql: str) -> List[Any]:
        async with self.connection.cursor() as cur:
            await cur.execute(sql)
            return await cur.fetchall()


def _status_count(status: str) -> int:
    """Extract the affected-row count from a command tag like 'UPDATE 3'."""
    tail = status.rsplit(" ", 1)[-1] if status else ""
    return int(tail) if tail.isdigit() else 0


def _unwrap_pool_proxy(connection: Any) -> Any:
    """Return the connection behind an asyncpg pool proxy, or `connection`."""
    if not isinstance(connection, asyncpg.pool.PoolConnectionProxy):
        return connection
    inner = connection._con
    if inner is None:
        raise asyncpg.InterfaceError(
            "cannot declare a cursor: connection has been released back to the pool"
        )
    return inner


class AsyncpgExecutor:
    """
    Adapter for `asyncpg.Connection` and pool connection proxies.

    Statements go through the object the caller passed in. `connection` is the
    underlying `asyncpg.Connection`, since proxies are not weak-referenceable
    and a pool hands out a new proxy on every acquire.
    """

    def __init__(self, connection: asyncpg.Connection) -> None:
        self._driver = connection
        self.connection = _unwrap_pool_proxy(connection)

    async def execute(self, sql: str) -> int:
        status = await self._driver.execute(sql)
        return _status_count(status)

    async def fetch(self, sql: str) -> List[Any]:
        return await self._driver.fetch(sql)


def resolve_executor(target: Any) -> CursorExecutor:
    """
    Adapt a transaction or connection object to a `CursorExecutor`.

    Parameters
    ----------
    target : Any
        A `psycopg.AsyncTransaction`, `psycopg.AsyncConnection`,
        `asyncpg.Connection`, or an object already implementing
        `CursorExecutor`.

    Raises
    ------
    UnsupportedConnectionError
        If the object is none of the above.
    """
    if isinstance(target, psycopg.AsyncTransaction):
        return PsycopgExecutor(target.connection)
    if isinstance(target, psycopg.AsyncConnection):
        return PsycopgExecutor(target)
    if isinstance(target, asyncpg.Connection):
        return AsyncpgExecutor(target)
    if isinstance(target, CursorExecutor):
        return target
    raise UnsupportedConnectionError(target)


__all__ = [
    "CursorExecutor",
    "PsycopgExecutor",
    "AsyncpgExecutor",
    "resolve_executor",
]
