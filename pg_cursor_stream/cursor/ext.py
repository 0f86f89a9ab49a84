"""
Cursor factory: the transaction-facing entry points.

Cursors only exist inside a transaction block. The caller owns the
transaction; these helpers never begin, commit or roll back anything.

    async with conn.transaction() as tx:
        async with open_cursor(tx, "SELECT * FROM events", 1000) as stream:
            async for batch in stream:
                ...

The query text is embedded verbatim into DECLARE. Protecting it against SQL
injection is the caller's responsibility.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from pg_cursor_stream.config import get_settings
from pg_cursor_stream.cursor.executor import resolve_executor
from pg_cursor_stream.cursor.session import CursorSession, peek_connection_state
from pg_cursor_stream.cursor.stream import CursorStream
from pg_cursor_stream.domain.models import CursorOptions


async def declare_cursor(tx: Any, query: str, batch_size: Optional[int] = None) -> CursorStream:
    """
    Declare a server-side cursor for `query` and return its batch stream.

    Parameters
    ----------
    tx : Any
        A psycopg `AsyncTransaction`/`AsyncConnection` or asyncpg `Connection`
        with an open transaction, or a `CursorExecutor`.
    query : str
        Caller-trusted SQL, passed through verbatim.
    batch_size : int | None
        Rows per FETCH (>= 1). Defaults to `Settings.cursor_batch_size`.

    Returns
    -------
    CursorStream
        Owns the declared cursor. Close it explicitly or use `open_cursor`.

    Raises
    ------
    pydantic.ValidationError
        If `batch_size` is not a positive int; nothing is sent to the server.
    Exception
        The backend's DECLARE error, unmodified. No cursor is left behind.
    """
    settings = get_settings()
    options = CursorOptions(
        query=query,
        batch_size=settings.cursor_batch_size if batch_size is None else batch_size,
    )
    executor = resolve_executor(tx)
    session = await CursorSession.declare(
        executor,
        options.query,
        options.batch_size,
        prefix=settings.cursor_name_prefix,
    )
    return CursorStream(session)


@asynccontextmanager
async def open_cursor(
    tx: Any, query: str, batch_size: Optional[int] = None
) -> AsyncIterator[CursorStream]:
    """
    Declare a cursor for the duration of an `async with` block.

    The cursor is closed on every exit path. If the block raised, a close
    failure is logged and the block's exception propagates instead.
    """
    stream = await declare_cursor(tx, query, batch_size)
    async with stream:
        yield stream


async def wait_idle(tx: Any) -> None:
    """
    Wait until no cursor statement issued by this package is outstanding on
    the connection behind `tx`.

    Use before running sibling statements on a driver that rejects concurrent
    operations (asyncpg) after a pull was cancelled mid-fetch.
    """
    executor = resolve_executor(tx)
    state = peek_connection_state(executor.connection)
    if state is not None:
        await state.wait_idle()


__all__ = ["declare_cursor", "open_cursor", "wait_idle"]
