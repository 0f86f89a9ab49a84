"""
pg-cursor-stream - batched, forward-only iteration over PostgreSQL query
results through server-side cursors.

Inside a transaction, `declare_cursor` (or the scoped `open_cursor`) issues

    DECLARE <cursor> NO SCROLL CURSOR FOR <query>

and returns a `CursorStream`, an async iterator of non-empty row batches, each
obtained with

    FETCH FORWARD <batch_size> FROM <cursor>

until an empty fetch ends the sequence. `close` sends `CLOSE <cursor>`; the
cursor is also dropped by the server when the transaction ends.

    async with conn.transaction() as tx:
        async with open_cursor(tx, "SELECT * FROM my_table", 10) as stream:
            async for rows in stream:
                ...

Works with psycopg 3 async connections and asyncpg connections. The query is
embedded verbatim: guarding it against SQL injection is up to the caller.
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from pg_cursor_stream.config import Settings, get_settings
from pg_cursor_stream.cursor import (
    AsyncpgExecutor,
    CursorExecutor,
    CursorSession,
    CursorStream,
    PsycopgExecutor,
    StreamState,
    declare_cursor,
    open_cursor,
    wait_idle,
)
from pg_cursor_stream.domain import CursorOptions, StreamReport
from pg_cursor_stream.exceptions import (
    ConnectionBusyError,
    CursorClosedError,
    CursorStreamError,
    UnsupportedConnectionError,
)
from pg_cursor_stream.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Cursor API
    "declare_cursor",
    "open_cursor",
    "wait_idle",
    "CursorStream",
    "CursorSession",
    "StreamState",
    "CursorExecutor",
    "PsycopgExecutor",
    "AsyncpgExecutor",
    # Models
    "CursorOptions",
    "StreamReport",
    # Errors
    "CursorStreamError",
    "CursorClosedError",
    "ConnectionBusyError",
    "UnsupportedConnectionError",
    # Logging
    "configure_logging",
    "get_logger",
]
