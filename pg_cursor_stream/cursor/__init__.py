"""
Server-side cursor support: driver adapters, the cursor session, the batch
stream engine and the transaction-facing factory.
"""

from pg_cursor_stream.cursor.executor import (
    AsyncpgExecutor,
    CursorExecutor,
    PsycopgExecutor,
    resolve_executor,
)
from pg_cursor_stream.cursor.ext import declare_cursor, open_cursor, wait_idle
from pg_cursor_stream.cursor.session import CursorSession
from pg_cursor_stream.cursor.stream import CursorStream, StreamState

__all__ = [
    # Adapters
    "CursorExecutor",
    "PsycopgExecutor",
    "AsyncpgExecutor",
    "resolve_executor",
    # Engine
    "CursorSession",
    "CursorStream",
    "StreamState",
    # Factory
    "declare_cursor",
    "open_cursor",
    "wait_idle",
]
