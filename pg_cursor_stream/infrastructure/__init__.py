"""
Infrastructure package for pg-cursor-stream.

Centralizes connection establishment for the CLI and tests. The cursor engine
does not depend on this package.
"""

from pg_cursor_stream.infrastructure.db_factory import (
    build_dsn,
    get_async_connection,
    get_asyncpg_connection,
)

__all__ = [
    "build_dsn",
    "get_async_connection",
    "get_asyncpg_connection",
]
