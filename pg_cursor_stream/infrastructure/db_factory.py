"""
Connection helpers for the pg-cursor-stream CLI and integration tests.

Library callers bring their own connection; these helpers exist so the bundled
reader can open one from settings. Connecting is retried with tenacity for
transient failures. Nothing else in the package retries: a failed FETCH is
final.
"""

from __future__ import annotations

from typing import Optional

import asyncpg
import psycopg
from psycopg import AsyncConnection
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pg_cursor_stream.config import get_settings
from pg_cursor_stream.utils.logging import get_logger

log = get_logger(__name__)

_TRANSIENT_PSYCOPG = (psycopg.OperationalError, psycopg.InterfaceError)
_TRANSIENT_ASYNCPG = (OSError, ConnectionError, asyncpg.CannotConnectNowError)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def _retrying(transient: tuple) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(get_settings().connect_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(transient),
        before_sleep=lambda state: log.warning(
            "Connection attempt failed; retrying",
            extra={"attempt": state.attempt_number},
        ),
        reraise=True,
    )


async def get_async_connection(dsn: Optional[str] = None) -> AsyncConnection:
    """
    Open a psycopg async connection with automatic retry.

    Parameters
    ----------
    dsn : str | None
        Connection string. Defaults to one built from settings.

    Raises
    ------
    psycopg.OperationalError
        If connecting fails after all attempts.
    """
    async for attempt in _retrying(_TRANSIENT_PSYCOPG):
        with attempt:
            return await AsyncConnection.connect(dsn or build_dsn())
    raise AssertionError("unreachable")  # pragma: no cover


async def get_asyncpg_connection(dsn: Optional[str] = None) -> asyncpg.Connection:
    """
    Open an asyncpg connection with automatic retry.

    Parameters
    ----------
    dsn : str | None
        Connection string. Defaults to one built from settings.

    Raises
    ------
    OSError
        If connecting fails after all attempts.
    """
    async for attempt in _retrying(_TRANSIENT_ASYNCPG):
        with attempt:
            return await asyncpg.connect(dsn or build_dsn())
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "build_dsn",
    "get_async_connection",
    "get_asyncpg_connection",
]
